from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from interview_room.capture.manager import MediaCaptureManager
from interview_room.capture.recording import RecordingArtifact, RecordingController
from interview_room.errors import BlobUploadError, SessionNotFound, SessionPaused, ServerError
from interview_room.session.coordinator import (
    END_SESSION,
    ERROR_NOT_FOUND,
    ERROR_PAUSED,
    PAUSE_SESSION,
    RESUME_SESSION,
    START_SESSION,
    USER_MESSAGE,
)

logger = logging.getLogger("interview_room.capture.client")

ReplyMatcher = Callable[[dict], bool]


def _ws_url_for(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):] + "/ws/interview"
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):] + "/ws/interview"
    return base_url + "/ws/interview"


def _of_type(*types: str) -> ReplyMatcher:
    wanted = set(types) | {"error"}
    return lambda message: message.get("type") in wanted


async def upload_recording(
    artifact: RecordingArtifact,
    interview_id: int,
    base_url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout_sec: float = 60.0,
) -> str:
    """POST the recording as multipart form data; returns the stored blob URL."""
    url = f"{base_url.rstrip('/')}/api/interviews/recording"
    files = {"recording": (artifact.filename, artifact.data, artifact.mime_type)}
    data = {"interviewId": str(interview_id)}

    try:
        if http_client is not None:
            response = await http_client.post(url, data=data, files=files, timeout=timeout_sec)
        else:
            async with httpx.AsyncClient(timeout=timeout_sec) as client:
                response = await client.post(url, data=data, files=files)
    except httpx.HTTPError as exc:
        raise BlobUploadError(f"Recording upload failed: {exc}") from exc

    if response.status_code >= 400:
        raise BlobUploadError(f"Recording upload failed ({response.status_code}): {response.text[:200]}")
    payload = response.json()
    logger.info(
        "recording uploaded | interview_id=%s bytes=%s url=%s",
        interview_id,
        artifact.size,
        payload.get("url"),
    )
    return str(payload.get("url") or "")


class InterviewClient:
    """Client half of the interview room: session protocol plus capture and recording."""

    def __init__(
        self,
        base_url: str,
        capture: MediaCaptureManager,
        recorder: RecordingController,
        ws_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        connect: Callable[..., Any] | None = None,
        reply_timeout_sec: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.ws_url = ws_url or _ws_url_for(self.base_url)
        self.capture = capture
        self.recorder = recorder
        self.http_client = http_client
        self.reply_timeout_sec = reply_timeout_sec
        self._connect = connect or websockets.connect

        self.session_id: str | None = None
        self.interview_id: int | None = None
        self.is_typing = False
        self.is_paused = False
        self.transcript: list[dict] = []
        self.events: asyncio.Queue[dict] = asyncio.Queue()

        self._ws = None
        self._reader: asyncio.Task | None = None
        self._waiters: list[tuple[ReplyMatcher, asyncio.Future]] = []
        self._closed = False

    # ================= CONNECTION =================

    async def connect(self) -> None:
        if self._ws is not None:
            return
        self._ws = await self._connect(self.ws_url, max_size=2**20, open_timeout=20)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("connected | url=%s", self.ws_url)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as exc:
                logger.warning("websocket close failed | err=%s", exc)
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._fail_waiters(ConnectionError("connection closed"))
        await self.capture.shutdown()

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("ignoring non-JSON frame")
                    continue
                if isinstance(message, dict):
                    self._dispatch(message)
        except ConnectionClosed as exc:
            logger.info("connection closed by server | code=%s", getattr(exc, "code", None))
        finally:
            self._fail_waiters(ConnectionError("connection closed"))

    def _dispatch(self, message: dict) -> None:
        message_type = message.get("type")
        if message_type == "assistant-message":
            self.transcript.append({"role": "assistant", "text": message.get("text", ""), "id": message.get("id")})
        elif message_type == "typing":
            self.is_typing = bool(message.get("isTyping"))
        self.events.put_nowait(message)

        for index, (matcher, future) in enumerate(self._waiters):
            if not future.done() and matcher(message):
                future.set_result(message)
                del self._waiters[index]
                break

    def _fail_waiters(self, exc: Exception) -> None:
        waiters, self._waiters = self._waiters, []
        for _, future in waiters:
            if not future.done():
                future.set_exception(exc)

    async def _request(self, payload: dict, matcher: ReplyMatcher) -> dict:
        if self._ws is None:
            await self.connect()
        future = asyncio.get_running_loop().create_future()
        entry = (matcher, future)
        self._waiters.append(entry)
        try:
            await self._ws.send(json.dumps(payload))
            reply = await asyncio.wait_for(future, self.reply_timeout_sec)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)
        if reply.get("type") == "error":
            self._raise_for_error(reply)
        return reply

    def _raise_for_error(self, reply: dict) -> None:
        message = str(reply.get("message") or "")
        if message == ERROR_NOT_FOUND:
            raise SessionNotFound(self.session_id or "")
        if message == ERROR_PAUSED:
            raise SessionPaused(self.session_id or "")
        raise ServerError(message or "Unknown server error")

    def _require_session(self) -> str:
        if not self.session_id:
            raise SessionNotFound("")
        return self.session_id

    # ================= PROTOCOL =================

    async def start_session(
        self,
        job_description: str,
        skills: list[str],
        interview_type: str = "technical",
        difficulty: str = "junior",
        interview_id: int = 0,
    ) -> str:
        reply = await self._request(
            {
                "type": START_SESSION,
                "interviewId": interview_id,
                "jobDescription": job_description,
                "skills": list(skills),
                "interviewType": interview_type,
                "difficulty": difficulty,
            },
            _of_type("session-created"),
        )
        self.session_id = str(reply.get("sessionId") or "")
        self.interview_id = int(reply.get("interviewId") or interview_id or 0) or None
        self.is_paused = False
        logger.info("session started | session_id=%s interview_id=%s", self.session_id, self.interview_id)
        return self.session_id

    async def send_message(self, text: str) -> dict:
        """Send a candidate answer and wait for the interviewer's reply."""
        session_id = self._require_session()
        replies: list[dict] = []

        def _matcher(message: dict) -> bool:
            if message.get("type") == "assistant-message":
                replies.append(message)
                return False
            if message.get("type") == "typing" and not message.get("isTyping"):
                # a late welcome clears typing before its message arrives
                return bool(replies)
            return message.get("type") == "error"

        self.transcript.append({"role": "user", "text": text})
        await self._request({"type": USER_MESSAGE, "sessionId": session_id, "message": text}, _matcher)
        if not replies:
            raise ServerError("No reply received")
        return replies[-1]

    async def pause(self) -> None:
        await self._request({"type": PAUSE_SESSION, "sessionId": self._require_session()}, _of_type("session-paused"))
        self.is_paused = True
        self.recorder.pause()

    async def resume(self) -> None:
        await self._request({"type": RESUME_SESSION, "sessionId": self._require_session()}, _of_type("session-resumed"))
        self.is_paused = False
        self.recorder.resume()

    async def start_recording(self) -> None:
        await self.capture.acquire()
        await self.recorder.start()

    async def finish(self) -> dict:
        """Stop the recording, upload it, then end the session on the server."""
        session_id = self._require_session()
        recording_url = None
        upload_error = None

        artifact = await self.recorder.stop()
        if artifact is not None and self.interview_id:
            try:
                recording_url = await upload_recording(
                    artifact,
                    self.interview_id,
                    self.base_url,
                    http_client=self.http_client,
                )
            except BlobUploadError as exc:
                upload_error = str(exc)
                logger.warning("recording upload failed; ending session anyway | err=%s", exc)

        reply = await self._request({"type": END_SESSION, "sessionId": session_id}, _of_type("session-ended"))
        self.session_id = None
        return {
            "message": reply.get("message"),
            "recordingUrl": recording_url,
            "uploadError": upload_error,
            "interviewId": self.interview_id,
        }
