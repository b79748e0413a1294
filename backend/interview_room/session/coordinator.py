from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import defaultdict
from typing import Awaitable, Callable, Protocol

from pydantic import ValidationError

from core.config import WELCOME_DELAY_SEC
from core.logger import log_event
from interview_room.conversation.orchestrator import ConversationOrchestrator
from interview_room.db.repository import InterviewRepository
from interview_room.errors import (
    InterviewNotFound,
    MalformedMessage,
    SessionNotFound,
    SessionPaused,
)
from interview_room.prompts import build_welcome_message
from interview_room.schemas import (
    InterviewCreate,
    InterviewRecord,
    InterviewResults,
    MessageRecord,
    SessionRefPayload,
    StartSessionPayload,
    Turn,
    UserMessagePayload,
)
from interview_room.session.store import InterviewSession, SessionStore
from interview_room.system_metrics import increment_metric, set_metric

logger = logging.getLogger("interview_room.session.coordinator")

SendFn = Callable[[dict], Awaitable[None]]

START_SESSION = "start-session"
USER_MESSAGE = "user-message"
PAUSE_SESSION = "pause-session"
RESUME_SESSION = "resume-session"
END_SESSION = "end-session"

_LEGACY_TYPES = {
    "start-interview": START_SESSION,
    "pause-interview": PAUSE_SESSION,
    "resume-interview": RESUME_SESSION,
    "end-interview": END_SESSION,
}

ERROR_PROCESS = "Failed to process message"
ERROR_UNKNOWN = "Unknown message type"
ERROR_NOT_FOUND = "Session not found"
ERROR_PAUSED = "Interview is paused"
ERROR_EMPTY_MESSAGE = "Message must not be empty"
ERROR_CREATE_INTERVIEW = "Failed to create interview"
ERROR_START = "Failed to start interview"
ERROR_END = "Failed to end interview"


class ResultGenerator(Protocol):
    async def generate_results(self, interview: InterviewRecord, messages: list[MessageRecord]) -> InterviewResults:
        ...


def normalize_message_type(raw_type) -> str:
    normalized = str(raw_type or "").strip().lower().replace("_", "-")
    return _LEGACY_TYPES.get(normalized, normalized)


def error_reply(message: str) -> dict:
    return {"type": "error", "message": message}


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionCoordinator:
    """Per-session protocol state machine: created -> active <-> paused -> ended."""

    def __init__(
        self,
        store: SessionStore,
        repository: InterviewRepository,
        orchestrator: ConversationOrchestrator,
        result_generator: ResultGenerator,
        welcome_delay_sec: float = WELCOME_DELAY_SEC,
    ):
        self.store = store
        self.repository = repository
        self.orchestrator = orchestrator
        self.result_generator = result_generator
        self.welcome_delay_sec = max(0.0, float(welcome_delay_sec))
        self._pending: dict[str, set[asyncio.Task]] = defaultdict(set)
        self._unsent_welcomes: dict[str, str] = {}
        self._welcome_tasks: dict[str, asyncio.Task] = {}
        self._handlers = {
            START_SESSION: self._handle_start_session,
            USER_MESSAGE: self._handle_user_message,
            PAUSE_SESSION: self._handle_pause_session,
            RESUME_SESSION: self._handle_resume_session,
            END_SESSION: self._handle_end_session,
        }

    # ================= ENTRY POINTS =================

    async def handle_text(self, raw: str, send: SendFn, connection_id: str = "") -> None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise MalformedMessage("message must be a JSON object")
        except (ValueError, MalformedMessage) as exc:
            increment_metric("protocol_errors", 1)
            logger.warning("malformed message | connection_id=%s err=%s", connection_id, exc)
            await send(error_reply(ERROR_PROCESS))
            return
        await self.handle_message(data, send, connection_id)

    async def handle_message(self, data: dict, send: SendFn, connection_id: str = "") -> None:
        message_type = normalize_message_type(data.get("type"))
        handler = self._handlers.get(message_type)
        if handler is None:
            increment_metric("protocol_errors", 1)
            logger.info("unknown message type | type=%s", data.get("type"))
            await send(error_reply(ERROR_UNKNOWN))
            return

        try:
            await handler(data, send, connection_id)
        except ValidationError as exc:
            increment_metric("protocol_errors", 1)
            logger.warning("invalid payload | type=%s errors=%s", message_type, exc.error_count())
            await send(error_reply(ERROR_PROCESS))
        except SessionNotFound as exc:
            increment_metric("protocol_errors", 1)
            logger.info("session not found | type=%s session_id=%s", message_type, exc.session_id)
            await send(error_reply(ERROR_NOT_FOUND))
        except SessionPaused as exc:
            increment_metric("protocol_errors", 1)
            logger.info("message rejected while paused | session_id=%s", exc.session_id)
            await send(error_reply(ERROR_PAUSED))
        except Exception:
            increment_metric("protocol_errors", 1)
            logger.exception("message handling failed | type=%s", message_type)
            await send(error_reply(ERROR_PROCESS))

    async def connection_closed(self, connection_id: str) -> None:
        for task in list(self._pending.pop(connection_id, set())):
            task.cancel()
        detached = await self.store.detach_connection(connection_id)
        if detached:
            logger.info("connection closed; sessions detached | connection_id=%s count=%s", connection_id, detached)

    async def reap_idle_sessions(self, ttl_sec: float) -> int:
        removed = await self.store.reap_idle(ttl_sec)
        if removed:
            for session_id in list(self._unsent_welcomes):
                if await self.store.get(session_id) is None:
                    self._unsent_welcomes.pop(session_id, None)
            increment_metric("sessions_reaped", removed)
            set_metric("sessions_active", float(await self.store.count()))
            logger.info("reaped idle sessions=%s ttl_sec=%s", removed, ttl_sec)
        return removed

    async def wait_idle(self) -> None:
        tasks = [task for bucket in self._pending.values() for task in bucket]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ================= HANDLERS =================

    async def _handle_start_session(self, data: dict, send: SendFn, connection_id: str) -> None:
        payload = StartSessionPayload.model_validate(data)

        if not payload.interview_id:
            try:
                interview = await self.repository.create_interview(
                    InterviewCreate(
                        job_description=payload.job_description,
                        skills=payload.skills,
                        interview_type=payload.interview_type,
                        difficulty=payload.difficulty,
                    )
                )
            except Exception as exc:
                logger.warning("interview creation failed | err=%s", exc)
                await send(error_reply(ERROR_CREATE_INTERVIEW))
                return
        else:
            interview = await self.repository.get_interview(payload.interview_id)
            if interview is None:
                logger.warning("start for unknown interview | interview_id=%s", payload.interview_id)
                await send(error_reply(ERROR_START))
                return

        session = await self.store.create(interview.id, connection_id=connection_id)
        increment_metric("sessions_started", 1)
        set_metric("sessions_active", float(await self.store.count()))
        log_event("session_coordinator", "session_created", session.session_id, interview_id=interview.id)

        # the welcome is the first turn even when an answer arrives before it is pushed
        welcome = build_welcome_message(interview.difficulty, interview.interview_type, interview.skills)
        await self.repository.create_message(interview.id, "ai", welcome)
        await self.store.append_turn(session.session_id, Turn(role="assistant", content=welcome))
        self._unsent_welcomes[session.session_id] = welcome

        await send({"type": "session-created", "sessionId": session.session_id, "interviewId": interview.id})
        task = self._spawn(connection_id, self._deliver_welcome(session.session_id, send))
        self._welcome_tasks[session.session_id] = task
        task.add_done_callback(lambda _: self._welcome_tasks.pop(session.session_id, None))

    async def _deliver_welcome(self, session_id: str, send: SendFn) -> None:
        if self.welcome_delay_sec:
            await asyncio.sleep(self.welcome_delay_sec)
        await self._push_welcome(session_id, send)

    async def _push_welcome(self, session_id: str, send: SendFn) -> None:
        welcome = self._unsent_welcomes.pop(session_id, None)
        if welcome is None:
            return
        try:
            await send({"type": "typing", "isTyping": True})
            await send({"type": "typing", "isTyping": False})
            await send(self._assistant_message(welcome))
        except Exception:
            logger.exception("welcome delivery failed | session_id=%s", session_id)

    async def _flush_welcome(self, session_id: str, send: SendFn) -> None:
        task = self._welcome_tasks.get(session_id)
        if session_id in self._unsent_welcomes:
            if task is not None and not task.done():
                task.cancel()
            await self._push_welcome(session_id, send)
        elif task is not None and not task.done():
            # already mid-push; let it finish so frames do not interleave
            await asyncio.gather(task, return_exceptions=True)

    async def _handle_user_message(self, data: dict, send: SendFn, connection_id: str) -> None:
        payload = UserMessagePayload.model_validate(data)
        session = await self._require_session(payload.session_id)
        if session.is_paused:
            raise SessionPaused(session.session_id)

        try:
            user_turn = Turn(role="user", content=payload.message)
        except ValidationError:
            await send(error_reply(ERROR_EMPTY_MESSAGE))
            return

        interview = await self.repository.get_interview(session.interview_id)
        if interview is None:
            raise InterviewNotFound(session.interview_id)

        if connection_id and session.connection_id != connection_id:
            await self.store.attach(session.session_id, connection_id)
        await self._flush_welcome(session.session_id, send)

        await self.repository.create_message(session.interview_id, "user", user_turn.content)
        session = await self.store.append_turn(session.session_id, user_turn)
        increment_metric("messages_handled", 1)
        log_event(
            "session_coordinator",
            "user_message",
            session.session_id,
            conversation_length=len(session.conversation),
        )

        await send({"type": "typing", "isTyping": True})
        try:
            reply = await self.orchestrator.generate_next_turn(interview, session.conversation)
            await send(self._assistant_message(reply))
        finally:
            await send({"type": "typing", "isTyping": False})

        # a pause received mid-generation does not discard the reply
        await self.repository.create_message(session.interview_id, "ai", reply)
        try:
            await self.store.append_turn(session.session_id, Turn(role="assistant", content=reply))
        except SessionNotFound:
            logger.info("session ended during generation | session_id=%s", session.session_id)

    async def _handle_pause_session(self, data: dict, send: SendFn, connection_id: str) -> None:
        payload = SessionRefPayload.model_validate(data)
        await self.store.set_paused(payload.session_id, True)
        log_event("session_coordinator", "session_paused", payload.session_id)
        await send({"type": "session-paused"})

    async def _handle_resume_session(self, data: dict, send: SendFn, connection_id: str) -> None:
        payload = SessionRefPayload.model_validate(data)
        await self.store.set_paused(payload.session_id, False)
        log_event("session_coordinator", "session_resumed", payload.session_id)
        await send({"type": "session-resumed"})

    async def _handle_end_session(self, data: dict, send: SendFn, connection_id: str) -> None:
        payload = SessionRefPayload.model_validate(data)
        session = await self._require_session(payload.session_id)

        interview = await self.repository.get_interview(session.interview_id)
        if interview is None:
            raise InterviewNotFound(session.interview_id)
        messages = await self.repository.get_messages(session.interview_id)

        try:
            results = await self.result_generator.generate_results(interview, messages)
        except Exception as exc:
            increment_metric("result_generation_failures", 1)
            logger.warning("result generation failed; session kept | session_id=%s err=%s", session.session_id, exc)
            await self.store.touch(session.session_id)
            await send(error_reply(ERROR_END))
            return

        await self.repository.create_result(session.interview_id, results)
        await self.repository.update_interview_status(session.interview_id, "completed")
        if session.created_at:
            await self.repository.update_interview_duration(
                session.interview_id, int(time.time() - session.created_at)
            )
        await self.store.remove(session.session_id)
        self._unsent_welcomes.pop(session.session_id, None)
        increment_metric("sessions_ended", 1)
        set_metric("sessions_active", float(await self.store.count()))
        log_event(
            "session_coordinator",
            "session_ended",
            session.session_id,
            interview_id=session.interview_id,
            overall_rating=results.overall_rating,
        )
        await send({"type": "session-ended", "message": "Interview completed successfully"})

    # ================= HELPERS =================

    async def _require_session(self, session_id: str) -> InterviewSession:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    @staticmethod
    def _assistant_message(text: str) -> dict:
        return {
            "type": "assistant-message",
            "id": str(uuid.uuid4()),
            "text": text,
            "timestamp": _now_ms(),
        }

    def _spawn(self, connection_id: str, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        bucket = self._pending[connection_id]
        bucket.add(task)

        def _done(finished: asyncio.Task) -> None:
            bucket.discard(finished)
            if not bucket and self._pending.get(connection_id) is bucket:
                self._pending.pop(connection_id, None)

        task.add_done_callback(_done)
        return task
