from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from core.logger import log_event
from core.state import RecordingState
from interview_room.capture.manager import MediaCaptureManager
from interview_room.capture.media import MediaStream
from interview_room.capture.retry import RecoveryTracker, RetryPolicy
from interview_room.capture.settings import RECORDING_MIME_TYPES, CaptureSettings
from interview_room.errors import NoSupportedFormat, RecorderFault

logger = logging.getLogger("interview_room.capture.recording")

LIVENESS_JOB = "recorder-liveness"


class RecorderBackend(Protocol):
    """MediaRecorder-shaped encoder. ``state`` is ``inactive``, ``recording`` or ``paused``."""

    state: str
    on_data: Callable[[bytes], None] | None
    on_stop: Callable[[], None] | None
    on_error: Callable[[Exception], None] | None

    def start(self, timeslice_sec: float) -> None:
        ...

    def stop(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def request_data(self) -> None:
        ...


class RecorderFactory(Protocol):
    def is_type_supported(self, mime_type: str) -> bool:
        ...

    def create(self, stream: MediaStream, mime_type: str) -> RecorderBackend:
        ...


@dataclass
class RecordingArtifact:
    data: bytes
    mime_type: str
    chunk_count: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def filename(self) -> str:
        return "recording.mp4" if self.mime_type == "video/mp4" else "recording.webm"


class RecordingController:
    """Turns the captured stream into one ordered chunk sequence.

    The recorder runs on a protected clone of the live stream. Faults
    (unexpected stop, recorder error, silent inactivity) restart a new
    recorder that keeps appending to the same sequence; only ``stop()``
    finalizes it.
    """

    def __init__(
        self,
        capture: MediaCaptureManager,
        factory: RecorderFactory,
        settings: CaptureSettings | None = None,
    ):
        self.capture = capture
        self.factory = factory
        self.settings = settings or capture.settings
        self.scheduler = capture.scheduler
        self.state = RecordingState.INACTIVE
        self.mime_type = ""
        self.error: str | None = None
        self.restart_count = 0

        self._chunks: list[bytes] = []
        self._recorder: RecorderBackend | None = None
        self._recording_stream: MediaStream | None = None
        self._generation = 0
        self._stop_event: asyncio.Event | None = None
        self._stop_lock = asyncio.Lock()
        self._restart = RecoveryTracker(
            "recorder-restart",
            RetryPolicy(
                max_attempts=self.settings.recorder_restart_attempts,
                base_delay_sec=self.settings.recorder_restart_delay_sec,
            ),
            self.scheduler,
            on_exhausted=self._on_restart_exhausted,
        )

    @property
    def chunks(self) -> list[bytes]:
        return list(self._chunks)

    @property
    def recorder(self) -> RecorderBackend | None:
        return self._recorder

    def select_mime_type(self) -> str:
        for mime_type in RECORDING_MIME_TYPES:
            try:
                if self.factory.is_type_supported(mime_type):
                    return mime_type
            except Exception as exc:
                logger.warning("format probe failed | mime_type=%s err=%s", mime_type, exc)
        raise NoSupportedFormat("No supported recording format available")

    async def start(self) -> None:
        if self.state in (RecordingState.RECORDING, RecordingState.PAUSED):
            logger.info("recording already active | state=%s", self.state.value)
            return
        if self.state == RecordingState.STOPPING:
            raise RecorderFault("Recording is still stopping")

        mime_type = self.select_mime_type()
        stream = self.capture.stream
        if stream is None or not stream.active:
            stream = await self.capture.acquire()

        self._chunks = []
        self.mime_type = mime_type
        self.error = None
        self.restart_count = 0
        self._restart.reset()
        self._launch(stream)
        self.state = RecordingState.RECORDING
        self.scheduler.every(self.settings.recorder_liveness_sec, self.check_liveness, name=LIVENESS_JOB)
        log_event("recording", "started", mime_type=mime_type)

    def pause(self) -> bool:
        if self.state != RecordingState.RECORDING:
            return False
        recorder = self._recorder
        if recorder is not None and recorder.state == "recording":
            try:
                recorder.pause()
            except Exception as exc:
                logger.warning("recorder pause failed | err=%s", exc)
        self.state = RecordingState.PAUSED
        return True

    def resume(self) -> bool:
        if self.state != RecordingState.PAUSED:
            return False
        self.state = RecordingState.RECORDING
        recorder = self._recorder
        if recorder is None or recorder.state == "inactive":
            self._restart.schedule(self._restart_recorder, delay_sec=0)
        elif recorder.state == "paused":
            try:
                recorder.resume()
            except Exception as exc:
                logger.warning("recorder resume failed | err=%s", exc)
                self._restart.schedule(self._restart_recorder, delay_sec=0)
        return True

    async def stop(self) -> RecordingArtifact | None:
        async with self._stop_lock:
            if self.state == RecordingState.INACTIVE:
                return self._assemble()

            self.scheduler.cancel(LIVENESS_JOB)
            self._restart.cancel()
            self.state = RecordingState.STOPPING

            recorder = self._recorder
            if recorder is not None and recorder.state != "inactive":
                self._stop_event = asyncio.Event()
                try:
                    if recorder.state == "paused":
                        recorder.resume()
                    recorder.request_data()
                    recorder.stop()
                except Exception as exc:
                    logger.warning("recorder stop failed; assembling collected chunks | err=%s", exc)
                else:
                    try:
                        await asyncio.wait_for(self._stop_event.wait(), self.settings.stop_timeout_sec)
                    except asyncio.TimeoutError:
                        logger.warning(
                            "recorder stop timed out after %.0fs; assembling collected chunks",
                            self.settings.stop_timeout_sec,
                        )
                self._stop_event = None

            self._discard_recorder()
            self.state = RecordingState.INACTIVE
            artifact = self._assemble()
            logger.info(
                "recording stopped | chunks=%s bytes=%s restarts=%s",
                len(self._chunks),
                artifact.size if artifact is not None else 0,
                self.restart_count,
            )
            return artifact

    async def check_liveness(self) -> None:
        if self.state != RecordingState.RECORDING:
            return
        recorder = self._recorder
        if recorder is not None and recorder.state != "inactive":
            return
        logger.warning("recorder inactive while recording; restarting")
        self._restart.schedule(self._restart_recorder, delay_sec=0)

    # ================= RECORDER LIFECYCLE =================

    def _launch(self, stream: MediaStream) -> None:
        self._discard_recorder()
        clone = stream.clone()
        clone.protect(self)
        self._generation += 1
        generation = self._generation

        recorder = self.factory.create(clone, self.mime_type)
        recorder.on_data = self._handle_data
        recorder.on_stop = lambda: self._handle_stop(generation)
        recorder.on_error = lambda exc: self._handle_error(generation, exc)
        self._recorder = recorder
        self._recording_stream = clone
        try:
            recorder.start(self.settings.recorder_timeslice_sec)
        except Exception as exc:
            self._discard_recorder()
            raise RecorderFault(f"Recorder failed to start: {exc}") from exc

    def _discard_recorder(self) -> None:
        recorder = self._recorder
        self._recorder = None
        # stop/error events from the discarded recorder are ignored from here on
        self._generation += 1
        if recorder is not None and recorder.state != "inactive":
            try:
                recorder.stop()
            except Exception as exc:
                logger.warning("discarded recorder did not stop cleanly | err=%s", exc)
        if self._recording_stream is not None:
            self._recording_stream.stop(owner=self)
            self._recording_stream = None

    async def _restart_recorder(self) -> bool:
        if self.state != RecordingState.RECORDING:
            return True
        recorder = self._recorder
        if recorder is not None and recorder.state == "recording":
            return True

        stream = self.capture.stream
        if stream is None or not stream.active:
            stream = await self.capture.acquire()
        self._launch(stream)
        self.restart_count += 1
        self.error = None
        log_event("recording", "restarted", restarts=self.restart_count, chunks=len(self._chunks))
        return True

    def _on_restart_exhausted(self) -> None:
        self.error = "Recording stopped unexpectedly. Please restart the recording."

    # ================= RECORDER EVENTS =================

    def _handle_data(self, data: bytes) -> None:
        # chunks from any recorder generation are kept, in arrival order
        if not data:
            return
        self._chunks.append(bytes(data))

    def _handle_stop(self, generation: int) -> None:
        if generation != self._generation:
            return
        if self.state == RecordingState.STOPPING:
            if self._stop_event is not None:
                self._stop_event.set()
            return
        if self.state in (RecordingState.RECORDING, RecordingState.PAUSED):
            fault = RecorderFault("recorder stopped unexpectedly")
            logger.warning("%s | state=%s chunks=%s", fault, self.state.value, len(self._chunks))
            self.error = str(fault)
            if self.state == RecordingState.RECORDING:
                self._restart.schedule(self._restart_recorder, delay_sec=self.settings.recorder_restart_delay_sec)

    def _handle_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("recorder error | state=%s err=%s", self.state.value, exc)
        self.error = str(exc) or exc.__class__.__name__
        if self.state == RecordingState.STOPPING:
            if self._stop_event is not None:
                self._stop_event.set()
            return
        if self.state == RecordingState.RECORDING:
            self._restart.schedule(self._restart_recorder, delay_sec=self.settings.recorder_error_restart_delay_sec)

    def _assemble(self) -> RecordingArtifact | None:
        if not self._chunks:
            return None
        container = self.mime_type.split(";")[0].strip() or "video/webm"
        return RecordingArtifact(data=b"".join(self._chunks), mime_type=container, chunk_count=len(self._chunks))
