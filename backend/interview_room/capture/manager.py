from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Callable

from core.logger import log_event
from interview_room.capture.devices import CONSTRAINT_TIERS, MediaConstraints, MediaDevices, OutputSink
from interview_room.capture.media import MediaStream, MediaStreamTrack, TrackKind
from interview_room.capture.retry import RecoveryTracker, RetryPolicy
from interview_room.capture.scheduler import Scheduler
from interview_room.capture.settings import (
    CAMERA_DISCONNECTED_MESSAGE,
    CAPTURE_UNSUPPORTED_MESSAGE,
    DEVICES_UNAVAILABLE_MESSAGE,
    CaptureSettings,
)
from interview_room.capture.stream_handle import StreamHandle
from interview_room.errors import AcquisitionTimeout, DeviceUnavailable

logger = logging.getLogger("interview_room.capture.manager")

HEALTH_JOB = "capture-health"


@dataclass
class CaptureStatus:
    is_initializing: bool = False
    stream_error: str | None = None
    video_track_active: bool = False
    is_mic_muted: bool = False
    is_camera_off: bool = False
    degraded: bool = False
    needs_manual_reconnect: bool = False
    constraint_tier: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class MediaCaptureManager:
    """Acquires the local camera/microphone stream and keeps it healthy.

    Acquisition walks the constraint tiers (ideal, minimal, audio only) and
    only one acquisition runs at a time; concurrent callers share its
    future. Track events and a periodic health check drive recovery through
    bounded ``RecoveryTracker`` instances that all run on one ``Scheduler``.
    """

    def __init__(
        self,
        devices: MediaDevices | None,
        sink: OutputSink | None = None,
        scheduler: Scheduler | None = None,
        settings: CaptureSettings | None = None,
        recorder_available: bool = True,
    ):
        self.devices = devices
        self.settings = settings or CaptureSettings()
        self.scheduler = scheduler or Scheduler()
        self.handle = StreamHandle(sink)
        self.status = CaptureStatus()
        self.recorder_available = recorder_available

        self._inflight: asyncio.Future | None = None
        self._video_requested = False
        self._closed = False
        # bumped by release(); acquisitions and recoveries started earlier must not install
        self._epoch = 0
        self._listeners: list[Callable[[MediaStream | None], None]] = []

        self._track_recovery = RecoveryTracker(
            "track-ended",
            RetryPolicy(
                max_attempts=self.settings.recovery_attempts,
                base_delay_sec=self.settings.track_recovery_delay_sec,
                backoff="exponential",
            ),
            self.scheduler,
            on_exhausted=self._on_recovery_exhausted,
        )
        self._health_recovery = RecoveryTracker(
            "stream-health",
            RetryPolicy(
                max_attempts=self.settings.recovery_attempts,
                base_delay_sec=self.settings.reconnect_settle_sec,
                backoff="exponential",
            ),
            self.scheduler,
            on_exhausted=self._on_recovery_exhausted,
        )

    # ================= PUBLIC API =================

    @property
    def stream(self) -> MediaStream | None:
        return self.handle.current

    @property
    def acquiring(self) -> bool:
        return self._inflight is not None

    def supports_capture(self) -> bool:
        return self.devices is not None and self.recorder_available

    def on_stream_change(self, listener: Callable[[MediaStream | None], None]) -> None:
        self._listeners.append(listener)

    async def acquire(self) -> MediaStream:
        if self._closed:
            raise DeviceUnavailable("capture manager is shut down")
        if not self.supports_capture():
            self.status.stream_error = CAPTURE_UNSUPPORTED_MESSAGE
            raise DeviceUnavailable(CAPTURE_UNSUPPORTED_MESSAGE)

        if self._inflight is not None:
            return await self._await_inflight()

        current = self.handle.current
        if current is not None and current.active:
            return current

        return await self._acquire_and_install()

    def toggle_track(self, kind: TrackKind | str) -> bool:
        """Flip ``enabled`` on every track of ``kind``; returns the new enabled state."""
        kind = TrackKind(kind)
        stream = self.handle.current
        tracks = stream.tracks_of(kind) if stream is not None else []
        if not tracks:
            logger.info("toggle ignored; no %s tracks", kind.value)
            return False

        enabled = not all(track.enabled for track in tracks)
        self.handle.set_enabled(kind, enabled)
        if kind == TrackKind.AUDIO:
            self.status.is_mic_muted = not enabled
        else:
            self.status.is_camera_off = not enabled
        logger.info("track toggled | kind=%s enabled=%s", kind.value, enabled)
        return enabled

    def release(self) -> None:
        self._epoch += 1
        self._inflight = None
        self.status.is_initializing = False
        self.scheduler.cancel(HEALTH_JOB)
        self._track_recovery.cancel()
        self._health_recovery.cancel()
        had_stream = self.handle.current is not None
        self.handle.release()
        self.status.video_track_active = False
        self.status.degraded = False
        if had_stream:
            logger.info("capture released")
            self._notify(None)

    async def reconnect(self) -> MediaStream:
        """Manual reconnect after recovery gave up."""
        self._track_recovery.reset()
        self._health_recovery.reset()
        self.status.needs_manual_reconnect = False
        self.status.stream_error = None
        if self._inflight is not None:
            return await self._await_inflight()
        return await self._acquire_and_install()

    async def check_health(self) -> None:
        if self._closed or self._inflight is not None:
            return
        stream = self.handle.current
        if stream is None or not self._video_requested or self.status.is_camera_off:
            return

        if stream.has_live_video():
            self.status.video_track_active = True
            if self._health_recovery.attempts:
                self._health_recovery.reset()
            return

        self.status.video_track_active = False
        self.status.degraded = True
        if self._health_recovery.busy or self._health_recovery.exhausted:
            return

        logger.warning("health check found no live video track | stream_id=%s", stream.id)
        if self.handle.attach_sink():
            await self._play_sink()
        self._health_recovery.schedule(self._recover_video)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self.release()
        self._listeners.clear()
        await self.scheduler.shutdown()
        logger.info("capture manager shut down")

    # ================= ACQUISITION =================

    async def _await_inflight(self) -> MediaStream:
        try:
            return await asyncio.wait_for(asyncio.shield(self._inflight), self.settings.acquire_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("waiting on in-flight acquisition timed out")
            raise AcquisitionTimeout(
                f"Media acquisition did not finish within {self.settings.acquire_timeout_sec:.0f}s"
            )

    async def _acquire_and_install(self, epoch: int | None = None) -> MediaStream:
        epoch = self._epoch if epoch is None else epoch
        if epoch != self._epoch:
            raise DeviceUnavailable("Capture was released")
        loop = asyncio.get_running_loop()
        inflight = loop.create_future()
        self._inflight = inflight
        self.status.is_initializing = True
        self.status.stream_error = None
        try:
            stream, constraints = await self._request_tiers()
        except asyncio.CancelledError:
            inflight.cancel()
            raise
        except Exception as exc:
            if isinstance(exc, DeviceUnavailable) and epoch == self._epoch:
                self.status.stream_error = str(exc)
            if not inflight.done():
                inflight.set_exception(exc)
                # consumed here so a future with no waiters does not warn
                inflight.exception()
            raise
        else:
            if self._closed or epoch != self._epoch:
                self.handle.discard(stream)
                logger.info("capture released during acquisition; stream discarded | stream_id=%s", stream.id)
                released = DeviceUnavailable("Capture was released during acquisition")
                if not inflight.done():
                    inflight.set_exception(released)
                    inflight.exception()
                raise released
            self._install(stream, constraints)
            if not inflight.done():
                inflight.set_result(stream)
            return stream
        finally:
            if self._inflight is inflight:
                self._inflight = None
                self.status.is_initializing = False

    async def _request_tiers(self) -> tuple[MediaStream, MediaConstraints]:
        for constraints in CONSTRAINT_TIERS:
            try:
                stream = await self.devices.get_user_media(constraints)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("getUserMedia failed | tier=%s err=%s", constraints.label, exc)
                continue
            if stream is None or not stream.get_tracks():
                logger.warning("getUserMedia returned no tracks | tier=%s", constraints.label)
                continue
            logger.info(
                "media acquired | tier=%s audio=%s video=%s",
                constraints.label,
                len(stream.get_audio_tracks()),
                len(stream.get_video_tracks()),
            )
            return stream, constraints
        raise DeviceUnavailable(DEVICES_UNAVAILABLE_MESSAGE)

    def _install(self, stream: MediaStream, constraints: MediaConstraints) -> None:
        if self.handle.current is None:
            self.handle.adopt(stream)
        else:
            self.handle.replace(stream)
        self._instrument(stream)
        self._apply_toggles()

        self._video_requested = constraints.wants_video
        self.status.constraint_tier = constraints.label
        self.status.video_track_active = stream.has_live_video()
        self.status.degraded = False
        self.status.needs_manual_reconnect = False
        log_event(
            "capture",
            "stream_installed",
            tier=constraints.label,
            audio_tracks=len(stream.get_audio_tracks()),
            video_tracks=len(stream.get_video_tracks()),
        )

        if not self.scheduler.is_scheduled(HEALTH_JOB):
            self.scheduler.every(self.settings.health_interval_sec, self.check_health, name=HEALTH_JOB)
        self._notify(stream)

    def _apply_toggles(self) -> None:
        if self.status.is_mic_muted:
            self.handle.set_enabled(TrackKind.AUDIO, False)
        if self.status.is_camera_off:
            self.handle.set_enabled(TrackKind.VIDEO, False)

    # ================= TRACK EVENTS =================

    def _instrument(self, stream: MediaStream) -> None:
        for track in stream.get_tracks():
            track.on("ended", self._on_track_ended)
            track.on("mute", self._on_track_muted)
            track.on("unmute", self._on_track_unmuted)

    def _on_track_ended(self, track: MediaStreamTrack) -> None:
        if self._closed or not self.handle.owns(track):
            return
        logger.warning("track ended | kind=%s label=%s", track.kind.value, track.label)
        if track.kind == TrackKind.VIDEO:
            self.status.video_track_active = False
        self.status.degraded = True
        kind = track.kind
        self._track_recovery.schedule(lambda: self._recover_track(kind))

    def _on_track_muted(self, track: MediaStreamTrack) -> None:
        if self._closed or not self.handle.owns(track):
            return
        logger.info("track muted | kind=%s", track.kind.value)
        if track.kind == TrackKind.VIDEO:
            self.status.video_track_active = False
        self.status.degraded = True
        self.scheduler.call_later(
            self.settings.mute_grace_sec,
            lambda: self._after_mute_grace(track),
            name=f"mute:{track.id}",
        )

    def _on_track_unmuted(self, track: MediaStreamTrack) -> None:
        self.scheduler.cancel(f"mute:{track.id}")
        if self._closed or not self.handle.owns(track):
            return
        logger.info("track unmuted | kind=%s", track.kind.value)
        if track.kind == TrackKind.VIDEO:
            self.status.video_track_active = True
        self.status.degraded = False

    async def _after_mute_grace(self, track: MediaStreamTrack) -> None:
        if self._closed or not self.handle.owns(track):
            return
        if not track.muted or not track.is_live:
            return
        logger.info("track still muted after grace; reattaching sink | kind=%s", track.kind.value)
        self.handle.attach_sink(force=True)
        await self._play_sink()

    # ================= RECOVERY =================

    async def _recover_track(self, kind: TrackKind) -> bool:
        epoch = self._epoch
        if self._released_since(epoch):
            return True
        probe = await self.devices.get_user_media(MediaConstraints.only(kind))
        if self._released_since(epoch):
            self.handle.discard(probe)
            return True
        if probe is None or not probe.tracks_of(kind):
            self.handle.discard(probe)
            return False
        # the probe only proves the device is back; the whole stream is replaced
        self.handle.discard(probe)
        await self._refresh_stream(epoch)
        return True

    async def _recover_video(self) -> bool:
        epoch = self._epoch
        if self._released_since(epoch):
            return True
        stream = self.handle.current
        if stream is not None and stream.has_live_video(require_enabled=False):
            return True

        promoted = self.handle.promote_backup()
        if promoted is not None:
            self._instrument(promoted)
            self._apply_toggles()
            self.status.video_track_active = promoted.has_live_video()
            self.status.degraded = False
            self._notify(promoted)
            return True

        await self._refresh_stream(epoch)
        return True

    async def _refresh_stream(self, epoch: int) -> MediaStream:
        if self._inflight is not None:
            return await self._await_inflight()
        return await self._acquire_and_install(epoch)

    def _released_since(self, epoch: int) -> bool:
        return self._closed or epoch != self._epoch or self.handle.current is None

    def _on_recovery_exhausted(self) -> None:
        log_event("capture", "recovery_exhausted", level=logging.ERROR)
        self.status.stream_error = CAMERA_DISCONNECTED_MESSAGE
        self.status.needs_manual_reconnect = True
        self.status.video_track_active = False

    # ================= HELPERS =================

    async def _play_sink(self) -> None:
        sink = self.handle.sink
        if sink is None:
            return
        try:
            await sink.play()
        except Exception as exc:
            logger.warning("sink play failed | err=%s", exc)

    def _notify(self, stream: MediaStream | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(stream)
            except Exception:
                logger.exception("stream change listener failed")
