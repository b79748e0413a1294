import asyncio

from interview_room.capture.media import DeviceSource, MediaStream, TrackKind
from interview_room.capture.settings import CaptureSettings


def fast_settings(**overrides) -> CaptureSettings:
    values = dict(
        acquire_timeout_sec=0.5,
        health_interval_sec=30.0,
        mute_grace_sec=0.02,
        reconnect_settle_sec=0.01,
        track_recovery_delay_sec=0.01,
        recovery_attempts=2,
        recorder_liveness_sec=30.0,
        recorder_restart_delay_sec=0.01,
        recorder_error_restart_delay_sec=0.02,
        stop_timeout_sec=0.05,
    )
    values.update(overrides)
    return CaptureSettings(**values)


class FakeDevices:
    def __init__(self, fail_tiers=()):
        self.microphone = DeviceSource(TrackKind.AUDIO, "Built-in Microphone")
        self.camera = DeviceSource(TrackKind.VIDEO, "FaceTime HD Camera")
        self.fail_tiers = set(fail_tiers)
        self.unavailable = False
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    async def get_user_media(self, constraints):
        self.calls.append(constraints.label)
        if self.gate is not None:
            await self.gate.wait()
        if self.unavailable or constraints.label in self.fail_tiers:
            raise RuntimeError(f"NotReadableError: {constraints.label}")
        tracks = []
        if constraints.wants_audio:
            tracks.append(self.microphone.open_track())
        if constraints.wants_video:
            tracks.append(self.camera.open_track())
        return MediaStream(tracks)


class FakeRecorder:
    def __init__(self, stream, mime_type, acknowledge_stop=True, flush=b""):
        self.stream = stream
        self.mime_type = mime_type
        self.state = "inactive"
        self.on_data = None
        self.on_stop = None
        self.on_error = None
        self.acknowledge_stop = acknowledge_stop
        self.flush = flush
        self.calls: list[str] = []
        self.timeslice_sec = None

    def start(self, timeslice_sec):
        self.calls.append("start")
        self.timeslice_sec = timeslice_sec
        self.state = "recording"

    def emit(self, data: bytes):
        self.on_data(data)

    def request_data(self):
        self.calls.append("request_data")
        if self.flush:
            self.on_data(self.flush)

    def stop(self):
        self.calls.append("stop")
        self.state = "inactive"
        if self.acknowledge_stop and self.on_stop is not None:
            self.on_stop()

    def pause(self):
        self.calls.append("pause")
        self.state = "paused"

    def resume(self):
        self.calls.append("resume")
        self.state = "recording"

    def crash(self):
        self.state = "inactive"
        self.on_stop()

    def fail(self, exc: Exception):
        self.on_error(exc)


class FakeRecorderFactory:
    def __init__(self, supported=("video/webm;codecs=vp8,opus", "video/webm"), acknowledge_stop=True, flush=b""):
        self.supported = set(supported)
        self.acknowledge_stop = acknowledge_stop
        self.flush = flush
        self.recorders: list[FakeRecorder] = []

    def is_type_supported(self, mime_type):
        return mime_type in self.supported

    def create(self, stream, mime_type):
        recorder = FakeRecorder(stream, mime_type, acknowledge_stop=self.acknowledge_stop, flush=self.flush)
        self.recorders.append(recorder)
        return recorder

    @property
    def live(self) -> list[FakeRecorder]:
        return [item for item in self.recorders if item.state != "inactive"]
