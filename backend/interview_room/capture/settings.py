from __future__ import annotations

from dataclasses import dataclass

RECORDING_MIME_TYPES = (
    "video/webm;codecs=vp9,opus",
    "video/webm;codecs=vp8,opus",
    "video/webm",
    "video/mp4",
)

CAMERA_DISCONNECTED_MESSAGE = "Camera disconnected. Please reconnect manually."
DEVICES_UNAVAILABLE_MESSAGE = (
    "Could not access any media devices. Please check your camera and microphone permissions."
)
CAPTURE_UNSUPPORTED_MESSAGE = "Media capture or recording is not supported in this environment."


@dataclass
class CaptureSettings:
    acquire_timeout_sec: float = 10.0
    health_interval_sec: float = 3.0
    mute_grace_sec: float = 2.0
    reconnect_settle_sec: float = 1.0
    track_recovery_delay_sec: float = 0.5
    recovery_attempts: int = 3

    recorder_timeslice_sec: float = 1.0
    recorder_liveness_sec: float = 10.0
    recorder_restart_delay_sec: float = 0.5
    recorder_error_restart_delay_sec: float = 2.0
    recorder_restart_attempts: int = 5
    stop_timeout_sec: float = 10.0

    def __post_init__(self):
        self.acquire_timeout_sec = max(0.01, float(self.acquire_timeout_sec))
        self.health_interval_sec = max(0.01, float(self.health_interval_sec))
        self.recorder_liveness_sec = max(0.01, float(self.recorder_liveness_sec))
        self.stop_timeout_sec = max(0.01, float(self.stop_timeout_sec))
        self.recovery_attempts = max(1, int(self.recovery_attempts))
        self.recorder_restart_attempts = max(1, int(self.recorder_restart_attempts))
