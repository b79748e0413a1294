from interview_room.capture.client import InterviewClient, upload_recording
from interview_room.capture.devices import CONSTRAINT_TIERS, MediaConstraints, MediaDevices, OutputSink, PreviewSink
from interview_room.capture.manager import CaptureStatus, MediaCaptureManager
from interview_room.capture.media import DeviceSource, MediaStream, MediaStreamTrack, TrackKind, TrackState
from interview_room.capture.recording import RecorderBackend, RecorderFactory, RecordingArtifact, RecordingController
from interview_room.capture.retry import RecoveryTracker, RetryPolicy
from interview_room.capture.scheduler import Scheduler
from interview_room.capture.settings import CaptureSettings
from interview_room.capture.stream_handle import StreamHandle

__all__ = [
    "CONSTRAINT_TIERS",
    "CaptureSettings",
    "CaptureStatus",
    "DeviceSource",
    "InterviewClient",
    "MediaCaptureManager",
    "MediaConstraints",
    "MediaDevices",
    "MediaStream",
    "MediaStreamTrack",
    "OutputSink",
    "PreviewSink",
    "RecorderBackend",
    "RecorderFactory",
    "RecordingArtifact",
    "RecordingController",
    "RecoveryTracker",
    "RetryPolicy",
    "Scheduler",
    "StreamHandle",
    "TrackKind",
    "TrackState",
    "upload_recording",
]
