from __future__ import annotations


class InterviewRoomError(Exception):
    """Base class for every error raised by the interview room."""


# ---------- capture / recording ----------

class DeviceUnavailable(InterviewRoomError):
    pass


class AcquisitionTimeout(InterviewRoomError):
    pass


class NoSupportedFormat(InterviewRoomError):
    pass


class RecorderFault(InterviewRoomError):
    """Recorder stopped or errored on its own; recovered by restarting."""


# ---------- session protocol ----------

class SessionNotFound(InterviewRoomError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionPaused(InterviewRoomError):
    def __init__(self, session_id: str):
        super().__init__("Interview is paused")
        self.session_id = session_id


class MalformedMessage(InterviewRoomError):
    pass


class InterviewNotFound(InterviewRoomError):
    def __init__(self, interview_id: int):
        super().__init__(f"Interview with ID {interview_id} not found")
        self.interview_id = interview_id


# ---------- external services ----------

class GenerationFailure(InterviewRoomError):
    pass


class ResultGenerationFailure(InterviewRoomError):
    pass


class BlobUploadError(InterviewRoomError):
    pass


class ServerError(InterviewRoomError):
    """An ``error`` reply received by the client."""
