# backend/core/state.py

from enum import Enum


class SessionPhase(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class RecordingState(str, Enum):
    INACTIVE = "inactive"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
