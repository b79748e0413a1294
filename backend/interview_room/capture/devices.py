from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from interview_room.capture.media import MediaStream, TrackKind


@dataclass(frozen=True)
class MediaConstraints:
    audio: bool | dict = True
    video: bool | dict = True
    label: str = "custom"

    @property
    def wants_audio(self) -> bool:
        return bool(self.audio)

    @property
    def wants_video(self) -> bool:
        return bool(self.video)

    @classmethod
    def only(cls, kind: TrackKind | str) -> "MediaConstraints":
        kind = TrackKind(kind)
        return cls(
            audio=kind == TrackKind.AUDIO,
            video=kind == TrackKind.VIDEO,
            label=f"{kind.value}_only",
        )


IDEAL_CONSTRAINTS = MediaConstraints(
    audio={
        "echo_cancellation": True,
        "noise_suppression": True,
        "auto_gain_control": True,
    },
    video={
        "width": {"ideal": 1280, "min": 640},
        "height": {"ideal": 720, "min": 480},
        "frame_rate": {"ideal": 30, "min": 15},
    },
    label="ideal",
)
MINIMAL_CONSTRAINTS = MediaConstraints(audio=True, video=True, label="minimal")
AUDIO_ONLY_CONSTRAINTS = MediaConstraints(audio=True, video=False, label="audio_only")

CONSTRAINT_TIERS = (IDEAL_CONSTRAINTS, MINIMAL_CONSTRAINTS, AUDIO_ONLY_CONSTRAINTS)


class MediaDevices(Protocol):
    async def get_user_media(self, constraints: MediaConstraints) -> MediaStream:
        ...


class OutputSink(Protocol):
    """Preview surface the live stream is rendered into."""

    src_object: MediaStream | None

    async def play(self) -> None:
        ...


@dataclass
class PreviewSink:
    src_object: MediaStream | None = None
    play_count: int = 0

    async def play(self) -> None:
        self.play_count += 1
