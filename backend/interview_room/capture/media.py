from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Callable

logger = logging.getLogger("interview_room.capture.media")

TrackListener = Callable[["MediaStreamTrack"], None]

TRACK_EVENTS = ("ended", "mute", "unmute")


class TrackKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class TrackState(str, Enum):
    LIVE = "live"
    ENDED = "ended"


class DeviceSource:
    """A physical capture device; every track opened on it, clones included, shares its fate."""

    def __init__(self, kind: TrackKind | str, label: str = ""):
        self.kind = TrackKind(kind)
        self.label = label or f"{self.kind.value}-device"
        self._tracks: list[MediaStreamTrack] = []

    def open_track(self) -> "MediaStreamTrack":
        return MediaStreamTrack(self.kind, label=self.label, source=self)

    def _register(self, track: "MediaStreamTrack") -> None:
        self._tracks.append(track)

    def live_tracks(self) -> list["MediaStreamTrack"]:
        return [track for track in self._tracks if track.ready_state == TrackState.LIVE]

    def disconnect(self) -> None:
        for track in self.live_tracks():
            track.end()

    def set_muted(self, muted: bool) -> None:
        for track in self.live_tracks():
            track.set_muted(muted)


class MediaStreamTrack:
    def __init__(self, kind: TrackKind | str, label: str = "", source: DeviceSource | None = None):
        self.id = str(uuid.uuid4())
        self.kind = TrackKind(kind)
        self.label = label
        self.enabled = True
        self.muted = False
        self._ready_state = TrackState.LIVE
        self._listeners: dict[str, list[TrackListener]] = {name: [] for name in TRACK_EVENTS}
        self._source = source
        if source is not None:
            source._register(self)

    def __repr__(self) -> str:
        return f"MediaStreamTrack(kind={self.kind.value}, state={self._ready_state.value}, enabled={self.enabled})"

    @property
    def ready_state(self) -> TrackState:
        return self._ready_state

    @property
    def is_live(self) -> bool:
        return self._ready_state == TrackState.LIVE

    def on(self, event: str, listener: TrackListener) -> None:
        if event not in self._listeners:
            raise ValueError(f"unknown track event: {event}")
        self._listeners[event].append(listener)

    def clear_listeners(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(self)
            except Exception:
                logger.exception("track listener failed | kind=%s event=%s", self.kind.value, event)

    def stop(self) -> None:
        # a local stop does not fire "ended"
        self._ready_state = TrackState.ENDED

    def end(self) -> None:
        """The device went away: the track ends and listeners are told."""
        if self._ready_state == TrackState.ENDED:
            return
        self._ready_state = TrackState.ENDED
        self._emit("ended")

    def set_muted(self, muted: bool) -> None:
        muted = bool(muted)
        if muted == self.muted or not self.is_live:
            return
        self.muted = muted
        self._emit("mute" if muted else "unmute")

    def clone(self) -> "MediaStreamTrack":
        twin = MediaStreamTrack(self.kind, label=self.label, source=self._source)
        twin.enabled = self.enabled
        twin.muted = self.muted
        twin._ready_state = self._ready_state
        return twin


class MediaStream:
    def __init__(self, tracks: list[MediaStreamTrack] | None = None):
        self.id = str(uuid.uuid4())
        self._tracks: list[MediaStreamTrack] = list(tracks or [])
        self._owner: object | None = None

    def __repr__(self) -> str:
        return f"MediaStream(id={self.id[:8]}, tracks={self._tracks!r})"

    @property
    def protected(self) -> bool:
        return self._owner is not None

    def protect(self, owner: object) -> None:
        self._owner = owner

    def get_tracks(self) -> list[MediaStreamTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> list[MediaStreamTrack]:
        return [track for track in self._tracks if track.kind == TrackKind.AUDIO]

    def get_video_tracks(self) -> list[MediaStreamTrack]:
        return [track for track in self._tracks if track.kind == TrackKind.VIDEO]

    def tracks_of(self, kind: TrackKind | str) -> list[MediaStreamTrack]:
        kind = TrackKind(kind)
        return [track for track in self._tracks if track.kind == kind]

    def add_track(self, track: MediaStreamTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def has_track(self, track: MediaStreamTrack) -> bool:
        return any(item is track for item in self._tracks)

    @property
    def active(self) -> bool:
        return any(track.is_live for track in self._tracks)

    def has_live_video(self, require_enabled: bool = True) -> bool:
        return any(
            track.is_live and (track.enabled or not require_enabled)
            for track in self.get_video_tracks()
        )

    def clone(self) -> "MediaStream":
        return MediaStream([track.clone() for track in self._tracks])

    def stop(self, owner: object | None = None) -> bool:
        if self.protected and owner is not self._owner:
            logger.warning("refusing to stop protected stream | stream_id=%s", self.id)
            return False
        for track in self._tracks:
            track.clear_listeners()
            track.stop()
        return True
