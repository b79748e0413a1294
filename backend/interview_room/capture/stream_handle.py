from __future__ import annotations

import logging

from interview_room.capture.devices import OutputSink
from interview_room.capture.media import MediaStream, MediaStreamTrack, TrackKind

logger = logging.getLogger("interview_room.capture.stream_handle")


class StreamHandle:
    """Single owner of the live stream, its backup clone and the preview sink binding.

    Streams adopted here are protected: only this handle stops their tracks,
    either through ``replace()`` during recovery or through ``release()``.
    """

    def __init__(self, sink: OutputSink | None = None):
        self.sink = sink
        self._current: MediaStream | None = None
        self._backup: MediaStream | None = None

    @property
    def current(self) -> MediaStream | None:
        return self._current

    @property
    def backup(self) -> MediaStream | None:
        return self._backup

    def owns(self, track: MediaStreamTrack) -> bool:
        return self._current is not None and self._current.has_track(track)

    def adopt(self, stream: MediaStream) -> MediaStream:
        stream.protect(self)
        self._current = stream
        self._backup = self._make_backup(stream)
        self.attach_sink()
        return stream

    def replace(self, stream: MediaStream) -> MediaStream | None:
        previous = self._current
        self._stop_owned(self._backup)
        self._backup = None
        if previous is not None and previous is not stream:
            self._stop_owned(previous)
        self.adopt(stream)
        logger.info(
            "stream replaced | old=%s new=%s",
            previous.id if previous is not None else "",
            stream.id,
        )
        return previous

    def promote_backup(self) -> MediaStream | None:
        backup = self._backup
        if backup is None or not backup.has_live_video(require_enabled=False):
            return None
        previous = self._current
        self._backup = None
        if previous is not None:
            self._stop_owned(previous)
        self.adopt(backup)
        logger.info("backup stream promoted | stream_id=%s", backup.id)
        return backup

    def attach_sink(self, force: bool = False) -> bool:
        """Point the sink at the current stream; returns True when the binding changed."""
        if self.sink is None:
            return False
        if not force and self.sink.src_object is self._current:
            return False
        self.sink.src_object = self._current
        return True

    def discard(self, stream: MediaStream | None) -> None:
        """Stop a stream this handle never adopted, e.g. a recovery probe."""
        if stream is None or stream is self._current or stream is self._backup:
            return
        stream.stop()

    def set_enabled(self, kind: TrackKind | str, enabled: bool) -> int:
        changed = 0
        for stream in (self._current, self._backup):
            if stream is None:
                continue
            for track in stream.tracks_of(kind):
                track.enabled = enabled
                changed += 1
        return changed

    def release(self) -> None:
        if self.sink is not None:
            self.sink.src_object = None
        self._stop_owned(self._backup)
        self._stop_owned(self._current)
        self._backup = None
        self._current = None

    def _stop_owned(self, stream: MediaStream | None) -> None:
        if stream is None:
            return
        stream.stop(owner=self)

    def _make_backup(self, stream: MediaStream) -> MediaStream | None:
        try:
            backup = stream.clone()
        except Exception as exc:
            logger.warning("backup clone failed | stream_id=%s err=%s", stream.id, exc)
            return None
        backup.protect(self)
        return backup
