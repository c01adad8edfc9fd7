"""Ordered, live-editable play order of a broadcast."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from aioradiorelay.errors import DuplicateTrackError

from .track import Track

logger = logging.getLogger(__name__)


class PlaybackQueue:
    """
    The broadcast order, insertion order is play order.

    The queue is owned by a Broadcast. Every method is synchronous so a mutation
    can never be observed half done by the scheduler task.
    """

    _tracks: list[Track]
    _current_index: int

    def __init__(self) -> None:
        """Initialize an empty queue."""
        self._tracks = []
        self._current_index = 0

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(list(self._tracks))

    def __bool__(self) -> bool:
        return bool(self._tracks)

    @property
    def tracks(self) -> tuple[Track, ...]:
        """Snapshot of all queued tracks in play order."""
        return tuple(self._tracks)

    @property
    def current_index(self) -> int:
        """Index of the current track, only meaningful while the queue is not empty."""
        return self._current_index

    @property
    def current(self) -> Track | None:
        """The track at the current index, None when the queue is empty."""
        if not self._tracks:
            return None
        return self._tracks[self._current_index]

    def find(self, track_id: str) -> Track | None:
        """Return the queued track with the given id."""
        for track in self._tracks:
            if track.track_id == track_id:
                return track
        return None

    def contains_source_key(self, source_key: str) -> bool:
        """Whether a track with this source key is queued anywhere."""
        return any(track.source_key == source_key for track in self._tracks)

    def append(self, track: Track) -> int:
        """Add a track to the tail and return its index."""
        self._tracks.append(track)
        logger.debug("Appended %s at position %d", track, len(self._tracks) - 1)
        return len(self._tracks) - 1

    def insert_after_current(self, track: Track) -> int:
        """
        Insert a track so it plays right after the current one.

        Tracks inserted earlier that have not played yet keep their turn, so
        several inserts play in the order they were made.

        Raises:
            DuplicateTrackError: A track with the same source key is already queued.

        Returns:
            The index the track was inserted at.
        """
        if track.source_key is not None and self.contains_source_key(track.source_key):
            raise DuplicateTrackError(track.source_key)
        if not self._tracks:
            self._current_index = 0
            return self.append(track)

        index = self._current_index + 1
        while index < len(self._tracks) and self._tracks[index].is_acquired:
            index += 1
        self._tracks.insert(index, track)
        logger.debug("Inserted %s at position %d", track, index)
        return index

    def remove_current(self) -> Track:
        """
        Remove the current track.

        The next track slides into the current index, wrapping to 0 when the
        removed track was the last one.
        """
        if not self._tracks:
            raise IndexError("remove_current() on an empty queue")
        track = self._tracks.pop(self._current_index)
        self._clamp()
        return track

    def remove(self, track_id: str) -> tuple[Track, bool] | None:
        """
        Remove a track by id.

        Returns:
            The removed track and whether it was the current one, or None if no
            track has this id.
        """
        for index, track in enumerate(self._tracks):
            if track.track_id == track_id:
                break
        else:
            return None
        was_current = index == self._current_index
        del self._tracks[index]
        if index < self._current_index:
            self._current_index -= 1
        self._clamp()
        return track, was_current

    def advance(self) -> Track | None:
        """Move to the next track, wrapping around, and return it."""
        if not self._tracks:
            return None
        self._current_index = (self._current_index + 1) % len(self._tracks)
        return self._tracks[self._current_index]

    def _clamp(self) -> None:
        if self._current_index >= len(self._tracks) or self._current_index < 0:
            self._current_index = 0
