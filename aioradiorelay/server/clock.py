"""Now-playing clock of a broadcast."""

from __future__ import annotations

from collections.abc import Callable

from .track import Track


class PlaybackClock:
    """
    Which track is playing and since when.

    Time comes from ``time_fn`` (the event loop clock by default), in seconds.
    Only the scheduler task calls start() and pause().
    """

    _time_fn: Callable[[], float]
    _track: Track | None
    _started_at: float | None

    def __init__(self, time_fn: Callable[[], float]) -> None:
        """Initialize a paused clock."""
        self._time_fn = time_fn
        self._track = None
        self._started_at = None

    @property
    def is_playing(self) -> bool:
        """Whether a track is active."""
        return self._track is not None

    @property
    def track(self) -> Track | None:
        """The active track, None while paused."""
        return self._track

    def start(self, track: Track) -> None:
        """Anchor ``track`` at the current time."""
        self._track = track
        self._started_at = self._time_fn()

    def pause(self) -> None:
        """Stop tracking any track."""
        self._track = None
        self._started_at = None

    def elapsed_ms(self) -> int:
        """Milliseconds since the active track started, 0 while paused."""
        if self._started_at is None:
            return 0
        return max(int((self._time_fn() - self._started_at) * 1000), 0)

    def remaining_ms(self) -> int:
        """Milliseconds until the active track ends, 0 while paused."""
        if self._track is None:
            return 0
        return max(self._track.effective_duration_ms - self.elapsed_ms(), 0)
