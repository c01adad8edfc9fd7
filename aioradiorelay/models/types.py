"""Enum types used by the radio relay."""

from enum import Enum


class Provenance(Enum):
    """Where a track came from, which decides how often it plays."""

    RESIDENT = "resident"
    """Permanent catalog member, replayed in cycle forever."""
    ACQUIRED = "acquired"
    """Fetched on demand, plays once and is evicted afterwards."""


class BroadcastState(Enum):
    """Enum for broadcast states."""

    IDLE = "idle"
    """The queue is empty, joins are answered with "nothing playing"."""
    PLAYING = "playing"
    """A track is active and listeners can join."""


class JobStatus(Enum):
    """Enum for acquisition job states."""

    PENDING = "pending"
    """Searching or downloading."""
    QUEUED = "queued"
    """The track was inserted after the current one."""
    DUPLICATE = "duplicate"
    """The resolved source is already queued, nothing was inserted."""
    FAILED = "failed"
    """The track could not be acquired, the queue is unchanged."""
