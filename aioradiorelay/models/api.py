"""JSON payloads of the HTTP API.

Request bodies are parsed and responses are rendered through mashumaro, using
orjson for the actual encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import BroadcastState, JobStatus, Provenance


@dataclass
class AddTrackRequest(DataClassORJSONMixin):
    """Body of POST /add."""

    track: str
    """Free text search query or a direct YouTube URL."""


@dataclass
class TrackInfo(DataClassORJSONMixin):
    """Public description of a queued track."""

    track_id: str
    """Identifier usable with DELETE /queue/{track_id}."""
    name: str
    duration_ms: int
    bitrate_bps: int
    provenance: Provenance
    source_key: str | None = None

    class Config(BaseConfig):
        """Config for rendering json messages."""

        omit_none = True


@dataclass
class StatusPayload(DataClassORJSONMixin):
    """Snapshot of a broadcast returned by GET /status."""

    state: BroadcastState
    listeners: int
    queue: list[TrackInfo] = field(default_factory=list)
    current_index: int | None = None
    """Position of the now playing track in ``queue``."""
    now_playing: TrackInfo | None = None
    position_ms: int | None = None
    """How far into ``now_playing`` the broadcast is."""

    class Config(BaseConfig):
        """Config for rendering json messages."""

        omit_none = True


@dataclass
class AcquisitionJob(DataClassORJSONMixin):
    """State of one POST /add request."""

    job_id: str
    query: str
    status: JobStatus = JobStatus.PENDING
    message: str | None = None
    """Human readable outcome, set once the job is no longer pending."""
    track: TrackInfo | None = None
    """The inserted track once ``status`` is queued."""

    class Config(BaseConfig):
        """Config for rendering json messages."""

        omit_none = True


@dataclass
class ErrorPayload(DataClassORJSONMixin):
    """Body of every non 2xx JSON response."""

    error: str
    message: str
