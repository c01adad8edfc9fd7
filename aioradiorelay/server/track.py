"""Playable tracks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path

from aioradiorelay.config import DEFAULT_BITRATE_BPS, DEFAULT_DURATION_MS
from aioradiorelay.models.api import TrackInfo
from aioradiorelay.models.types import Provenance

CONTENT_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
}
SUPPORTED_EXTENSIONS = frozenset(CONTENT_TYPES)


@dataclass(frozen=True, eq=False)
class Track:
    """
    One playable audio item.

    Tracks are immutable, the scheduler captures ``duration_ms`` when the track
    starts and never re-reads it. Equality is identity so the same file can be
    queued twice as two distinct entries.
    """

    path: Path
    """Backing file of the track."""
    display_name: str
    """Name used for logging and the status API."""
    duration_ms: int = DEFAULT_DURATION_MS
    """Estimated or probed duration, authoritative for scheduling."""
    bitrate_bps: int = DEFAULT_BITRATE_BPS
    """Nominal bitrate, only used for byte offset estimation and pacing."""
    provenance: Provenance = Provenance.RESIDENT
    source_key: str | None = None
    """External identity used to reject duplicate inserts."""
    size_bytes: int | None = None
    """Size of the backing file when it was probed."""
    track_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        """Validate the timing fields."""
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")
        if self.bitrate_bps <= 0:
            raise ValueError(f"bitrate_bps must be > 0, got {self.bitrate_bps}")

    @property
    def is_acquired(self) -> bool:
        """Whether this track is evicted after it has played once."""
        return self.provenance is Provenance.ACQUIRED

    @property
    def effective_duration_ms(self) -> int:
        """Duration safe to use in offset math, never below 1 ms."""
        return max(self.duration_ms, 1)

    @property
    def content_type(self) -> str:
        """HTTP content type derived from the file extension."""
        return CONTENT_TYPES.get(self.path.suffix.lower(), "application/octet-stream")

    def __str__(self) -> str:
        return f"{self.display_name} ({self.duration_ms // 1000}s)"

    def to_info(self) -> TrackInfo:
        """Describe this track for the HTTP API."""
        return TrackInfo(
            track_id=self.track_id,
            name=self.display_name,
            duration_ms=self.duration_ms,
            bitrate_bps=self.bitrate_bps,
            provenance=self.provenance,
            source_key=self.source_key,
        )
