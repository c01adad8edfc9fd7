"""Runtime configuration of the radio relay."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_PORT = 8000
DEFAULT_STATION_NAME = "Highrise Radio"
STREAM_PATH = "/stream.mp3"

DEFAULT_DURATION_MS = 180_000
"""Assumed length of a track whose duration cannot be probed."""
DEFAULT_BITRATE_BPS = 128_000
"""Assumed bitrate of a track whose bitrate cannot be probed."""
DEFAULT_JOIN_TAIL_GUARD_MS = 1_000
DEFAULT_PREBUFFER_MS = 2_000
DEFAULT_CHUNK_SIZE = 4096
DEFAULT_DOWNLOAD_TIMEOUT_S = 120


@dataclass(frozen=True)
class RadioConfig:
    """All tunables of a relay, built from the command line."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = DEFAULT_PORT
    audio_dir: Path = Path("audio")
    """Resident tracks, scanned once at startup."""
    cache_dir: Path = Path("cache")
    """Downloaded tracks."""
    station_name: str = DEFAULT_STATION_NAME
    default_duration_ms: int = DEFAULT_DURATION_MS
    default_bitrate_bps: int = DEFAULT_BITRATE_BPS
    track_gap_ms: int = 0
    """Silence between two tracks."""
    join_tail_guard_ms: int = DEFAULT_JOIN_TAIL_GUARD_MS
    prebuffer_ms: int = DEFAULT_PREBUFFER_MS
    """Audio burst sent unpaced at the start of every track push."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    download_timeout_s: float = DEFAULT_DOWNLOAD_TIMEOUT_S
    ytdlp_path: str | None = None
    delete_acquired: bool = True
    """Delete downloads once they have played."""
    mdns: bool = False
    """Advertise the stream over mDNS."""
