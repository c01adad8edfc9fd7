"""Track catalog: discovers resident tracks on disk and probes audio files."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import av
from av import logging as av_logging

from aioradiorelay.config import DEFAULT_BITRATE_BPS, DEFAULT_DURATION_MS
from aioradiorelay.models.types import Provenance

from .broadcast import BroadcastEvent, TrackEvictedEvent
from .track import SUPPORTED_EXTENSIONS, Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Timing metadata of an audio file."""

    duration_ms: int
    bitrate_bps: int
    size_bytes: int | None
    probed: bool
    """False if the defaults were used because probing failed."""


def probe_audio_file(
    path: Path,
    *,
    default_duration_ms: int = DEFAULT_DURATION_MS,
    default_bitrate_bps: int = DEFAULT_BITRATE_BPS,
) -> ProbeResult:
    """
    Read duration and bitrate of an audio file with PyAV.

    Never raises for unreadable media, the defaults are returned instead. This is
    blocking, run it in a worker thread.
    """
    try:
        size_bytes: int | None = path.stat().st_size
    except OSError:
        size_bytes = None

    try:
        with av_logging.Capture() as logs, av.open(str(path)) as container:
            duration_us = container.duration
            bitrate = container.bit_rate
    except (av.error.FFmpegError, OSError) as err:
        logger.warning("Could not probe %s, using defaults: %s", path.name, err)
        return ProbeResult(default_duration_ms, default_bitrate_bps, size_bytes, probed=False)
    for log in logs:
        logger.debug("Probing log from av: %s", log)

    duration_ms = round(duration_us / 1000) if duration_us else 0
    if duration_ms <= 0:
        duration_ms = default_duration_ms
    if not bitrate or bitrate <= 0:
        if size_bytes and duration_us:
            # Derive an average bitrate for containers that do not report one
            bitrate = int(size_bytes * 8 * 1_000_000 / duration_us)
        else:
            bitrate = default_bitrate_bps
    return ProbeResult(duration_ms, int(bitrate), size_bytes, probed=True)


class Catalog:
    """
    Source of playable tracks.

    Resident tracks come from ``audio_dir`` and cycle forever. Acquired tracks
    live in ``cache_dir`` and are released once they have played.
    """

    def __init__(
        self,
        audio_dir: Path,
        cache_dir: Path,
        *,
        default_duration_ms: int = DEFAULT_DURATION_MS,
        default_bitrate_bps: int = DEFAULT_BITRATE_BPS,
        delete_acquired: bool = True,
    ) -> None:
        """
        Initialize the catalog.

        Args:
            audio_dir: Directory scanned for resident tracks.
            cache_dir: Directory downloads are stored in.
            default_duration_ms: Duration used when a file cannot be probed.
            default_bitrate_bps: Bitrate used when a file cannot be probed.
            delete_acquired: Delete the file of an acquired track once evicted.
        """
        self.audio_dir = audio_dir
        self.cache_dir = cache_dir
        self.default_duration_ms = default_duration_ms
        self.default_bitrate_bps = default_bitrate_bps
        self.delete_acquired = delete_acquired

    def ensure_cache_dir(self) -> None:
        """Create the download cache directory if needed."""
        if not self.cache_dir.exists():
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created cache directory %s", self.cache_dir)

    async def scan_resident_tracks(self) -> list[Track]:
        """
        Return every supported audio file in ``audio_dir`` as a resident track.

        Files are ordered by name. A missing or unreadable directory yields an
        empty list, the broadcast then idles until the first track is added.
        """
        try:
            paths = await asyncio.to_thread(self._list_audio_files, self.audio_dir)
        except OSError:
            logger.exception("Failed to scan %s", self.audio_dir)
            return []

        tracks = [await self.probe(path) for path in paths]
        logger.info("Loaded %d resident track(s) from %s", len(tracks), self.audio_dir)
        for index, track in enumerate(tracks, start=1):
            logger.info("%d. %s", index, track)
        return tracks

    @staticmethod
    def _list_audio_files(directory: Path) -> list[Path]:
        if not directory.is_dir():
            logger.warning("Audio directory %s does not exist", directory)
            return []
        return sorted(
            path
            for path in directory.iterdir()
            if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS
        )

    async def probe(
        self,
        path: Path,
        *,
        display_name: str | None = None,
        provenance: Provenance = Provenance.RESIDENT,
        source_key: str | None = None,
    ) -> Track:
        """Build a track for ``path`` with probed timing metadata."""
        result = await asyncio.to_thread(
            probe_audio_file,
            path,
            default_duration_ms=self.default_duration_ms,
            default_bitrate_bps=self.default_bitrate_bps,
        )
        return Track(
            path=path,
            display_name=display_name or path.stem,
            duration_ms=result.duration_ms,
            bitrate_bps=result.bitrate_bps,
            provenance=provenance,
            source_key=source_key,
            size_bytes=result.size_bytes,
        )

    async def release(self, track: Track) -> None:
        """Delete the file of an acquired track that left the queue."""
        if not track.is_acquired or not self.delete_acquired:
            return
        try:
            await asyncio.to_thread(track.path.unlink, missing_ok=True)
        except OSError:
            logger.exception("Failed to delete %s", track.path)
        else:
            logger.info("Deleted played download %s", track.path.name)

    async def handle_broadcast_event(self, event: BroadcastEvent) -> None:
        """Release evicted tracks, use with Broadcast.add_event_listener()."""
        if isinstance(event, TrackEvictedEvent):
            await self.release(event.track)
