"""Byte level streaming primitives: offset estimation, file reading and pacing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from io import BufferedReader
from pathlib import Path

from aioradiorelay.config import DEFAULT_CHUNK_SIZE
from aioradiorelay.errors import TrackReadError

from .track import Track

logger = logging.getLogger(__name__)

MP3_SYNC_SEARCH_BYTES = 4096
"""How far past an estimated offset to look for an MP3 frame header."""


def estimate_byte_offset(track: Track, elapsed_ms: int, file_size: int | None = None) -> int:
    """
    Convert an elapsed playback time into an approximate byte offset.

    The estimate assumes a constant bitrate and ignores frame boundaries, a short
    glitch at the seek point is expected.

    Args:
        track: The track being played.
        elapsed_ms: Time since the track started.
        file_size: Size of the backing file if known, the result is kept below it.

    Returns:
        A byte offset in ``[0, file_size)``, or ``>= 0`` when the size is unknown.
    """
    offset = max(int(max(elapsed_ms, 0) / 1000 * (track.bitrate_bps / 8)), 0)
    if file_size is not None:
        offset = min(offset, max(file_size - 1, 0))
    return offset


def clamp_join_elapsed(track: Track, elapsed_ms: int, tail_guard_ms: int) -> int:
    """
    Clamp the elapsed time for a joining listener.

    A listener joining in the last ``tail_guard_ms`` of a track still gets a
    little audio instead of an empty read.
    """
    upper = max(track.effective_duration_ms - tail_guard_ms, 0)
    return min(max(elapsed_ms, 0), upper)


def find_mp3_frame_sync(data: bytes) -> int | None:
    """Return the position of the first MPEG audio frame sync word in ``data``."""
    for pos in range(len(data) - 1):
        if data[pos] == 0xFF and data[pos + 1] & 0xE0 == 0xE0:
            return pos
    return None


def _open_at(path: Path, offset: int, align_mp3: bool) -> BufferedReader:
    handle = path.open("rb")
    try:
        handle.seek(offset)
        if align_mp3 and offset > 0:
            window = handle.read(MP3_SYNC_SEARCH_BYTES)
            sync = find_mp3_frame_sync(window)
            handle.seek(offset + (sync or 0))
    except BaseException:
        handle.close()
        raise
    return handle


async def iter_track_chunks(
    track: Track,
    offset: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncGenerator[bytes, None]:
    """
    Yield the bytes of a track starting at ``offset``.

    Blocking file access runs in a worker thread. The file handle is closed when
    the generator finishes, is closed or is cancelled.

    Raises:
        TrackReadError: The file could not be opened or read.
    """
    align_mp3 = track.path.suffix.lower() == ".mp3"
    try:
        handle = await asyncio.to_thread(_open_at, track.path, offset, align_mp3)
    except OSError as err:
        raise TrackReadError(f"Cannot open {track.path}: {err}") from err
    try:
        while True:
            try:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
            except OSError as err:
                raise TrackReadError(f"Cannot read {track.path}: {err}") from err
            if not chunk:
                return
            yield chunk
    finally:
        handle.close()


class BytePacer:
    """
    Pace writes to approximate constant bitrate playback.

    The first ``burst_bytes`` pass without waiting so the listener can fill its
    buffer, afterwards each byte is released at ``bytes_per_second``.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        bytes_per_second: float,
        burst_bytes: int,
    ) -> None:
        """Initialize the pacer, the timeline starts at construction."""
        if bytes_per_second <= 0:
            raise ValueError("bytes_per_second must be positive")
        self._loop = loop
        self.bytes_per_second = bytes_per_second
        self.burst_bytes = max(burst_bytes, 0)
        self._start = loop.time()
        self.sent_bytes = 0

    def delay_for(self, byte_count: int) -> float:
        """Seconds to wait before ``byte_count`` more bytes may be sent."""
        paced = self.sent_bytes + byte_count - self.burst_bytes
        if paced <= 0:
            return 0.0
        due = self._start + paced / self.bytes_per_second
        return max(due - self._loop.time(), 0.0)

    async def wait(self, byte_count: int) -> None:
        """Sleep until ``byte_count`` more bytes are due, then account for them."""
        delay = self.delay_for(byte_count)
        if delay > 0:
            await asyncio.sleep(delay)
        self.sent_bytes += byte_count
