"""Shared pytest fixtures for the radio relay tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from aioradiorelay.models.types import Provenance
from aioradiorelay.server.track import Track


class FakeSink:
    """Collects written bytes in memory, optionally failing like a closed socket."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.chunks: list[bytes] = []
        self.fail_after = fail_after

    async def write(self, data: bytes) -> None:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise ConnectionResetError("peer went away")
        self.chunks.append(data)

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture
def make_track(tmp_path: Path) -> Callable[..., Track]:
    """Create a track backed by a real file filled with a repeated marker byte."""

    def _make(
        name: str,
        *,
        duration_ms: int = 200,
        bitrate_bps: int = 80_000,
        size: int | None = None,
        marker: bytes = b"a",
        provenance: Provenance = Provenance.RESIDENT,
        source_key: str | None = None,
        suffix: str = ".wav",
    ) -> Track:
        if size is None:
            size = duration_ms * bitrate_bps // 8000
        path = tmp_path / f"{name}{suffix}"
        path.write_bytes(marker * size)
        return Track(
            path=path,
            display_name=name,
            duration_ms=duration_ms,
            bitrate_bps=bitrate_bps,
            provenance=provenance,
            source_key=source_key,
            size_bytes=size,
        )

    return _make


@pytest.fixture
def sink_factory() -> Callable[..., FakeSink]:
    """Create fake listener sinks."""
    return FakeSink
