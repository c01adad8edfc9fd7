"""Tests for resident track discovery and download release."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from aioradiorelay.models.types import Provenance
from aioradiorelay.server.broadcast import TrackEndedEvent, TrackEvictedEvent
from aioradiorelay.server.catalog import Catalog, ProbeResult, probe_audio_file


def _catalog(tmp_path: Path, **kwargs) -> Catalog:
    return Catalog(tmp_path / "audio", tmp_path / "cache", **kwargs)


def test_unprobeable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "noise.mp3"
    path.write_bytes(b"not really audio")
    result = probe_audio_file(path, default_duration_ms=42_000, default_bitrate_bps=64_000)
    assert result.duration_ms == 42_000
    assert result.bitrate_bps == 64_000
    assert result.size_bytes == len(b"not really audio")


def test_missing_file_falls_back_to_defaults(tmp_path):
    result = probe_audio_file(tmp_path / "gone.mp3")
    assert not result.probed
    assert result.size_bytes is None


async def test_scan_orders_supported_files_by_name(tmp_path):
    catalog = _catalog(tmp_path)
    catalog.audio_dir.mkdir()
    for name in ("b.mp3", "a.ogg", "notes.txt", "c.WAV"):
        (catalog.audio_dir / name).write_bytes(b"x" * 10)

    probed = ProbeResult(duration_ms=1_000, bitrate_bps=128_000, size_bytes=10, probed=True)
    with patch("aioradiorelay.server.catalog.probe_audio_file", return_value=probed):
        tracks = await catalog.scan_resident_tracks()

    assert [track.display_name for track in tracks] == ["a", "b", "c"]
    assert all(track.provenance is Provenance.RESIDENT for track in tracks)
    assert all(track.duration_ms == 1_000 for track in tracks)


async def test_scan_of_missing_directory_is_empty(tmp_path):
    assert await _catalog(tmp_path).scan_resident_tracks() == []


def test_ensure_cache_dir_creates_directory(tmp_path):
    catalog = _catalog(tmp_path)
    catalog.ensure_cache_dir()
    assert catalog.cache_dir.is_dir()


async def test_evicted_download_is_deleted(tmp_path, make_track):
    catalog = _catalog(tmp_path)
    track = make_track("x", provenance=Provenance.ACQUIRED, source_key="youtube:x")
    await catalog.handle_broadcast_event(TrackEndedEvent(track))
    assert track.path.exists()
    await catalog.handle_broadcast_event(TrackEvictedEvent(track))
    assert not track.path.exists()


async def test_resident_files_are_never_deleted(tmp_path, make_track):
    track = make_track("a")
    await _catalog(tmp_path).release(track)
    assert track.path.exists()


async def test_downloads_can_be_kept(tmp_path, make_track):
    track = make_track("x", provenance=Provenance.ACQUIRED)
    await _catalog(tmp_path, delete_acquired=False).release(track)
    assert track.path.exists()
