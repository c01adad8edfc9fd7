"""Tests for YouTube track acquisition."""

from __future__ import annotations

import stat
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from aioradiorelay.errors import (
    DownloaderMissingError,
    DownloadFailedError,
    DuplicateTrackError,
    TrackNotFoundError,
)
from aioradiorelay.models.types import Provenance
from aioradiorelay.server.acquisition import (
    YouTubeAcquirer,
    cache_file_name,
    locate_ytdlp,
    source_key_for,
    video_id_from_url,
)
from aioradiorelay.server.catalog import Catalog, ProbeResult

VIDEO_ID = "dQw4w9WgXcQ"

FAKE_YTDLP = """#!/bin/sh
while [ $# -gt 1 ]; do
  if [ "$1" = "-o" ]; then out="$2"; fi
  shift
done
printf 'audio' > "$(echo "$out" | sed 's/%(ext)s/mp3/')"
"""

FAILING_YTDLP = """#!/bin/sh
echo "ERROR: Video unavailable" >&2
exit 1
"""


@pytest.fixture
def catalog(tmp_path: Path) -> Catalog:
    return Catalog(tmp_path / "audio", tmp_path / "cache")


def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "yt-dlp"
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


def _search_session(html: str) -> MagicMock:
    response = MagicMock()
    response.text = AsyncMock(return_value=html)
    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response
    return session


@pytest.mark.parametrize(
    "query",
    [
        f"https://www.youtube.com/watch?v={VIDEO_ID}",
        f"https://youtube.com/watch?feature=share&v={VIDEO_ID}",
        f"https://youtu.be/{VIDEO_ID}",
        f"https://www.youtube.com/shorts/{VIDEO_ID}",
    ],
)
def test_video_id_from_url(query):
    assert video_id_from_url(query) == VIDEO_ID


def test_free_text_is_not_a_url():
    assert video_id_from_url("Daft Punk - One More Time") is None


def test_cache_and_source_key_naming():
    assert cache_file_name(VIDEO_ID) == f"youtube_{VIDEO_ID}.mp3"
    assert source_key_for(VIDEO_ID) == f"youtube:{VIDEO_ID}"


def test_locate_explicit_ytdlp(tmp_path):
    binary = _script(tmp_path, FAKE_YTDLP)
    assert locate_ytdlp(binary) == binary


def test_locate_ytdlp_not_installed(tmp_path, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda _name: None)
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    assert locate_ytdlp() is None


async def test_search_returns_first_result(catalog):
    html = f'<script>{{"videoId":"{VIDEO_ID}"}}, {{"videoId":"aaaaaaaaaaa"}}</script>'
    acquirer = YouTubeAcquirer(catalog, session=_search_session(html))
    assert await acquirer.search("never gonna") == VIDEO_ID


async def test_search_without_results(catalog):
    acquirer = YouTubeAcquirer(catalog, session=_search_session("<html></html>"))
    with pytest.raises(TrackNotFoundError):
        await acquirer.search("nothing matches this")


async def test_url_query_skips_search(catalog):
    session = _search_session("")
    acquirer = YouTubeAcquirer(catalog, session=session)
    assert await acquirer.resolve(f"https://youtu.be/{VIDEO_ID}") == VIDEO_ID
    session.get.assert_not_called()


async def test_duplicate_is_rejected_before_download(catalog):
    acquirer = YouTubeAcquirer(catalog, is_queued=lambda key: key == source_key_for(VIDEO_ID))
    with patch.object(acquirer, "download", AsyncMock()) as download:
        with pytest.raises(DuplicateTrackError):
            await acquirer.acquire_track(f"https://youtu.be/{VIDEO_ID}")
    download.assert_not_called()


async def test_cached_download_is_reused(catalog):
    catalog.ensure_cache_dir()
    cached = catalog.cache_dir / cache_file_name(VIDEO_ID)
    cached.write_bytes(b"cached")
    acquirer = YouTubeAcquirer(catalog, ytdlp_path="/nonexistent/yt-dlp")
    assert await acquirer.download(VIDEO_ID) == cached


async def test_missing_downloader(catalog):
    acquirer = YouTubeAcquirer(catalog)
    with patch("aioradiorelay.server.acquisition.locate_ytdlp", return_value=None):
        with pytest.raises(DownloaderMissingError):
            await acquirer.download(VIDEO_ID)


async def test_download_runs_ytdlp(catalog, tmp_path):
    acquirer = YouTubeAcquirer(catalog, ytdlp_path=_script(tmp_path, FAKE_YTDLP))
    path = await acquirer.download(VIDEO_ID)
    assert path == catalog.cache_dir / cache_file_name(VIDEO_ID)
    assert path.read_bytes() == b"audio"


async def test_failed_download(catalog, tmp_path):
    acquirer = YouTubeAcquirer(catalog, ytdlp_path=_script(tmp_path, FAILING_YTDLP))
    with pytest.raises(DownloadFailedError, match="Video unavailable"):
        await acquirer.download(VIDEO_ID)


async def test_acquire_track_builds_acquired_track(catalog, tmp_path):
    html = f'"videoId":"{VIDEO_ID}"'
    acquirer = YouTubeAcquirer(
        catalog,
        ytdlp_path=_script(tmp_path, FAKE_YTDLP),
        session=_search_session(html),
    )
    probed = ProbeResult(duration_ms=200_000, bitrate_bps=192_000, size_bytes=5, probed=True)
    with patch("aioradiorelay.server.catalog.probe_audio_file", return_value=probed):
        track = await acquirer.acquire_track("Artist - Title")

    assert track.provenance is Provenance.ACQUIRED
    assert track.source_key == source_key_for(VIDEO_ID)
    assert track.display_name == "Artist - Title"
    assert track.duration_ms == 200_000
