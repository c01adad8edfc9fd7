"""On-demand track acquisition from YouTube through yt-dlp."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path

from aiohttp import ClientError, ClientSession, ClientTimeout

from aioradiorelay.config import DEFAULT_DOWNLOAD_TIMEOUT_S
from aioradiorelay.errors import (
    DownloaderMissingError,
    DownloadFailedError,
    DuplicateTrackError,
    TrackNotFoundError,
)
from aioradiorelay.models.types import Provenance

from .catalog import Catalog
from .track import Track

logger = logging.getLogger(__name__)

YOUTUBE_SEARCH_URL = "https://www.youtube.com/results"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36"
SEARCH_TIMEOUT_S = 15

_SEARCH_RESULT_RE = re.compile(r'"videoId":"([A-Za-z0-9_-]{11})"')
_URL_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/)|youtu\.be/)([A-Za-z0-9_-]{11})"
)


def video_id_from_url(query: str) -> str | None:
    """Return the video id if ``query`` is a YouTube URL."""
    match = _URL_VIDEO_ID_RE.search(query)
    return match.group(1) if match else None


def source_key_for(video_id: str) -> str:
    """De-duplication key of a YouTube video."""
    return f"youtube:{video_id}"


def cache_file_name(video_id: str) -> str:
    """Name of the cached download of a video."""
    return f"youtube_{video_id}.mp3"


def locate_ytdlp(explicit: str | None = None) -> str | None:
    """
    Find the yt-dlp executable.

    Checks the explicit path, then ``PATH``, then ``~/yt-dlp`` where the
    standalone release binary is commonly dropped.
    """
    if explicit:
        return explicit if Path(explicit).expanduser().is_file() else shutil.which(explicit)
    if found := shutil.which("yt-dlp"):
        return found
    home_binary = Path.home() / "yt-dlp"
    if home_binary.is_file():
        return str(home_binary)
    return None


class YouTubeAcquirer:
    """
    Turns a search query into an acquired track.

    Safe to run concurrently with playback and with other acquisitions, every
    blocking step is either a network call or a subprocess.
    """

    _session: ClientSession | None = None

    def __init__(
        self,
        catalog: Catalog,
        *,
        ytdlp_path: str | None = None,
        download_timeout_s: float = DEFAULT_DOWNLOAD_TIMEOUT_S,
        is_queued: Callable[[str], bool] | None = None,
        session: ClientSession | None = None,
    ) -> None:
        """
        Initialize the acquirer.

        Args:
            catalog: Catalog used for the cache directory and for probing.
            ytdlp_path: yt-dlp executable, located automatically when omitted.
            download_timeout_s: Upper bound for a single download.
            is_queued: Returns True if a source key is already queued, checked
                before downloading so duplicates are rejected early.
            session: HTTP session for searches, one is created when omitted.
        """
        self._catalog = catalog
        self._ytdlp_path = ytdlp_path
        self._download_timeout_s = download_timeout_s
        self._is_queued = is_queued
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        """Close the HTTP session if this acquirer created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession(
                headers={"User-Agent": USER_AGENT},
                timeout=ClientTimeout(total=SEARCH_TIMEOUT_S),
            )
        return self._session

    async def search(self, query: str) -> str:
        """
        Return the video id of the first YouTube search result.

        Raises:
            TrackNotFoundError: No result, or the search request failed.
        """
        logger.info("Searching YouTube for %r", query)
        try:
            async with self._get_session().get(
                YOUTUBE_SEARCH_URL, params={"search_query": query}
            ) as response:
                response.raise_for_status()
                html = await response.text()
        except (ClientError, TimeoutError) as err:
            raise TrackNotFoundError(f"Search for {query!r} failed: {err}") from err
        match = _SEARCH_RESULT_RE.search(html)
        if match is None:
            raise TrackNotFoundError(f"No result for {query!r}")
        video_id = match.group(1)
        logger.info("Found %s", YOUTUBE_WATCH_URL.format(video_id=video_id))
        return video_id

    async def resolve(self, query: str) -> str:
        """Return the video id for a URL or a free text query."""
        return video_id_from_url(query) or await self.search(query)

    async def download(self, video_id: str) -> Path:
        """
        Download the audio of a video into the cache, reusing a cached file.

        Raises:
            DownloaderMissingError: yt-dlp is not installed.
            DownloadFailedError: yt-dlp failed, timed out or produced no file.
        """
        target = self._catalog.cache_dir / cache_file_name(video_id)
        if target.is_file():
            logger.info("Using cached download %s", target.name)
            return target

        ytdlp = locate_ytdlp(self._ytdlp_path)
        if ytdlp is None:
            raise DownloaderMissingError(
                "yt-dlp not found, install it or pass --ytdlp-path"
            )
        self._catalog.ensure_cache_dir()
        url = YOUTUBE_WATCH_URL.format(video_id=video_id)
        # yt-dlp fills in the extension after extracting the audio
        template = str(target.with_suffix(".%(ext)s"))
        logger.info("Downloading %s", url)
        try:
            process = await asyncio.create_subprocess_exec(
                ytdlp,
                "-x",
                "--audio-format",
                "mp3",
                "--audio-quality",
                "0",
                "--no-playlist",
                "-o",
                template,
                url,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise DownloaderMissingError(f"Cannot run {ytdlp}: {err}") from err

        try:
            async with asyncio.timeout(self._download_timeout_s):
                _, stderr = await process.communicate()
        except TimeoutError as err:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise DownloadFailedError(
                f"Download of {url} timed out after {self._download_timeout_s:.0f}s"
            ) from err

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip().splitlines()[-1:] or [""]
            raise DownloadFailedError(
                f"yt-dlp exited with {process.returncode} for {url}: {detail[0]}"
            )
        if not target.is_file():
            raise DownloadFailedError(f"yt-dlp finished but {target.name} is missing")
        logger.info("Download complete: %s", target.name)
        return target

    async def acquire_track(self, query: str) -> Track:
        """
        Search, download and probe a track.

        Raises:
            AcquisitionError: The track could not be acquired.
            DuplicateTrackError: The resolved source is already queued.
        """
        video_id = await self.resolve(query)
        source_key = source_key_for(video_id)
        if self._is_queued is not None and self._is_queued(source_key):
            raise DuplicateTrackError(source_key)
        path = await self.download(video_id)
        display_name = path.stem if video_id_from_url(query) else query
        return await self._catalog.probe(
            path,
            display_name=display_name,
            provenance=Provenance.ACQUIRED,
            source_key=source_key,
        )
