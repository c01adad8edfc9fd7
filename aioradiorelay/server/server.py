"""HTTP front end of the radio relay."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from contextlib import suppress

import orjson
from aiohttp import hdrs, web
from mashumaro.mixins.orjson import DataClassORJSONMixin

from aioradiorelay.config import STREAM_PATH, RadioConfig
from aioradiorelay.errors import AcquisitionError, DuplicateTrackError
from aioradiorelay.models.api import AcquisitionJob, AddTrackRequest, ErrorPayload
from aioradiorelay.models.types import BroadcastState, JobStatus

from .acquisition import YouTubeAcquirer, source_key_for, video_id_from_url
from .broadcast import Broadcast
from .catalog import Catalog
from .discovery import StreamAdvertiser
from .listener import Listener

logger = logging.getLogger(__name__)

MAX_JOBS = 100
IDLE_RETRY_AFTER_S = 5

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

INDEX_HTML = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{name}</title></head>
<body>
<h1>{name}</h1>
<p>Stream URL: <code>{stream_path}</code></p>
<audio controls src="{stream_path}"></audio>
<p>Add a track (plays after the current one):</p>
<input type="text" id="track" placeholder="Artist - Title or YouTube URL">
<button onclick="addTrack()">Add</button>
<p id="status"></p>
<script>
async function addTrack() {{
  const track = document.getElementById('track').value;
  if (!track) return;
  const response = await fetch('/add', {{
    method: 'POST',
    headers: {{'Content-Type': 'application/json'}},
    body: JSON.stringify({{track}})
  }});
  const result = await response.json();
  document.getElementById('status').textContent = result.message || result.status;
}}
</script>
</body>
</html>
"""


def _json_response(payload: DataClassORJSONMixin, status: int = 200) -> web.Response:
    return web.Response(
        text=payload.to_json(),
        status=status,
        content_type="application/json",
    )


def _error(status: int, error: str, message: str, **headers: str) -> web.Response:
    response = _json_response(ErrorPayload(error=error, message=message), status)
    response.headers.update(headers)
    return response


@web.middleware
async def cors_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """Allow the API to be called from pages served elsewhere."""
    response = await handler(request)
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


class RadioServer:
    """
    Serves one broadcast over HTTP.

    Listeners join through the stream endpoints, tracks are requested through
    POST /add and acquired in the background.
    """

    _config: RadioConfig
    _broadcast: Broadcast
    _catalog: Catalog
    _acquirer: YouTubeAcquirer
    _jobs: dict[str, AcquisitionJob]
    """Recent acquisition jobs by id, oldest first."""
    _acquisition_tasks: set[asyncio.Task[None]]
    _runner: web.AppRunner | None = None
    _advertiser: StreamAdvertiser | None = None

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        config: RadioConfig,
        *,
        catalog: Catalog | None = None,
        acquirer: YouTubeAcquirer | None = None,
    ) -> None:
        """Initialize the server, nothing runs until start()."""
        self.loop = loop
        self._config = config
        self._broadcast = Broadcast(
            loop,
            track_gap_ms=config.track_gap_ms,
            join_tail_guard_ms=config.join_tail_guard_ms,
        )
        self._catalog = catalog or Catalog(
            config.audio_dir,
            config.cache_dir,
            default_duration_ms=config.default_duration_ms,
            default_bitrate_bps=config.default_bitrate_bps,
            delete_acquired=config.delete_acquired,
        )
        self._acquirer = acquirer or YouTubeAcquirer(
            self._catalog,
            ytdlp_path=config.ytdlp_path,
            download_timeout_s=config.download_timeout_s,
            is_queued=self._broadcast.contains_source_key,
        )
        self._jobs = {}
        self._acquisition_tasks = set()
        self._broadcast.add_event_listener(self._catalog.handle_broadcast_event)
        self.app = self._create_app()

    def _create_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware])
        app.add_routes(
            [
                web.get("/", self.on_index),
                web.get("/stream", self.on_stream),
                web.get(STREAM_PATH, self.on_stream),
                web.post("/add", self.on_add),
                web.options("/add", self.on_preflight),
                web.get("/jobs/{job_id}", self.on_job),
                web.get("/status", self.on_status),
                web.post("/skip", self.on_skip),
                web.delete("/queue/{track_id}", self.on_remove),
            ]
        )
        return app

    @property
    def broadcast(self) -> Broadcast:
        """The broadcast served by this server."""
        return self._broadcast

    @property
    def jobs(self) -> dict[str, AcquisitionJob]:
        """Recent acquisition jobs by id."""
        return self._jobs

    # Lifecycle

    async def load_catalog(self) -> int:
        """Populate the queue with the resident tracks, returns how many were found."""
        self._catalog.ensure_cache_dir()
        tracks = await self._catalog.scan_resident_tracks()
        if not tracks:
            logger.warning("No resident tracks found, idling until the first track is added")
        return self._broadcast.load(tracks)

    async def start(self) -> None:
        """Load the catalog, start playback and listen for HTTP connections."""
        await self.load_catalog()
        self._broadcast.start()
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        logger.info("Listening on %s:%d", self._config.host, self._config.port)
        if self._config.mdns:
            self._advertiser = StreamAdvertiser(
                self._config.station_name, self._config.port, STREAM_PATH
            )
            try:
                await self._advertiser.start()
            except Exception:
                logger.exception("mDNS advertisement failed, continuing without it")
                self._advertiser = None

    async def close(self) -> None:
        """Cancel acquisitions, close every listener and stop serving."""
        for task in list(self._acquisition_tasks):
            task.cancel()
        for task in list(self._acquisition_tasks):
            with suppress(asyncio.CancelledError):
                await task
        await self._broadcast.stop()
        if self._advertiser is not None:
            await self._advertiser.stop()
            self._advertiser = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self._acquirer.close()
        logger.info("Server closed")

    # Handlers

    async def on_index(self, _request: web.Request) -> web.Response:
        """Landing page with a player and an add form."""
        return web.Response(
            text=INDEX_HTML.format(name=self._config.station_name, stream_path=STREAM_PATH),
            content_type="text/html",
        )

    async def on_stream(self, request: web.Request) -> web.StreamResponse:
        """Join the broadcast in progress and stream until either side closes."""
        track = self._broadcast.current_track
        if self._broadcast.state is not BroadcastState.PLAYING or track is None:
            return _error(
                503,
                "nothing_playing",
                "Nothing is playing right now, add a track first",
                **{hdrs.RETRY_AFTER: str(IDLE_RETRY_AFTER_S)},
            )

        response = web.StreamResponse(
            headers={
                hdrs.CONTENT_TYPE: track.content_type,
                hdrs.CACHE_CONTROL: "no-cache, no-store",
                "icy-name": self._config.station_name,
            }
        )
        await response.prepare(request)

        listener = Listener(
            response,
            loop=self.loop,
            remote=request.remote,
            prebuffer_ms=self._config.prebuffer_ms,
            chunk_size=self._config.chunk_size,
        )
        if not self._broadcast.attach(listener):
            # The queue emptied while the response was being prepared
            with suppress(ConnectionError):
                await response.write_eof()
            return response

        try:
            await listener.run()
        finally:
            self._broadcast.detach(listener)
        with suppress(ConnectionError):
            await response.write_eof()
        return response

    async def on_add(self, request: web.Request) -> web.Response:
        """Accept a track request and acquire it in the background."""
        query = await self._read_query(request)
        if not query:
            return _error(400, "missing_track", "No track given")

        if (video_id := video_id_from_url(query)) is not None:
            source_key = source_key_for(video_id)
            if self._broadcast.contains_source_key(source_key):
                return _error(409, "duplicate", f"Track {source_key} is already queued")

        job = AcquisitionJob(job_id=uuid.uuid4().hex[:12], query=query)
        self._remember_job(job)
        logger.info("Accepted track request %s: %r", job.job_id, query)
        task = self.loop.create_task(self._run_acquisition(job))
        self._acquisition_tasks.add(task)
        task.add_done_callback(self._acquisition_tasks.discard)
        return _json_response(job, status=202)

    async def _read_query(self, request: web.Request) -> str:
        body = await request.text()
        if request.content_type == "application/json":
            try:
                data = orjson.loads(body)
            except orjson.JSONDecodeError:
                return ""
            # Only a JSON string is a query, other types are never coerced
            if not isinstance(data, dict) or not isinstance(data.get("track"), str):
                return ""
            return AddTrackRequest.from_dict(data).track.strip()
        return body.strip()

    def _remember_job(self, job: AcquisitionJob) -> None:
        self._jobs[job.job_id] = job
        while len(self._jobs) > MAX_JOBS:
            del self._jobs[next(iter(self._jobs))]

    async def _run_acquisition(self, job: AcquisitionJob) -> None:
        """Acquire a track and insert it after the current one."""
        try:
            track = await self._acquirer.acquire_track(job.query)
            self._broadcast.insert_after_current(track)
        except DuplicateTrackError as err:
            job.status = JobStatus.DUPLICATE
            job.message = str(err)
            logger.info("Request %s: %s", job.job_id, err)
        except AcquisitionError as err:
            job.status = JobStatus.FAILED
            job.message = str(err)
            logger.warning("Request %s failed: %s", job.job_id, err)
        except Exception:
            job.status = JobStatus.FAILED
            job.message = "Internal error"
            logger.exception("Unexpected error acquiring %r", job.query)
        else:
            job.status = JobStatus.QUEUED
            job.message = f"Queued {track.display_name}"
            job.track = track.to_info()

    async def on_preflight(self, _request: web.Request) -> web.Response:
        """CORS preflight for POST /add."""
        return web.Response()

    async def on_job(self, request: web.Request) -> web.Response:
        """Report the state of an acquisition job."""
        job = self._jobs.get(request.match_info["job_id"])
        if job is None:
            return _error(404, "unknown_job", "No such job")
        return _json_response(job)

    async def on_status(self, _request: web.Request) -> web.Response:
        """Now playing, position, listeners and the queue."""
        return _json_response(self._broadcast.snapshot())

    async def on_skip(self, _request: web.Request) -> web.Response:
        """End the current track now."""
        if not self._broadcast.skip():
            return _error(409, "nothing_playing", "Nothing is playing")
        return _json_response(self._broadcast.snapshot(), status=202)

    async def on_remove(self, request: web.Request) -> web.Response:
        """Remove a track from the queue."""
        track = self._broadcast.remove(request.match_info["track_id"])
        if track is None:
            return _error(404, "unknown_track", "No such track in the queue")
        return _json_response(track.to_info())
