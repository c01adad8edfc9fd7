"""Tests for the HTTP front end."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from aioradiorelay.config import RadioConfig
from aioradiorelay.errors import DuplicateTrackError, TrackNotFoundError
from aioradiorelay.models.types import Provenance
from aioradiorelay.server.acquisition import YouTubeAcquirer
from aioradiorelay.server.catalog import Catalog
from aioradiorelay.server.server import RadioServer


async def wait_until(predicate, timeout: float = 3.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.fixture
def acquirer() -> AsyncMock:
    return AsyncMock(spec=YouTubeAcquirer)


@pytest.fixture
async def radio(tmp_path, acquirer):
    config = RadioConfig(audio_dir=tmp_path / "audio", cache_dir=tmp_path / "cache")
    server = RadioServer(
        asyncio.get_running_loop(),
        config,
        catalog=Catalog(config.audio_dir, config.cache_dir),
        acquirer=acquirer,
    )
    yield server
    await server.close()


@pytest.fixture
async def client(radio):
    async with TestClient(TestServer(radio.app)) as test_client:
        yield test_client


@pytest.fixture
async def playing(radio, make_track):
    """Start the broadcast with one long resident track."""
    track = make_track("resident", duration_ms=10_000, marker=b"r")
    radio.broadcast.load([track])
    radio.broadcast.start()
    await wait_until(lambda: radio.broadcast.current_track is track)
    return track


async def test_index_page(client):
    response = await client.get("/")
    assert response.status == 200
    assert "Highrise Radio" in await response.text()


async def test_stream_while_idle(radio, client):
    radio.broadcast.start()
    response = await client.get("/stream.mp3")
    assert response.status == 503
    assert response.headers["Retry-After"] == "5"
    assert (await response.json())["error"] == "nothing_playing"


async def test_stream_delivers_current_track(radio, client, playing):
    response = await client.get("/stream")
    assert response.status == 200
    assert response.headers["Content-Type"] == "audio/wav"
    data = await response.content.readexactly(1_000)
    assert data == b"r" * 1_000
    assert len(radio.broadcast.listeners) == 1

    response.close()
    await wait_until(lambda: not radio.broadcast.listeners, timeout=5)


async def test_add_requires_a_track(client):
    response = await client.post("/add", json={"track": "  "})
    assert response.status == 400
    response = await client.post("/add", data="")
    assert response.status == 400


async def test_add_queues_acquired_track(radio, client, acquirer, playing, make_track):
    requested = make_track(
        "Artist - Title", provenance=Provenance.ACQUIRED, source_key="youtube:abcdefghijk"
    )
    acquirer.acquire_track.return_value = requested

    response = await client.post("/add", json={"track": "Artist - Title"})
    assert response.status == 202
    job = await response.json()
    assert job["status"] == "pending"
    assert response.headers["Access-Control-Allow-Origin"] == "*"

    await wait_until(lambda: radio.jobs[job["job_id"]].status.value != "pending")
    response = await client.get(f"/jobs/{job['job_id']}")
    body = await response.json()
    assert body["status"] == "queued"
    assert body["track"]["track_id"] == requested.track_id
    assert radio.broadcast.queue.tracks == (playing, requested)
    acquirer.acquire_track.assert_awaited_once_with("Artist - Title")


async def test_add_accepts_plain_text(radio, client, acquirer, playing):
    acquirer.acquire_track.side_effect = TrackNotFoundError("No result for 'zzz'")
    response = await client.post("/add", data="zzz")
    assert response.status == 202
    job_id = (await response.json())["job_id"]

    await wait_until(lambda: radio.jobs[job_id].status.value != "pending")
    body = await (await client.get(f"/jobs/{job_id}")).json()
    assert body["status"] == "failed"
    assert "zzz" in body["message"]
    assert len(radio.broadcast.queue) == 1


async def test_add_reports_duplicates(radio, client, acquirer, playing):
    acquirer.acquire_track.side_effect = DuplicateTrackError("youtube:abcdefghijk")
    response = await client.post("/add", json={"track": "again"})
    job_id = (await response.json())["job_id"]
    await wait_until(lambda: radio.jobs[job_id].status.value == "duplicate")


async def test_add_queued_url_conflicts(radio, client, acquirer, playing, make_track):
    radio.broadcast.insert_after_current(
        make_track("x", provenance=Provenance.ACQUIRED, source_key="youtube:abcdefghijk")
    )
    response = await client.post("/add", json={"track": "https://youtu.be/abcdefghijk"})
    assert response.status == 409
    assert (await response.json())["error"] == "duplicate"
    acquirer.acquire_track.assert_not_called()


async def test_unknown_job(client):
    response = await client.get("/jobs/nope")
    assert response.status == 404


async def test_preflight(client):
    response = await client.options("/add")
    assert response.status == 200
    assert "POST" in response.headers["Access-Control-Allow-Methods"]


async def test_status(client, playing):
    body = await (await client.get("/status")).json()
    assert body["state"] == "playing"
    assert body["now_playing"]["name"] == "resident"
    assert body["current_index"] == 0
    assert body["listeners"] == 0


async def test_skip(radio, client, make_track):
    response = await client.post("/skip")
    assert response.status == 409

    first = make_track("a", duration_ms=10_000)
    radio.broadcast.load([first, make_track("b", duration_ms=10_000)])
    radio.broadcast.start()
    await wait_until(lambda: radio.broadcast.current_track is first)
    response = await client.post("/skip")
    assert response.status == 202
    await wait_until(lambda: radio.broadcast.current_track is not first)


async def test_remove_from_queue(radio, client, playing):
    response = await client.delete("/queue/unknown")
    assert response.status == 404

    response = await client.delete(f"/queue/{playing.track_id}")
    assert response.status == 200
    assert (await response.json())["track_id"] == playing.track_id
    assert not radio.broadcast.queue


@pytest.mark.parametrize("body", [{"track": None}, {"track": {"a": 1}}, {"track": ["a"]}, ["a"]])
async def test_add_rejects_non_string_track(client, acquirer, body):
    response = await client.post("/add", json=body)
    assert response.status == 400
    assert (await response.json())["error"] == "missing_track"
    acquirer.acquire_track.assert_not_called()


async def test_add_rejects_malformed_json(client):
    response = await client.post(
        "/add", data="{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status == 400
