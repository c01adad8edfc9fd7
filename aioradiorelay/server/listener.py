"""A single listener attached to a broadcast."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass
from typing import Protocol

from aioradiorelay.config import DEFAULT_CHUNK_SIZE, DEFAULT_PREBUFFER_MS
from aioradiorelay.errors import SinkWriteError, TrackReadError

from .stream import BytePacer, iter_track_chunks
from .track import Track

logger = logging.getLogger(__name__)


class AudioSink(Protocol):
    """Anything audio bytes can be written to, e.g. a prepared ``web.StreamResponse``."""

    async def write(self, data: bytes) -> None:
        """Write bytes to the peer."""


@dataclass
class _PlayCommand:
    """Start streaming ``track`` at ``offset``."""

    track: Track
    offset: int


@dataclass
class _CloseCommand:
    """Stop streaming and end the writer."""


_ListenerCommand = _PlayCommand | _CloseCommand


class Listener:
    """
    One open output connection.

    The broadcast drives a listener with play() on every track change. A
    listener never decides on its own which track comes next, it only pumps the
    bytes of the last track it was told to play. Each listener has its own
    writer task, so a stalled peer only ever stalls itself.
    """

    _sink: AudioSink
    _loop: asyncio.AbstractEventLoop
    _mailbox: asyncio.Queue[_ListenerCommand]
    """Holds at most the newest pending command."""
    _writer_task: asyncio.Task[None] | None = None
    _pump_task: asyncio.Task[None] | None = None
    _closing: bool = False
    _logger: logging.Logger

    def __init__(
        self,
        sink: AudioSink,
        *,
        loop: asyncio.AbstractEventLoop,
        listener_id: str | None = None,
        remote: str | None = None,
        prebuffer_ms: int = DEFAULT_PREBUFFER_MS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """
        Initialize a listener around an already prepared sink.

        Args:
            sink: Target for the audio bytes.
            loop: Event loop used for tasks and pacing.
            listener_id: Identifier used in logs, generated when omitted.
            remote: Peer address, informational only.
            prebuffer_ms: Audio sent without pacing at the start of every track.
            chunk_size: Bytes per write.
        """
        self._sink = sink
        self._loop = loop
        self.listener_id = listener_id or uuid.uuid4().hex[:8]
        self.remote = remote
        self.prebuffer_ms = prebuffer_ms
        self.chunk_size = chunk_size
        self._mailbox = asyncio.Queue(maxsize=1)
        self._logger = logger.getChild(self.listener_id)
        self.current_track: Track | None = None
        self.bytes_sent = 0

    @property
    def closing(self) -> bool:
        """Whether close() was called or the peer went away."""
        return self._closing

    def play(self, track: Track, offset: int = 0) -> None:
        """Replace whatever is streaming with ``track`` from ``offset``."""
        if self._closing:
            return
        self._post(_PlayCommand(track, offset))

    def close(self) -> None:
        """Ask the writer to stop, run() returns shortly after."""
        if self._closing:
            return
        self._closing = True
        self._post(_CloseCommand())

    def _post(self, command: _ListenerCommand) -> None:
        # Latest command wins, a superseded track is never started.
        with suppress(asyncio.QueueEmpty):
            self._mailbox.get_nowait()
        self._mailbox.put_nowait(command)

    async def run(self) -> None:
        """
        Pump audio until closed or until the peer disconnects.

        This is the body of the HTTP handler that owns the sink.
        """
        self._writer_task = self._loop.create_task(self._writer())
        try:
            await self._writer_task
        finally:
            self._closing = True

    async def _writer(self) -> None:
        command_task: asyncio.Task[_ListenerCommand] = self._loop.create_task(self._mailbox.get())
        try:
            while True:
                wait_set: set[asyncio.Task[object]] = {command_task}
                if self._pump_task is not None:
                    wait_set.add(self._pump_task)
                done, _ = await asyncio.wait(wait_set, return_when=asyncio.FIRST_COMPLETED)

                if self._pump_task is not None and self._pump_task in done:
                    pump_task, self._pump_task = self._pump_task, None
                    try:
                        pump_task.result()
                    except SinkWriteError:
                        self._logger.info("Listener went away")
                        return
                    except TrackReadError as err:
                        self._logger.warning("%s, waiting for the next track", err)

                if command_task in done:
                    command = command_task.result()
                    await self._cancel_pump()
                    if isinstance(command, _CloseCommand):
                        self._logger.debug("Closing listener")
                        return
                    self.current_track = command.track
                    self._pump_task = self._loop.create_task(
                        self._pump(command.track, command.offset)
                    )
                    command_task = self._loop.create_task(self._mailbox.get())
        finally:
            command_task.cancel()
            with suppress(asyncio.CancelledError):
                await command_task
            await self._cancel_pump()

    async def _cancel_pump(self) -> None:
        if self._pump_task is None:
            return
        pump_task, self._pump_task = self._pump_task, None
        if not pump_task.done():
            pump_task.cancel()
        with suppress(asyncio.CancelledError, SinkWriteError, TrackReadError):
            await pump_task

    async def _pump(self, track: Track, offset: int) -> None:
        """Stream one track, paced at its nominal bitrate."""
        self._logger.debug("Streaming %s from byte %d", track, offset)
        byte_rate = track.bitrate_bps / 8
        pacer = BytePacer(
            loop=self._loop,
            bytes_per_second=byte_rate,
            burst_bytes=int(byte_rate * self.prebuffer_ms / 1000),
        )
        chunks = iter_track_chunks(track, offset, self.chunk_size)
        try:
            async for chunk in chunks:
                await pacer.wait(len(chunk))
                try:
                    await self._sink.write(chunk)
                except ConnectionError as err:
                    raise SinkWriteError(str(err)) from err
                self.bytes_sent += len(chunk)
        finally:
            await chunks.aclose()
        self._logger.debug("Finished sending %s", track)
