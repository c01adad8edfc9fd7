"""The shared broadcast: play order, now-playing clock and listener fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from contextlib import suppress
from dataclasses import dataclass

from aioradiorelay.config import DEFAULT_JOIN_TAIL_GUARD_MS
from aioradiorelay.models.api import StatusPayload
from aioradiorelay.models.types import BroadcastState

from .clock import PlaybackClock
from .listener import Listener
from .queue import PlaybackQueue
from .stream import clamp_join_elapsed, estimate_byte_offset
from .track import Track

UNREADABLE_RETRY_DELAY_S = 5.0

logger = logging.getLogger(__name__)


class BroadcastEvent:
    """Base event type used by Broadcast.add_event_listener()."""


@dataclass
class TrackStartedEvent(BroadcastEvent):
    """A track became the now playing track and was pushed to every listener."""

    track: Track
    index: int
    """Queue position of the track."""


@dataclass
class TrackEndedEvent(BroadcastEvent):
    """The playback window of a track ended."""

    track: Track
    skipped: bool = False
    """True if the track ended early because of skip() or a read failure."""


@dataclass
class TrackEvictedEvent(BroadcastEvent):
    """An acquired track left the queue, its file can be released."""

    track: Track


@dataclass
class BroadcastStateChangedEvent(BroadcastEvent):
    """The broadcast went idle or started playing."""

    state: BroadcastState


@dataclass
class ListenerAddedEvent(BroadcastEvent):
    """A listener joined the broadcast."""

    listener_id: str


@dataclass
class ListenerRemovedEvent(BroadcastEvent):
    """A listener left the broadcast."""

    listener_id: str


@dataclass
class _SchedulerCommand:
    """Base class for commands sent to the scheduler task."""


@dataclass
class _SkipCommand(_SchedulerCommand):
    """End the current track now."""


@dataclass
class _QueueChangedCommand(_SchedulerCommand):
    """The queue was mutated from outside the scheduler."""


class Broadcast:
    """
    A single logical stream shared by every listener.

    One scheduler task owns the clock. It starts the track at the current queue
    position, pushes it to all attached listeners from byte 0 and sleeps for the
    duration of that track. When the window ends an acquired track is evicted,
    a resident one is advanced past, and the next track is pushed the same way.
    Listeners never keep their own timers, so everyone attached hears the same
    track change at the same tick.

    Queue mutations and joins are plain synchronous calls. On a single event
    loop they cannot interleave with a tick halfway.
    """

    _loop: asyncio.AbstractEventLoop
    _queue: PlaybackQueue
    """Play order, owned by this broadcast."""
    _clock: PlaybackClock
    """Now playing state, only mutated by the scheduler task."""
    _listeners: set[Listener]
    """All currently attached sinks."""
    _state: BroadcastState = BroadcastState.IDLE
    _scheduler_task: asyncio.Task[None] | None = None
    """Task running the scheduler loop, None when stopped."""
    _commands: asyncio.Queue[_SchedulerCommand]
    """Manual transitions for the scheduler task."""
    _event_cbs: list[Callable[[BroadcastEvent], Coroutine[None, None, None]]]
    _event_tasks: set[asyncio.Task[None]]
    """Event callbacks still running, referenced until they finish."""
    _in_track_window: bool = False
    """True while the scheduler sleeps through a track, the only time a skip applies."""
    _track_gap_s: float
    _join_tail_guard_ms: int

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        track_gap_ms: int = 0,
        join_tail_guard_ms: int = DEFAULT_JOIN_TAIL_GUARD_MS,
    ) -> None:
        """
        Initialize an idle broadcast with an empty queue.

        Args:
            loop: Event loop running the scheduler, also the clock source.
            track_gap_ms: Silence between two tracks.
            join_tail_guard_ms: Joining listeners never start closer than this
                to the end of the current track.
        """
        self._loop = loop
        self._queue = PlaybackQueue()
        self._clock = PlaybackClock(loop.time)
        self._listeners = set()
        self._state = BroadcastState.IDLE
        self._commands = asyncio.Queue()
        self._event_cbs = []
        self._event_tasks = set()
        self._track_gap_s = max(track_gap_ms, 0) / 1000
        self._join_tail_guard_ms = max(join_tail_guard_ms, 0)

    # Lifecycle

    def start(self) -> None:
        """Start the scheduler, it plays as soon as the queue has a track."""
        if self._scheduler_task is not None and not self._scheduler_task.done():
            return
        logger.debug("Starting scheduler with %d queued track(s)", len(self._queue))
        self._scheduler_task = self._loop.create_task(self._run_scheduler())

    async def stop(self) -> None:
        """Stop the scheduler and close every attached listener."""
        if self._scheduler_task is not None:
            task, self._scheduler_task = self._scheduler_task, None
            task.cancel()
            with suppress(asyncio.CancelledError):
                try:
                    await task
                except Exception:
                    # Already logged when the scheduler crashed
                    logger.debug("Scheduler had failed before shutdown", exc_info=True)
        self._clock.pause()
        self._set_state(BroadcastState.IDLE)
        for listener in list(self._listeners):
            listener.close()
        logger.info("Broadcast stopped, closed %d listener(s)", len(self._listeners))

    # Queue API

    def load(self, tracks: Iterable[Track]) -> int:
        """Append the initial catalog, returns the number of tracks added."""
        count = 0
        for track in tracks:
            self._queue.append(track)
            count += 1
        if count:
            self._notify_queue_changed()
        return count

    def append(self, track: Track) -> int:
        """Add a track at the end of the play order."""
        index = self._queue.append(track)
        self._notify_queue_changed()
        return index

    def insert_after_current(self, track: Track) -> int:
        """
        Queue a track to play right after the current one.

        Raises:
            DuplicateTrackError: The source key of ``track`` is already queued.
        """
        index = self._queue.insert_after_current(track)
        logger.info("Queued %s at position %d", track, index)
        self._notify_queue_changed()
        return index

    def remove(self, track_id: str) -> Track | None:
        """
        Remove a track from the queue.

        Removing the now playing track moves the broadcast to whatever track
        takes its position. Returns the removed track, or None if unknown.
        """
        result = self._queue.remove(track_id)
        if result is None:
            return None
        track, was_current = result
        logger.info("Removed %s from the queue%s", track, " while playing" if was_current else "")
        if track.is_acquired:
            self._signal_event(TrackEvictedEvent(track))
        self._notify_queue_changed()
        return track

    def skip(self) -> bool:
        """
        End the current track now.

        Returns False when no track window is running, e.g. while idle, during
        the gap between two tracks or while the next file is being checked.
        """
        if not self._in_track_window:
            return False
        self._commands.put_nowait(_SkipCommand())
        return True

    def contains_source_key(self, source_key: str) -> bool:
        """Whether a track with this source key is queued."""
        return self._queue.contains_source_key(source_key)

    def _notify_queue_changed(self) -> None:
        self._commands.put_nowait(_QueueChangedCommand())

    # Listener API

    def attach(self, listener: Listener) -> bool:
        """
        Join a listener to the broadcast in progress.

        The listener starts with the current track at the byte offset matching
        the elapsed time, and receives every following track from byte 0.

        Returns:
            False if nothing is playing, the listener is not attached then.
        """
        track = self._clock.track
        if self._state is not BroadcastState.PLAYING or track is None:
            logger.debug("Listener %s rejected, nothing is playing", listener.listener_id)
            return False
        elapsed_ms = clamp_join_elapsed(track, self._clock.elapsed_ms(), self._join_tail_guard_ms)
        offset = estimate_byte_offset(track, elapsed_ms, track.size_bytes)
        self._listeners.add(listener)
        listener.play(track, offset)
        logger.info(
            "Listener %s (%s) joined %s at %d ms (byte %d), %d listening",
            listener.listener_id,
            listener.remote or "local",
            track.display_name,
            elapsed_ms,
            offset,
            len(self._listeners),
        )
        self._signal_event(ListenerAddedEvent(listener.listener_id))
        return True

    def detach(self, listener: Listener) -> None:
        """Remove a listener, other listeners and the scheduler are unaffected."""
        if listener not in self._listeners:
            return
        self._listeners.remove(listener)
        logger.info(
            "Listener %s left, %d listening", listener.listener_id, len(self._listeners)
        )
        self._signal_event(ListenerRemovedEvent(listener.listener_id))

    # Scheduler

    async def _run_scheduler(self) -> None:
        """Advance through the queue forever, one track window at a time."""
        unreadable_in_a_row = 0
        try:
            while True:
                track = self._queue.current
                if track is None:
                    self._go_idle()
                    await self._commands.get()
                    continue

                readable = await self._is_readable(track)
                if self._queue.current is not track:
                    # The queue changed while the file was checked
                    continue
                if not readable:
                    logger.warning("Cannot read %s (%s), skipping it", track, track.path)
                    self._finish_track(track, skipped=True)
                    unreadable_in_a_row += 1
                    if unreadable_in_a_row >= max(len(self._queue), 1):
                        logger.error(
                            "No readable track in the queue, retrying in %.0fs",
                            UNREADABLE_RETRY_DELAY_S,
                        )
                        self._go_idle()
                        await self._wait_command(UNREADABLE_RETRY_DELAY_S)
                        unreadable_in_a_row = 0
                    continue
                unreadable_in_a_row = 0

                self._drain_commands()
                self._begin_track(track)
                ended, skipped = await self._wait_track_window(track)
                if not ended:
                    # The now playing track was removed, play what took its place
                    continue
                self._finish_track(track, skipped=skipped)
                if self._track_gap_s > 0 and self._queue:
                    await self._wait_command(self._track_gap_s)
        except asyncio.CancelledError:
            logger.debug("Scheduler cancelled")
            raise
        except Exception:
            logger.exception("Scheduler crashed")
            self._clock.pause()
            self._set_state(BroadcastState.IDLE)
            raise

    async def _is_readable(self, track: Track) -> bool:
        def _check() -> bool:
            try:
                with track.path.open("rb") as handle:
                    handle.read(1)
            except OSError:
                return False
            return True

        return await asyncio.to_thread(_check)

    def _begin_track(self, track: Track) -> None:
        self._clock.start(track)
        self._set_state(BroadcastState.PLAYING)
        logger.info(
            "Now playing [%d/%d]: %s to %d listener(s)",
            self._queue.current_index + 1,
            len(self._queue),
            track,
            len(self._listeners),
        )
        for listener in list(self._listeners):
            if listener.closing:
                self.detach(listener)
                continue
            listener.play(track, 0)
        self._signal_event(TrackStartedEvent(track, self._queue.current_index))

    async def _wait_track_window(self, track: Track) -> tuple[bool, bool]:
        """
        Sleep until the window of ``track`` ends.

        Returns:
            (ended, skipped). ended is False if the track was removed from the
            queue while playing.
        """
        self._in_track_window = True
        try:
            while True:
                remaining_ms = self._clock.remaining_ms()
                if remaining_ms <= 0:
                    return True, False
                command = await self._wait_command(remaining_ms / 1000)
                if command is None:
                    return True, False
                if isinstance(command, _SkipCommand):
                    logger.info("Skipping %s", track)
                    return True, True
                if self._queue.current is not track:
                    logger.debug("Now playing track %s left the queue", track)
                    return False, False
        finally:
            self._in_track_window = False

    def _finish_track(self, track: Track, *, skipped: bool) -> None:
        """Evict or advance past ``track`` once its window is over."""
        if track.is_acquired:
            if self._queue.current is track:
                self._queue.remove_current()
            else:
                self._queue.remove(track.track_id)
            logger.info("Evicted one-shot track %s", track)
            self._signal_event(TrackEvictedEvent(track))
        elif self._queue.current is track:
            self._queue.advance()
        self._signal_event(TrackEndedEvent(track, skipped=skipped))

    def _go_idle(self) -> None:
        self._clock.pause()
        if self._state is not BroadcastState.IDLE:
            logger.info("Queue is empty, waiting for tracks")
        self._set_state(BroadcastState.IDLE)

    async def _wait_command(self, timeout: float) -> _SchedulerCommand | None:
        """Wait for a manual transition, None if ``timeout`` passed first."""
        try:
            async with asyncio.timeout(timeout):
                return await self._commands.get()
        except TimeoutError:
            return None

    def _drain_commands(self) -> None:
        # Commands issued before this track started do not apply to it
        while not self._commands.empty():
            self._commands.get_nowait()

    def _set_state(self, state: BroadcastState) -> None:
        if self._state is state:
            return
        self._state = state
        self._signal_event(BroadcastStateChangedEvent(state))

    # Events

    def add_event_listener(
        self, callback: Callable[[BroadcastEvent], Coroutine[None, None, None]]
    ) -> Callable[[], None]:
        """
        Register a callback to listen for changes of this broadcast.

        Changes include:
        - A track started, ended or was evicted
        - The broadcast went idle or started playing
        - A listener joined or left

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)
        return lambda: self._event_cbs.remove(callback)

    def _signal_event(self, event: BroadcastEvent) -> None:
        for cb in self._event_cbs:
            task = self._loop.create_task(cb(event))
            self._event_tasks.add(task)
            task.add_done_callback(self._event_tasks.discard)

    # State

    @property
    def state(self) -> BroadcastState:
        """Current state of the broadcast."""
        return self._state

    @property
    def queue(self) -> PlaybackQueue:
        """The play order. Mutate it through the Broadcast methods only."""
        return self._queue

    @property
    def clock(self) -> PlaybackClock:
        """The now playing clock."""
        return self._clock

    @property
    def current_track(self) -> Track | None:
        """The now playing track, None while idle."""
        return self._clock.track

    @property
    def listeners(self) -> set[Listener]:
        """All attached listeners."""
        return self._listeners

    def position_ms(self) -> int:
        """How far into the now playing track the broadcast is."""
        return self._clock.elapsed_ms()

    def snapshot(self) -> StatusPayload:
        """Describe the broadcast for the status API."""
        playing = self._clock.track
        return StatusPayload(
            state=self._state,
            listeners=len(self._listeners),
            queue=[track.to_info() for track in self._queue],
            current_index=self._queue.current_index if self._queue else None,
            now_playing=playing.to_info() if playing is not None else None,
            position_ms=self.position_ms() if playing is not None else None,
        )
