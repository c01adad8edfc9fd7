"""
Radio relay server: one broadcast shared by any number of HTTP listeners.

RadioServer is the core of the relay, responsible for:
- Keeping every listener on the same track at the same time
- Acquiring requested tracks and queueing them after the current one
"""

__all__ = [
    "Broadcast",
    "BroadcastEvent",
    "BroadcastStateChangedEvent",
    "Catalog",
    "Listener",
    "ListenerAddedEvent",
    "ListenerRemovedEvent",
    "PlaybackClock",
    "PlaybackQueue",
    "RadioServer",
    "StreamAdvertiser",
    "Track",
    "TrackEndedEvent",
    "TrackEvictedEvent",
    "TrackStartedEvent",
    "YouTubeAcquirer",
]

from .acquisition import YouTubeAcquirer
from .broadcast import (
    Broadcast,
    BroadcastEvent,
    BroadcastStateChangedEvent,
    ListenerAddedEvent,
    ListenerRemovedEvent,
    TrackEndedEvent,
    TrackEvictedEvent,
    TrackStartedEvent,
)
from .catalog import Catalog
from .clock import PlaybackClock
from .discovery import StreamAdvertiser
from .listener import Listener
from .queue import PlaybackQueue
from .server import RadioServer
from .track import Track
