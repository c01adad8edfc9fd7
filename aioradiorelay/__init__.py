"""aioradiorelay: a synchronized internet radio relay built on asyncio."""

from __future__ import annotations

# Re-export the server library for easy import
from aioradiorelay.config import RadioConfig
from aioradiorelay.server import Broadcast, Listener, PlaybackQueue, RadioServer, Track

__all__ = [
    "Broadcast",
    "Listener",
    "PlaybackQueue",
    "RadioConfig",
    "RadioServer",
    "Track",
]
