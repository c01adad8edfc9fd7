"""Models for the radio relay HTTP API."""

from __future__ import annotations

__all__ = [
    "AcquisitionJob",
    "AddTrackRequest",
    "BroadcastState",
    "ErrorPayload",
    "JobStatus",
    "Provenance",
    "StatusPayload",
    "TrackInfo",
    "api",
    "types",
]

from . import api, types
from .api import AcquisitionJob, AddTrackRequest, ErrorPayload, StatusPayload, TrackInfo
from .types import BroadcastState, JobStatus, Provenance
