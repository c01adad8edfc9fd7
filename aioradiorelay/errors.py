"""Exceptions raised by the radio relay."""

from __future__ import annotations


class RadioError(Exception):
    """Base class for all errors raised by aioradiorelay."""


class AcquisitionError(RadioError):
    """A track could not be acquired from an external source."""


class TrackNotFoundError(AcquisitionError):
    """The search did not resolve to any playable source."""


class DownloaderMissingError(AcquisitionError):
    """The external download tool is not installed."""


class DownloadFailedError(AcquisitionError):
    """The external download tool failed or did not produce a file."""


class TrackReadError(RadioError):
    """The backing file of a track could not be opened or read."""


class DuplicateTrackError(RadioError):
    """A track with the same source key is already queued."""

    def __init__(self, source_key: str) -> None:
        """Initialize with the conflicting source key."""
        super().__init__(f"Track {source_key} is already queued")
        self.source_key = source_key


class SinkWriteError(RadioError):
    """Writing to a listener failed because the peer went away."""
