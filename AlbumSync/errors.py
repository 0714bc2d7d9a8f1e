"""
Errors - Exception hierarchy for scanning and syncing.

Scan-time errors (ScanError, AmbiguousAlbumIdentity) are fatal and propagate
to the caller before any sync starts. Everything raised while applying a
plan is caught per operation by the SyncExecutor and recorded in the
SyncReport.
"""

from pathlib import Path
from typing import Optional


class AlbumSyncError(Exception):
    """Base class for all AlbumSync errors."""


class ConfigError(AlbumSyncError):
    """Invalid settings or location descriptor."""


class ScanError(AlbumSyncError):
    """The source tree (or one branch of it) could not be read."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class AmbiguousAlbumIdentity(ScanError):
    """Two album directories normalize to the same (artist, album) pair."""

    def __init__(self, key, first: Path, second: Path):
        super().__init__(
            f"Albums {str(first)!r} and {str(second)!r} both resolve to "
            f"{key.artist!r} / {key.title!r}",
            path=second,
        )
        self.key = key
        self.first = first
        self.second = second


class ConversionFailed(AlbumSyncError):
    """The external converter failed for a track; the whole album fails."""

    def __init__(self, album: str, reason: str, track: Optional[Path] = None):
        detail = f" ({track.name})" if track is not None else ""
        super().__init__(f"Conversion failed for {album}{detail}: {reason}")
        self.album = album
        self.track = track
        self.reason = reason


class IoError(AlbumSyncError):
    """A read/write/delete against a Location failed."""

    def __init__(self, path: str | Path, reason: str):
        super().__init__(f"I/O error on {path}: {reason}")
        self.path = str(path)
        self.reason = reason


class DestinationUnreachable(AlbumSyncError):
    """A device-backed destination can no longer be reached."""

    def __init__(self, destination: str, reason: str = ""):
        msg = f"Destination unreachable: {destination}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.destination = destination
        self.reason = reason


class DeviceDisconnected(AlbumSyncError):
    """Transport-level loss of a device; retried by DeviceLocation."""


class InvalidTransition(AlbumSyncError):
    """Illegal device reachability state transition."""

    def __init__(self, current, requested):
        super().__init__(f"Invalid reachability transition: {current.name} -> {requested.name}")
        self.current = current
        self.requested = requested
