"""
AlbumSync - Keeps album-organized music collections in sync across destinations

Core components:
- LibraryScanner: Scans the source folder into artists, albums and tracks
- Location: Uniform interface over local directories and attached devices
- ConversionCache: Converted album copies kept beside the source, reused across runs
- SyncPlanner: Computes copy/delete/repair/skip operations per destination
- SyncExecutor: Applies a plan with per-album failure isolation

Entry points:
- scan / plan / execute / sync_all
"""

from .adb import AdbDevice, discover_adb_devices, find_adb
from .conversion_cache import ConversionCache, ConversionRecord, compute_fingerprint
from .converter import Converter, FFmpegConverter, TranscodeResult, is_ffmpeg_available, transcode
from .device_location import DeviceHandle, DeviceLocation, ShellResult
from .engine import Destination, execute, plan, sync_all, sync_destination
from .errors import (
    AlbumSyncError,
    AmbiguousAlbumIdentity,
    ConfigError,
    ConversionFailed,
    DestinationUnreachable,
    DeviceDisconnected,
    InvalidTransition,
    IoError,
    ScanError,
)
from .formats import AudioFormat
from .library import Album, AlbumKey, Artist, LibraryModel, LibraryScanner, Track, scan
from .local_location import LocalLocation
from .location import CopyResult, Entry, InventoryEntry, Location
from .metadata import AlbumInfo, MetadataProvider, StaticMetadata, TagMetadata
from .planner import Operation, OperationKind, SyncPlan, SyncPlanner, SyncPolicy, compute_plan
from .reachability import DeviceState, Reachability
from .settings import (
    AppSettings,
    build_cache,
    configure_logging,
    get_settings,
    reload_settings,
    resolve_destinations,
)
from .sync_executor import OperationOutcome, OutcomeStatus, SyncExecutor, SyncProgress, SyncReport

__all__ = [
    # Library
    "scan",
    "LibraryScanner",
    "LibraryModel",
    "Artist",
    "Album",
    "AlbumKey",
    "Track",
    "AudioFormat",
    # Metadata
    "AlbumInfo",
    "MetadataProvider",
    "StaticMetadata",
    "TagMetadata",
    # Locations
    "Location",
    "LocalLocation",
    "DeviceLocation",
    "DeviceHandle",
    "ShellResult",
    "Entry",
    "InventoryEntry",
    "CopyResult",
    "DeviceState",
    "Reachability",
    "AdbDevice",
    "discover_adb_devices",
    "find_adb",
    # Conversion
    "Converter",
    "FFmpegConverter",
    "TranscodeResult",
    "transcode",
    "is_ffmpeg_available",
    "ConversionCache",
    "ConversionRecord",
    "compute_fingerprint",
    # Planning
    "plan",
    "compute_plan",
    "SyncPlanner",
    "SyncPlan",
    "SyncPolicy",
    "Operation",
    "OperationKind",
    # Execution
    "execute",
    "sync_destination",
    "sync_all",
    "Destination",
    "SyncExecutor",
    "SyncReport",
    "SyncProgress",
    "OperationOutcome",
    "OutcomeStatus",
    # Settings
    "AppSettings",
    "get_settings",
    "reload_settings",
    "resolve_destinations",
    "build_cache",
    "configure_logging",
    # Errors
    "AlbumSyncError",
    "ScanError",
    "AmbiguousAlbumIdentity",
    "ConversionFailed",
    "IoError",
    "DestinationUnreachable",
    "DeviceDisconnected",
    "InvalidTransition",
    "ConfigError",
]
