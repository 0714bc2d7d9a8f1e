"""
Application settings with JSON persistence.

Settings are stored in the user's app data directory:
  Windows: %APPDATA%/AlbumSync/settings.json
  macOS:   ~/Library/Application Support/AlbumSync/settings.json
  Linux:   ~/.config/AlbumSync/settings.json

Destination descriptors:
  "E:/Music"                     local directory
  "adb://"                       first adb device, /storage/emulated/0/Music
  "adb://R58M123ABC/sdcard/Music" adb device by serial, custom root
"""

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .adb import AdbDevice
from .conversion_cache import FINGERPRINT_MODES, ConversionCache
from .converter import FFmpegConverter
from .device_location import DEFAULT_DEVICE_ROOT, DeviceHandle, DeviceLocation
from .engine import Destination
from .errors import ConfigError
from .formats import AudioFormat
from .local_location import LocalLocation
from .location import Location
from .metadata import TagMetadata
from .planner import SyncPolicy

logger = logging.getLogger(__name__)

ADB_SCHEME = "adb://"


def _default_settings_dir() -> str:
    """Get the platform-appropriate settings directory."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
    elif sys.platform == "darwin":
        base = os.path.join(os.path.expanduser("~"), "Library", "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", os.path.join(os.path.expanduser("~"), ".config"))
    return os.path.join(base, "AlbumSync")


def _get_settings_path() -> str:
    return os.path.join(_default_settings_dir(), "settings.json")


@dataclass
class AppSettings:
    """All user-configurable settings."""

    # ── Library ─────────────────────────────────────────────────────────────
    # Source music folder
    library_root: str = ""

    # Fill in album artists from track tags (most common value per album)
    album_artist_from_tags: bool = False

    # ── Destinations ────────────────────────────────────────────────────────
    # [{"name": "phone", "location": "adb://", "format": "mp3", "policy": "mirror"}]
    # format: audio format name, or "" / "native" to keep each album's format
    # policy: "mirror" (delete albums not in the library) or "additive"
    destinations: list = field(default_factory=list)

    # ── Sync ────────────────────────────────────────────────────────────────
    # Number of parallel copy/convert workers per destination.
    # 0 = auto (CPU count, capped at 8), 1 = sequential.
    sync_workers: int = 0

    # How converted copies are validated against their source:
    # "content" (hash the audio, exact) or "mtime" (size + mtime, fast).
    fingerprint_mode: str = "content"

    # ── Transcoding ─────────────────────────────────────────────────────────
    # Bitrate for lossy encoders (kbps). Common values: 128, 192, 256, 320.
    bitrate: int = 256

    # FFmpeg timeout in seconds per file.
    transcode_timeout: int = 300

    # ── Devices ─────────────────────────────────────────────────────────────
    # Attempts per device command before the device counts as unreachable.
    device_retries: int = 3

    # Timeout in seconds per device command.
    device_timeout: float = 30.0

    # ── Logging ─────────────────────────────────────────────────────────────
    log_level: str = "INFO"

    def save(self, path: Optional[str | Path] = None) -> None:
        """Write settings atomically (temp file + rename)."""
        path = str(path or _get_settings_path())
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

        tmp = path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except Exception:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> "AppSettings":
        """Load settings from JSON, returning defaults for missing keys."""
        path = str(path or _get_settings_path())
        settings = cls()
        if not os.path.exists(path):
            return settings
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                return settings
            # Only set known fields - silently ignore unknown keys
            for key, value in data.items():
                if hasattr(settings, key):
                    expected_type = type(getattr(settings, key))
                    if expected_type is float and isinstance(value, int) and not isinstance(value, bool):
                        value = float(value)
                    if isinstance(value, expected_type):
                        setattr(settings, key, value)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read settings {path}: {e}")
        return settings


# ── Singleton accessor ──────────────────────────────────────────────────────

_instance: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get the global settings instance (loaded once on first access)."""
    global _instance
    if _instance is None:
        _instance = AppSettings.load()
    return _instance


def reload_settings() -> AppSettings:
    """Force reload from disk."""
    global _instance
    _instance = AppSettings.load()
    return _instance


# ── Resolution ──────────────────────────────────────────────────────────────

DeviceFactory = Callable[[Optional[str]], DeviceHandle]


def parse_location(
    descriptor: str,
    settings: Optional[AppSettings] = None,
    device_factory: Optional[DeviceFactory] = None,
) -> Location:
    """
    Turn a location descriptor into a Location.

    Raises:
        ConfigError: empty descriptor or unsupported scheme.
    """
    settings = settings or AppSettings()
    descriptor = (descriptor or "").strip()
    if not descriptor:
        raise ConfigError("Empty location descriptor")

    if descriptor.lower().startswith(ADB_SCHEME):
        rest = descriptor[len(ADB_SCHEME):]
        serial, _, path = rest.partition("/")
        root = "/" + path.strip("/") if path.strip("/") else DEFAULT_DEVICE_ROOT
        handle = (device_factory or AdbDevice)(serial or None)
        return DeviceLocation(
            handle,
            root=root,
            retries=settings.device_retries,
            timeout=settings.device_timeout,
        )

    if "://" in descriptor:
        scheme = descriptor.split("://", 1)[0]
        raise ConfigError(f"Unsupported location scheme {scheme!r} in {descriptor!r}")

    return LocalLocation(Path(descriptor).expanduser())


def resolve_destinations(
    settings: AppSettings,
    device_factory: Optional[DeviceFactory] = None,
) -> list[Destination]:
    """
    Build Destinations from settings.destinations.

    Raises:
        ConfigError: malformed entry, unknown format or policy, duplicate name.
    """
    destinations = []
    seen = set()
    for i, entry in enumerate(settings.destinations):
        if not isinstance(entry, dict):
            raise ConfigError(f"Destination #{i + 1} must be an object, got {type(entry).__name__}")

        name = str(entry.get("name") or f"destination-{i + 1}")
        if name in seen:
            raise ConfigError(f"Duplicate destination name {name!r}")
        seen.add(name)

        fmt_name = str(entry.get("format") or "").strip()
        try:
            target_format = None if fmt_name.lower() in ("", "native") else AudioFormat.parse(fmt_name)
        except ValueError as e:
            raise ConfigError(f"Destination {name!r}: {e}") from e

        try:
            policy = SyncPolicy.parse(entry.get("policy") or SyncPolicy.MIRROR)
        except ValueError as e:
            raise ConfigError(f"Destination {name!r}: {e}") from e

        location = parse_location(str(entry.get("location") or ""), settings, device_factory)
        destinations.append(Destination(name, location, target_format, policy))
        logger.debug(f"Destination {destinations[-1]}")

    return destinations


def build_cache(settings: AppSettings) -> ConversionCache:
    """ConversionCache with an ffmpeg converter configured from settings."""
    if settings.fingerprint_mode not in FINGERPRINT_MODES:
        raise ConfigError(f"Unknown fingerprint mode {settings.fingerprint_mode!r}")
    converter = FFmpegConverter(bitrate=settings.bitrate, timeout=settings.transcode_timeout)
    return ConversionCache(converter, fingerprint_mode=settings.fingerprint_mode)


def build_metadata(settings: AppSettings) -> Optional[TagMetadata]:
    return TagMetadata() if settings.album_artist_from_tags else None


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for applications embedding AlbumSync."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ConfigError(f"Unknown log level {level!r}")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(numeric)
