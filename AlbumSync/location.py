"""
Location - Uniform interface over the places albums can be synced to.

Variants:
- LocalLocation:  a directory tree reachable through the filesystem
- DeviceLocation: a device reached through a transport handle (e.g. adb)

Destination layout, shared by every variant:

    <root>/<Artist>/<Album>/<tracks + cover>

Albums are written into a hidden staging directory next to their final
place and moved into place once every file is written. Hidden entries are
never part of an inventory, so an interrupted copy is never mistaken for a
synced album.

Paths passed to list()/exists() are relative to the location root and use
"/" separators on every platform.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .errors import ConversionFailed, IoError
from .formats import AudioFormat, cover_target_name, is_audio, is_hidden, single_format
from .library import Album, AlbumKey, normalize, safe_name, split_format_tag

logger = logging.getLogger(__name__)

STAGING_TAG = ".partial-"


@dataclass(frozen=True)
class Entry:
    """One directory entry of a Location."""

    name: str
    is_dir: bool
    size: int = 0


@dataclass(frozen=True)
class InventoryEntry:
    """An album currently present on a destination."""

    key: AlbumKey
    artist: str  # Artist directory name
    title: str  # Album directory name, format tag stripped
    format: Optional[AudioFormat]  # Single format of the stored tracks, None if mixed
    tracks: Optional[frozenset[str]] = None  # Track identities, None if unknown

    @property
    def description(self) -> str:
        return f"{self.artist} - {self.title}"


@dataclass
class CopyResult:
    """What copy_album()/repair_album() wrote."""

    converted: bool
    files: int = 0
    bytes: int = 0


def make_inventory_entry(artist_dir: str, album_dir: str, file_names: Iterable[str]) -> InventoryEntry:
    """Build an InventoryEntry from directory names and the files inside."""
    title, _ = split_format_tag(album_dir)
    audio = [n for n in file_names if is_audio(n) and not is_hidden(n)]
    return InventoryEntry(
        key=AlbumKey.of(artist_dir, title),
        artist=artist_dir,
        title=title,
        format=single_format(audio),
        tracks=frozenset(Path(n).stem.lower() for n in audio),
    )


def add_to_inventory(inventory: dict[AlbumKey, InventoryEntry], entry: InventoryEntry, where: str) -> None:
    existing = inventory.get(entry.key)
    if existing is not None:
        logger.warning(
            f"{where}: {existing.description!r} and {entry.description!r} are the same album; "
            f"using the first"
        )
        return
    inventory[entry.key] = entry


class Location(ABC):
    """
    Capability interface shared by every destination backend.

    Callers only use this interface; retries, timeouts and locking are
    internal to each variant.
    """

    # ── Capabilities ────────────────────────────────────────────────────────

    @abstractmethod
    def list(self, path: str = "") -> list[Entry]:
        """Entries of a directory, sorted by name. Raises IoError."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """True if path exists under the root."""

    @abstractmethod
    def read_inventory(self) -> dict[AlbumKey, InventoryEntry]:
        """Albums currently present, keyed by identity. Raises IoError."""

    @abstractmethod
    def copy_album(
        self,
        album: Album,
        source: Optional["Location"] = None,
        target_format: Optional[AudioFormat] = None,
        cache=None,
    ) -> CopyResult:
        """
        Write album in target_format, replacing any stored copy.

        A target_format of None (or the album's native format) copies the
        source files directly; any other format is taken from the
        ConversionCache, which converts on a miss.

        Raises:
            ConversionFailed, IoError, DestinationUnreachable
        """

    @abstractmethod
    def repair_album(
        self,
        album: Album,
        missing: Iterable[str],
        source: Optional["Location"] = None,
        target_format: Optional[AudioFormat] = None,
        cache=None,
    ) -> CopyResult:
        """Copy only the tracks whose identities are in missing (and a missing cover)."""

    @abstractmethod
    def delete_album(self, artist: str, title: str) -> None:
        """Remove an album and its artist directory if left empty. Raises IoError."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description."""

    def __str__(self) -> str:
        return self.describe()

    # ── Shared helpers ──────────────────────────────────────────────────────

    def artist_dir_name(self, artist: str) -> str:
        """Existing artist directory matching artist, or a new safe name."""
        wanted = normalize(artist)
        if self.exists(""):
            for entry in self.list(""):
                if entry.is_dir and not is_hidden(entry.name) and normalize(entry.name) == wanted:
                    return entry.name
        return safe_name(artist)

    def album_dir_names(self, artist_dir: str, title: str) -> list[str]:
        """Existing album directories under artist_dir with the same identity as title."""
        if not self.exists(artist_dir):
            return []
        wanted = normalize(title)
        names = []
        for entry in self.list(artist_dir):
            if not entry.is_dir or is_hidden(entry.name):
                continue
            if normalize(split_format_tag(entry.name)[0]) == wanted:
                names.append(entry.name)
        return names

    def album_path(self, artist: str, title: str) -> str:
        """Root-relative path of an album directory, existing or to be created."""
        artist_dir = self.artist_dir_name(artist)
        existing = self.album_dir_names(artist_dir, title)
        return f"{artist_dir}/{existing[0] if existing else safe_name(title)}"

    def stale_staging_names(self, artist_dir: str, album_dir: str) -> list[str]:
        """Staging directories left behind by interrupted copies of an album."""
        if not self.exists(artist_dir):
            return []
        prefix = f".{album_dir}{STAGING_TAG}"
        return [e.name for e in self.list(artist_dir) if e.is_dir and e.name.startswith(prefix)]

    @staticmethod
    def prepare_files(
        album: Album,
        source: Optional["Location"],
        target_format: Optional[AudioFormat],
        cache,
    ) -> tuple[list[tuple[Path, str]], bool]:
        """
        Local files to write for an album, with their destination names.

        Returns:
            ([(local_path, destination_name), ...], converted)
        """
        root = getattr(source, "root", None)
        if root is not None:
            try:
                album.path.relative_to(Path(root))
            except ValueError:
                raise IoError(album.path, f"album is not inside source {source}") from None

        if target_format is None or target_format == album.native_format:
            files = [(t.path, t.name) for t in album.tracks]
            converted = False
        else:
            if cache is None:
                raise ConversionFailed(album.description, f"no conversion cache to produce {target_format}")
            cache.get_or_create(album, target_format)
            files = [(p, p.name) for p in cache.files(album, target_format)]
            converted = True

        if album.cover is not None:
            files.append((album.cover, cover_target_name(album.cover)))
        return files, converted

    @staticmethod
    def missing_files(files: list[tuple[Path, str]], missing: Iterable[str]) -> list[tuple[Path, str]]:
        """Subset of prepared files whose track identity is in missing."""
        wanted = {m.lower() for m in missing}
        return [(p, name) for p, name in files if is_audio(name) and Path(name).stem.lower() in wanted]
