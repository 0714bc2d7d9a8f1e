"""
Local Location - Destination backed by a directory tree on a mounted filesystem.

Always available: every operation maps directly onto pathlib/shutil calls and
fails immediately with IoError. Nothing here times out.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import Iterable, Optional

from .errors import IoError
from .formats import AudioFormat, is_hidden
from .library import Album, AlbumKey, normalize, safe_name
from .location import (
    STAGING_TAG,
    CopyResult,
    Entry,
    InventoryEntry,
    Location,
    add_to_inventory,
    make_inventory_entry,
)

logger = logging.getLogger(__name__)

# Steps that resolve, replace or remove entries of one artist directory run
# under that directory's lock; file copying itself runs unlocked.
_artist_locks: dict[tuple[str, str], threading.Lock] = {}
_artist_locks_guard = threading.Lock()


def _artist_lock(root: Path, artist: str) -> threading.Lock:
    key = (os.path.abspath(root), normalize(artist))
    with _artist_locks_guard:
        return _artist_locks.setdefault(key, threading.Lock())


class LocalLocation(Location):
    """
    A local directory laid out as <root>/<Artist>/<Album>/.

    Usage:
        dest = LocalLocation("E:/Music")
        inventory = dest.read_inventory()
        dest.copy_album(album, source=LocalLocation(library.root))

    The root is created on first write.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, path: str) -> Path:
        return self.root / path if path else self.root

    # ── Capabilities ────────────────────────────────────────────────────────

    def list(self, path: str = "") -> list[Entry]:
        directory = self._path(path)
        entries = []
        try:
            with os.scandir(directory) as it:
                for child in it:
                    try:
                        is_dir = child.is_dir()
                        size = 0 if is_dir else child.stat().st_size
                    except FileNotFoundError:
                        continue  # Removed while listing
                    entries.append(Entry(child.name, is_dir, size))
        except OSError as e:
            raise IoError(directory, e.strerror or str(e)) from e
        return sorted(entries, key=lambda e: e.name)

    def exists(self, path: str) -> bool:
        return self._path(path).exists()

    def read_inventory(self) -> dict[AlbumKey, InventoryEntry]:
        inventory: dict[AlbumKey, InventoryEntry] = {}
        if not self.root.exists():
            return inventory

        for artist in self.list(""):
            if not artist.is_dir or is_hidden(artist.name):
                continue
            for album in self.list(artist.name):
                if not album.is_dir or is_hidden(album.name):
                    continue
                rel = f"{artist.name}/{album.name}"
                names = [e.name for e in self.list(rel) if not e.is_dir]
                add_to_inventory(inventory, make_inventory_entry(artist.name, album.name, names), str(self))

        logger.debug(f"{self}: {len(inventory)} albums in inventory")
        return inventory

    def copy_album(
        self,
        album: Album,
        source: Optional[Location] = None,
        target_format: Optional[AudioFormat] = None,
        cache=None,
    ) -> CopyResult:
        files, converted = self.prepare_files(album, source, target_format, cache)

        lock = _artist_lock(self.root, album.artist)
        album_name = safe_name(album.title)
        staging = None

        written = 0
        try:
            with lock:
                artist_dir = self.artist_dir_name(album.artist)
                artist_path = self.root / artist_dir
                staging = artist_path / f".{album_name}{STAGING_TAG}{uuid.uuid4().hex[:8]}"
                staging.mkdir(parents=True)

            for local, name in files:
                shutil.copy2(local, staging / name)
                written += (staging / name).stat().st_size

            with lock:
                for name in self.album_dir_names(artist_dir, album.title):
                    logger.debug(f"{self}: replacing {artist_dir}/{name}")
                    shutil.rmtree(artist_path / name)
                os.replace(staging, artist_path / album_name)
                staging = None
                try:
                    stale = self.stale_staging_names(artist_dir, album_name)
                except IoError as e:
                    logger.warning(f"{self}: cannot look for stale staging of {album.description}: {e}")
                    stale = []
                for name in stale:
                    shutil.rmtree(artist_path / name, ignore_errors=True)
        except OSError as e:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            raise IoError(e.filename or staging or self.root, e.strerror or str(e)) from e
        except IoError:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info(f"{self}: wrote {album.description} ({len(files)} files, {written} bytes)")
        return CopyResult(converted=converted, files=len(files), bytes=written)

    def repair_album(
        self,
        album: Album,
        missing: Iterable[str],
        source: Optional[Location] = None,
        target_format: Optional[AudioFormat] = None,
        cache=None,
    ) -> CopyResult:
        with _artist_lock(self.root, album.artist):
            artist_dir = self.artist_dir_name(album.artist)
            existing = self.album_dir_names(artist_dir, album.title)
        if not existing:
            logger.debug(f"{self}: {album.description} vanished, copying it whole")
            return self.copy_album(album, source, target_format, cache)

        files, converted = self.prepare_files(album, source, target_format, cache)
        album_path = self.root / artist_dir / existing[0]

        to_write = self.missing_files(files, missing)
        if album.cover is not None:
            cover_local, cover_name = files[-1]
            if not (album_path / cover_name).exists():
                to_write.append((cover_local, cover_name))

        written = 0
        for local, name in to_write:
            tmp = album_path / f".{name}{STAGING_TAG}{uuid.uuid4().hex[:8]}"
            try:
                shutil.copy2(local, tmp)
                os.replace(tmp, album_path / name)
                written += (album_path / name).stat().st_size
            except OSError as e:
                tmp.unlink(missing_ok=True)
                raise IoError(album_path / name, e.strerror or str(e)) from e

        logger.info(f"{self}: repaired {album.description} ({len(to_write)} files)")
        return CopyResult(converted=converted, files=len(to_write), bytes=written)

    def delete_album(self, artist: str, title: str) -> None:
        with _artist_lock(self.root, artist):
            artist_dir = self.artist_dir_name(artist)
            names = self.album_dir_names(artist_dir, title)
            if not names:
                logger.debug(f"{self}: {artist} - {title} already absent")
                return

            artist_path = self.root / artist_dir
            try:
                for name in names:
                    shutil.rmtree(artist_path / name)
                if not any(artist_path.iterdir()):
                    artist_path.rmdir()
            except OSError as e:
                raise IoError(e.filename or artist_path, e.strerror or str(e)) from e

        logger.info(f"{self}: deleted {artist} - {title}")

    def describe(self) -> str:
        return f"local:{self.root}"
