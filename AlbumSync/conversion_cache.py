"""
Conversion Cache - Keeps converted copies of albums to avoid redundant transcoding.

Benefits:
- Multiple destinations: convert once, copy to every destination wanting the format
- Re-sync: if a destination is wiped, converted copies are still available
- Source edits: only reconvert when the album's fingerprint changed

Cache location: next to each source album, so it moves with the library.

Cache structure (album directory "<parent>/Abbey Road", target format mp3):
  <parent>/.Abbey Road.albumsync-mp3/
      fingerprint.json   - record: fingerprint, converted file names, timestamp
      01 Come Together.mp3
      ...

A record is only trusted while its fingerprint equals the fingerprint of the
album's current source tracks. Conversion is atomic per album: tracks are
converted into a temporary sibling directory which replaces the record only
after every track converted. A failed conversion leaves the previous record
untouched.
"""

import hashlib
import json
import logging
import os
import shutil
import threading
import uuid
from concurrent.futures import Future
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .converter import Converter
from .errors import ConversionFailed, IoError
from .formats import AudioFormat
from .library import Album, AlbumKey, LibraryModel

logger = logging.getLogger(__name__)

CACHE_TAG = ".albumsync-"
MARKER_FILENAME = "fingerprint.json"
RECORD_VERSION = 1

FINGERPRINT_MODES = ("content", "mtime")

_CHUNK = 1024 * 1024


@dataclass
class ConversionRecord:
    """Info about a converted copy of an album."""

    album: str  # "artist - title" identity at conversion time
    target_format: str
    fingerprint: str  # Fingerprint of the source tracks it was derived from
    files: list[str] = field(default_factory=list)  # Converted file names, in track order
    created: str = ""  # ISO timestamp
    version: int = RECORD_VERSION

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConversionRecord":
        return cls(
            album=data["album"],
            target_format=data["target_format"],
            fingerprint=data["fingerprint"],
            files=list(data.get("files", [])),
            created=data.get("created", ""),
            version=data.get("version", RECORD_VERSION),
        )


def compute_fingerprint(album: Album, mode: str = "content") -> str:
    """
    Fingerprint an album's source tracks.

    Modes:
        content: SHA-256 of every track's name and bytes. Exact, reads the audio.
        mtime:   SHA-256 of every track's name, size and mtime. Fast, but
                 misses edits on filesystems with coarse timestamps.
    """
    if mode not in FINGERPRINT_MODES:
        raise ValueError(f"Unknown fingerprint mode: {mode!r}")

    h = hashlib.sha256()
    h.update(mode.encode())
    for track in album.tracks:
        h.update(b"\0" + track.name.encode("utf-8", "surrogatepass") + b"\0")
        try:
            if mode == "mtime":
                st = track.path.stat()
                h.update(f"{st.st_size}:{st.st_mtime_ns}".encode())
            else:
                with open(track.path, "rb") as f:
                    while chunk := f.read(_CHUNK):
                        h.update(chunk)
        except OSError as e:
            raise IoError(track.path, e.strerror or str(e)) from e
    return h.hexdigest()


class ConversionCache:
    """
    Manages converted copies of source albums.

    Usage:
        cache = ConversionCache(FFmpegConverter())

        # Converted copy of the album, converting only if needed
        path = cache.get_or_create(album, AudioFormat.MP3)

        # Drop all converted copies
        cache.clear(library)

    Concurrent get_or_create calls for the same (album, format, fingerprint)
    are deduplicated: one caller converts, the others wait for its result.
    """

    def __init__(self, converter: Converter, fingerprint_mode: str = "content"):
        if fingerprint_mode not in FINGERPRINT_MODES:
            raise ValueError(f"Unknown fingerprint mode: {fingerprint_mode!r}")
        self.converter = converter
        self.fingerprint_mode = fingerprint_mode
        self.conversions = 0  # Albums converted by this instance

        self._lock = threading.Lock()
        self._in_flight: dict[tuple[AlbumKey, AudioFormat, str], Future] = {}

    # ── Lookup ──────────────────────────────────────────────────────────────

    def record_dir(self, album: Album, target_format: AudioFormat) -> Path:
        """Sibling directory holding the album's converted copy."""
        return album.path.parent / f".{album.path.name}{CACHE_TAG}{target_format.value}"

    def fingerprint(self, album: Album) -> str:
        return compute_fingerprint(album, self.fingerprint_mode)

    def lookup(self, album: Album, target_format: AudioFormat) -> Optional[ConversionRecord]:
        """Stored record for the album and format, valid or not."""
        marker = self.record_dir(album, target_format) / MARKER_FILENAME
        if not marker.exists():
            return None
        try:
            with open(marker, "r", encoding="utf-8") as f:
                return ConversionRecord.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable conversion record {marker}: {e}")
            return None

    def get(self, album: Album, target_format: AudioFormat, fingerprint: str) -> Optional[Path]:
        """
        Path to the converted copy if it exists and matches fingerprint.

        Returns:
            Path to the record directory, or None if not cached/invalid
        """
        record = self.lookup(album, target_format)
        if record is None:
            return None

        if record.fingerprint != fingerprint:
            logger.debug(f"Fingerprint changed for {album.description} [{target_format}], reconverting")
            return None

        record_dir = self.record_dir(album, target_format)
        missing = [name for name in record.files if not (record_dir / name).exists()]
        if missing:
            logger.debug(f"Cached files missing for {album.description} [{target_format}]: {missing[:3]}")
            return None

        logger.debug(f"Cache hit: {album.description} [{target_format}]")
        return record_dir

    def files(self, album: Album, target_format: AudioFormat) -> list[Path]:
        """Converted files of a valid record, in track order."""
        record = self.lookup(album, target_format)
        if record is None:
            return []
        record_dir = self.record_dir(album, target_format)
        return [record_dir / name for name in record.files]

    # ── Conversion ──────────────────────────────────────────────────────────

    def get_or_create(
        self,
        album: Album,
        target_format: AudioFormat,
        fingerprint: Optional[str] = None,
    ) -> Path:
        """
        Converted copy of album in target_format, converting on a miss.

        Raises:
            ConversionFailed: a track could not be converted; no record committed.
            IoError: the source tracks could not be read for fingerprinting.
        """
        if fingerprint is None:
            fingerprint = self.fingerprint(album)

        key = (album.key, target_format, fingerprint)
        with self._lock:
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future

        if not owner:
            logger.debug(f"Waiting for in-flight conversion of {album.description} [{target_format}]")
            return future.result()

        try:
            path = self.get(album, target_format, fingerprint)
            if path is None:
                path = self._convert(album, target_format, fingerprint)
            future.set_result(path)
            return path
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def _convert(self, album: Album, target_format: AudioFormat, fingerprint: str) -> Path:
        final_dir = self.record_dir(album, target_format)
        tmp_dir = final_dir.with_name(f"{final_dir.name}.tmp-{uuid.uuid4().hex[:8]}")

        try:
            tmp_dir.mkdir(parents=True)
        except OSError as e:
            raise ConversionFailed(album.description, f"cannot create {tmp_dir}: {e}") from e

        try:
            files = []
            for track in album.tracks:
                if track.format == target_format:
                    out = tmp_dir / track.name
                    shutil.copy2(track.path, out)
                else:
                    out = Path(self.converter.convert(track.path, target_format, tmp_dir))
                    if out.parent != tmp_dir:
                        out = Path(shutil.move(str(out), str(tmp_dir / out.name)))
                files.append(out.name)

            record = ConversionRecord(
                album=str(album.key),
                target_format=target_format.value,
                fingerprint=fingerprint,
                files=files,
                created=datetime.now(timezone.utc).isoformat(),
            )
            with open(tmp_dir / MARKER_FILENAME, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2, ensure_ascii=False)

            self._swap_into_place(tmp_dir, final_dir)

        except ConversionFailed:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise
        except Exception as e:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise ConversionFailed(album.description, str(e)) from e

        with self._lock:
            self.conversions += 1
        logger.info(f"Converted {album.description} → {target_format} ({len(files)} tracks)")
        return final_dir

    @staticmethod
    def _swap_into_place(new_dir: Path, final_dir: Path) -> None:
        """Replace final_dir with new_dir; the old record survives a failed swap."""
        old_dir = None
        if final_dir.exists():
            old_dir = final_dir.with_name(f"{final_dir.name}.old-{uuid.uuid4().hex[:8]}")
            os.replace(final_dir, old_dir)
        try:
            os.replace(new_dir, final_dir)
        except OSError:
            if old_dir is not None:
                os.replace(old_dir, final_dir)
            raise
        if old_dir is not None:
            shutil.rmtree(old_dir, ignore_errors=True)

    # ── Maintenance ─────────────────────────────────────────────────────────

    def _record_dirs(self, album: Album) -> list[Path]:
        """All cache directories of an album, including leftovers of interrupted runs."""
        prefix = f".{album.path.name}{CACHE_TAG}"
        try:
            return sorted(p for p in album.path.parent.iterdir() if p.is_dir() and p.name.startswith(prefix))
        except OSError:
            return []

    def invalidate(self, album: Album, target_format: Optional[AudioFormat] = None) -> int:
        """
        Remove converted copies of an album.

        Args:
            album: Source album
            target_format: If provided, only remove this format

        Returns:
            Number of cache directories removed
        """
        count = 0
        if target_format is not None:
            dirs = [d for d in [self.record_dir(album, target_format)] if d.exists()]
        else:
            dirs = self._record_dirs(album)

        for record_dir in dirs:
            try:
                shutil.rmtree(record_dir)
                count += 1
            except OSError as e:
                logger.warning(f"Failed to delete cached conversion {record_dir}: {e}")

        if count:
            logger.info(f"Invalidated {count} cached conversions for {album.description}")
        return count

    def clear(self, library: LibraryModel) -> int:
        """
        Clear every converted copy in a library.

        Returns:
            Number of cache directories removed
        """
        count = sum(self.invalidate(album) for album in library)
        logger.info(f"Cache cleared: {count} conversions removed")
        return count

    def stats(self, library: LibraryModel) -> dict:
        """Get cache statistics for a library."""
        records = 0
        total_size = 0
        for album in library:
            for record_dir in self._record_dirs(album):
                if not (record_dir / MARKER_FILENAME).exists():
                    continue
                records += 1
                total_size += sum(f.stat().st_size for f in record_dir.iterdir() if f.is_file())
        return {
            "total_records": records,
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "conversions_this_run": self.conversions,
        }
