"""
Metadata - Optional album name overrides applied while scanning.

Providers are consulted once per album directory before album identity is
computed, so an override changes both how the album is named on every
destination and which identity it is checked under. A provider returning
None leaves the directory-derived names alone.

Providers:
- StaticMetadata: fixed overrides keyed by normalized (artist, title)
- TagMetadata: album artist from the tracks' own tags (most common value)
"""

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import mutagen

from .formats import is_audio
from .library import AlbumKey

logger = logging.getLogger(__name__)


@dataclass
class AlbumInfo:
    """Override values for one album. Empty fields are left unchanged."""

    artist: Optional[str] = None
    title: Optional[str] = None
    year: Optional[int] = None


class MetadataProvider(Protocol):
    def lookup(self, album_dir: Path, artist: str, title: str) -> Optional[AlbumInfo]:
        ...


class StaticMetadata:
    """
    Overrides supplied up front, e.g. from settings.

    Usage:
        provider = StaticMetadata({("the beatles", "abbey road"): AlbumInfo(year=1969)})
    """

    def __init__(self, overrides: Optional[dict] = None):
        self._overrides: dict[AlbumKey, AlbumInfo] = {}
        for key, info in (overrides or {}).items():
            if not isinstance(key, AlbumKey):
                key = AlbumKey.of(*key)
            self._overrides[key] = info

    def lookup(self, album_dir: Path, artist: str, title: str) -> Optional[AlbumInfo]:
        return self._overrides.get(AlbumKey.of(artist, title))

    def __len__(self) -> int:
        return len(self._overrides)


class TagMetadata:
    """
    Reads the album-artist tag of every track and uses the most common value
    as the album's artist. Compilations filed under a track artist's folder
    end up under the credited album artist instead.
    """

    def lookup(self, album_dir: Path, artist: str, title: str) -> Optional[AlbumInfo]:
        counts: Counter[str] = Counter()
        try:
            files = sorted(p for p in album_dir.iterdir() if p.is_file() and is_audio(p))
        except OSError as e:
            logger.debug(f"Cannot list {album_dir} for tags: {e}")
            return None

        for path in files:
            album_artist = read_album_artist(path)
            if album_artist:
                counts[album_artist] += 1

        if not counts:
            return None
        most_common, _ = counts.most_common(1)[0]
        if most_common == artist:
            return None
        logger.debug(f"{artist} - {title}: album artist from tags is {most_common!r}")
        return AlbumInfo(artist=most_common)


def read_album_artist(path: Path) -> Optional[str]:
    """Album artist tag of an audio file, or None if absent/unreadable."""
    try:
        audio = mutagen.File(path, easy=True)
    except Exception as e:
        logger.debug(f"mutagen failed on {path}: {e}")
        return None
    if audio is None or not audio.tags:
        return None

    for key in ("albumartist", "album artist"):
        try:
            values = audio.get(key)
        except (KeyError, ValueError):
            values = None
        if values:
            value = str(values[0]).strip()
            if value:
                return value
    return None
