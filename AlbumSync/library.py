"""
Library Scanner - Scans the source music folder into artists, albums and tracks.

Accepted layouts (immediate children of the library root):
- Artist directory:  <root>/<Artist>/<Album>/<tracks>
                     <root>/<Artist>/<Album>/<CD1>/<tracks>  → album "Album - CD1"
- Album directory:   <root>/<Artist> - <Album>/<tracks>
                     <root>/<Artist> - <Album> [flac]/<tracks>

Album identity is (normalized artist, normalized album title). Normalizing
case-folds, trims and collapses whitespace. Two album directories that
normalize to the same identity make the library ambiguous, and the scan fails
before anything is synced.

Scanning is a pure read: nothing under the root is ever modified.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .errors import AmbiguousAlbumIdentity, ScanError
from .formats import AudioFormat, is_audio, is_hidden, is_image, pick_cover, single_format

logger = logging.getLogger(__name__)

# "<Artist> - <Album>" for album directories directly under the root
ALBUM_DIR_PATTERN = re.compile(r"^(?P<artist>.+?) - (?P<album>.+)$")

# Trailing " [flac]" style format tag on an album directory name
FORMAT_TAG_PATTERN = re.compile(r"\s*\[(?P<format>[^\[\]]+)\]\s*$")


# Characters that are invalid in file names on FAT/NTFS/Android storage
UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def safe_name(name: str) -> str:
    """Name usable as a directory on every destination."""
    cleaned = UNSAFE_CHARS.sub("_", name).strip().rstrip(". ")
    return cleaned or "_"


def normalize(name: str) -> str:
    """
    Case-fold, trim and collapse whitespace.

    Names are made destination-safe first, so an album's identity is the
    same whether it is read from the source or from a destination.
    """
    return " ".join(safe_name(name).casefold().split())


def split_format_tag(title: str) -> tuple[str, Optional[AudioFormat]]:
    """Strip a trailing "[format]" tag from an album title."""
    match = FORMAT_TAG_PATTERN.search(title)
    if match:
        try:
            fmt = AudioFormat.parse(match.group("format"))
        except ValueError:
            return title.strip(), None
        return title[:match.start()].strip(), fmt
    return title.strip(), None


@dataclass(frozen=True, order=True)
class AlbumKey:
    """Album identity: normalized (artist, title)."""

    artist: str
    title: str

    @classmethod
    def of(cls, artist: str, title: str) -> "AlbumKey":
        return cls(normalize(artist), normalize(title))

    def __str__(self) -> str:
        return f"{self.artist} - {self.title}"


@dataclass
class Track:
    """A single audio file inside an album directory."""

    path: Path
    format: AudioFormat

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def key(self) -> str:
        """Identity within the album: base name without extension, case-insensitive."""
        return self.path.stem.lower()


@dataclass
class Album:
    """An album directory in the source library."""

    artist: str  # Display name
    title: str  # Display title, format tag stripped
    path: Path  # Album directory
    tracks: list[Track] = field(default_factory=list)
    cover: Optional[Path] = None
    format_hint: Optional[AudioFormat] = None  # From a "[format]" tag
    year: Optional[int] = None

    @property
    def key(self) -> AlbumKey:
        return AlbumKey.of(self.artist, self.title)

    @property
    def native_format(self) -> Optional[AudioFormat]:
        """Format shared by every track, or None for mixed-format albums."""
        return single_format(t.path for t in self.tracks)

    @property
    def track_keys(self) -> frozenset[str]:
        return frozenset(t.key for t in self.tracks)

    @property
    def description(self) -> str:
        return f"{self.artist} - {self.title}"

    def overview(self) -> str:
        cover = "cover" if self.cover else "no cover"
        return f"{self.description} ({self.path}; {len(self.tracks)} tracks, {cover})"


@dataclass
class Artist:
    """An artist and the albums credited to them."""

    name: str
    albums: list[Album] = field(default_factory=list)

    @property
    def key(self) -> str:
        return normalize(self.name)


class LibraryModel:
    """The scanned source library, indexed by album identity."""

    def __init__(
        self,
        root: Path,
        albums: list[Album],
        skipped: Optional[list[ScanError]] = None,
        skipped_branches: Iterable[str] = (),
    ):
        self.root = root
        self.skipped = skipped or []

        # Albums that may live in a branch the scan could not read
        self._skipped_artists: set[str] = set()
        self._skipped_albums: set[AlbumKey] = set()
        for name in skipped_branches:
            self._skipped_artists.add(normalize(name))
            match = ALBUM_DIR_PATTERN.match(name)
            if match:
                title, _ = split_format_tag(match.group("album"))
                self._skipped_albums.add(AlbumKey.of(match.group("artist"), title))
        self._albums: dict[AlbumKey, Album] = {}
        for album in albums:
            existing = self._albums.get(album.key)
            if existing is not None:
                raise AmbiguousAlbumIdentity(album.key, existing.path, album.path)
            self._albums[album.key] = album

        self._artists: dict[str, Artist] = {}
        for album in self.albums:
            artist = self._artists.setdefault(normalize(album.artist), Artist(album.artist))
            artist.albums.append(album)

    @property
    def albums(self) -> list[Album]:
        return [self._albums[k] for k in sorted(self._albums)]

    @property
    def artists(self) -> list[Artist]:
        return [self._artists[k] for k in sorted(self._artists)]

    @property
    def keys(self) -> set[AlbumKey]:
        return set(self._albums)

    def get(self, key: AlbumKey) -> Optional[Album]:
        return self._albums.get(key)

    def in_skipped_branch(self, key: AlbumKey) -> bool:
        """True if key may belong to a source branch this scan had to skip."""
        return key.artist in self._skipped_artists or key in self._skipped_albums

    def __contains__(self, key: object) -> bool:
        return key in self._albums

    def __iter__(self) -> Iterator[Album]:
        return iter(self.albums)

    def __len__(self) -> int:
        return len(self._albums)

    def __repr__(self) -> str:
        return f"LibraryModel({str(self.root)!r}, {len(self)} albums, {len(self._artists)} artists)"


class LibraryScanner:
    """
    Scanner for the source music library.

    Usage:
        scanner = LibraryScanner("D:/Music")
        library = scanner.scan()
        for album in library:
            print(album.overview())

    Args:
        root_path: Library root directory.
        metadata: Optional MetadataProvider; its overrides are applied before
            album identity is computed.
        strict: If True (default) any unreadable or malformed branch fails the
            whole scan. If False, such branches are skipped and listed in
            LibraryModel.skipped.
    """

    def __init__(self, root_path: str | Path, metadata=None, strict: bool = True):
        self.root_path = Path(root_path).resolve()
        self.metadata = metadata
        self.strict = strict

    def scan(self, progress_callback: Optional[Callable[[int, Album], None]] = None) -> LibraryModel:
        """
        Scan the library root.

        Raises:
            ScanError: root unreadable, or (strict mode) a branch failed.
            AmbiguousAlbumIdentity: two albums share an identity.
        """
        if not self.root_path.exists():
            raise ScanError(f"Library path does not exist: {self.root_path}", self.root_path)
        if not self.root_path.is_dir():
            raise ScanError(f"Library path is not a directory: {self.root_path}", self.root_path)

        entries = self._list_dir(self.root_path)

        albums: list[Album] = []
        branch_errors: list[ScanError] = []
        skipped_branches: list[str] = []

        for entry in entries:
            if is_hidden(entry.name):
                continue
            try:
                if entry.is_dir():
                    albums.extend(self._scan_branch(entry))
                elif is_audio(entry):
                    raise ScanError(f"Audio file outside any album directory: {entry.name}", entry)
            except ScanError as e:
                logger.warning(f"Cannot scan {entry}: {e}")
                branch_errors.append(e)
                if entry.is_dir():
                    skipped_branches.append(entry.name)

        if branch_errors and self.strict:
            if len(branch_errors) == 1:
                raise branch_errors[0]
            details = "; ".join(str(e) for e in branch_errors)
            raise ScanError(f"{len(branch_errors)} library branches could not be scanned: {details}", self.root_path)

        for i, album in enumerate(albums):
            self._enrich(album)
            if progress_callback:
                progress_callback(i + 1, album)

        library = LibraryModel(self.root_path, albums, skipped=branch_errors, skipped_branches=skipped_branches)
        logger.info(f"Scanned {self.root_path}: {len(library)} albums by {len(library.artists)} artists")
        return library

    # ── Branches ────────────────────────────────────────────────────────────

    def _scan_branch(self, directory: Path) -> list[Album]:
        files, subdirs = self._split(directory)

        loose = [f for f in files if is_audio(f)]
        match = ALBUM_DIR_PATTERN.match(directory.name)
        if loose and match:
            # Album directory directly under the root
            if subdirs:
                logger.debug(f"Ignoring subdirectories of album directory {directory}")
            title, hint = split_format_tag(match.group("album"))
            return [self._build_album(match.group("artist").strip(), title, hint, directory, files)]

        malformed = ScanError(
            f"Malformed album directory name {directory.name!r}, expected '<Artist> - <Album>'",
            directory,
        )
        if loose and not subdirs:
            raise malformed

        # Artist directory: every descendant directory holding audio is an album
        artist = directory.name.strip()
        albums = []
        for album_dir, album_files in self._walk_albums(directory):
            if album_dir == directory:
                continue
            parts = album_dir.relative_to(directory).parts
            title, hint = split_format_tag(" - ".join(parts))
            albums.append(self._build_album(artist, title, hint, album_dir, album_files))

        if loose:
            if not albums:
                raise malformed
            names = ", ".join(f.name for f in loose)
            logger.warning(f"Ignoring audio files loose in artist directory {directory}: {names}")

        if not albums:
            logger.debug(f"No albums under {directory}")
        return albums

    def _walk_albums(self, artist_dir: Path) -> Iterator[tuple[Path, list[Path]]]:
        errors: list[OSError] = []

        def on_error(e: OSError) -> None:
            errors.append(e)

        found = []
        for root, dirnames, filenames in os.walk(artist_dir, onerror=on_error):
            dirnames[:] = sorted(d for d in dirnames if not is_hidden(d))
            files = [Path(root) / f for f in sorted(filenames) if not is_hidden(f)]
            if any(is_audio(f) for f in files):
                found.append((Path(root), files))

        if errors:
            e = errors[0]
            raise ScanError(f"Unreadable directory {e.filename}: {e.strerror}", Path(e.filename or artist_dir))
        return iter(found)

    def _build_album(
        self,
        artist: str,
        title: str,
        format_hint: Optional[AudioFormat],
        directory: Path,
        files: list[Path],
    ) -> Album:
        tracks: list[Track] = []
        seen: dict[str, Path] = {}
        for f in sorted(files, key=lambda p: p.name.lower()):
            fmt = AudioFormat.from_path(f)
            if fmt is None:
                continue
            track = Track(path=f, format=fmt)
            if track.key in seen:
                # Same track in two formats; only one can exist on a destination
                logger.warning(f"Skipping {f}: duplicates track {seen[track.key].name}")
                continue
            seen[track.key] = f
            tracks.append(track)
        cover = pick_cover([f for f in files if is_image(f)])

        album = Album(
            artist=artist,
            title=title,
            path=directory,
            tracks=tracks,
            cover=cover,
            format_hint=format_hint,
        )
        if format_hint is not None and album.native_format not in (None, format_hint):
            logger.debug(f"{album.description}: tagged [{format_hint}] but tracks are {album.native_format}")
        return album

    def _enrich(self, album: Album) -> None:
        if self.metadata is None:
            return
        info = self.metadata.lookup(album.path, album.artist, album.title)
        if info is None:
            return
        if info.artist:
            album.artist = info.artist
        if info.title:
            album.title = info.title
        if info.year:
            album.year = info.year

    # ── Filesystem helpers ──────────────────────────────────────────────────

    def _list_dir(self, directory: Path) -> list[Path]:
        try:
            return sorted(directory.iterdir(), key=lambda p: p.name.lower())
        except OSError as e:
            raise ScanError(f"Cannot read directory {directory}: {e.strerror or e}", directory) from e

    def _split(self, directory: Path) -> tuple[list[Path], list[Path]]:
        files, subdirs = [], []
        for entry in self._list_dir(directory):
            if is_hidden(entry.name):
                continue
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file():
                files.append(entry)
        return files, subdirs


def scan(root_path: str | Path, metadata=None, strict: bool = True) -> LibraryModel:
    """Scan a library root. See LibraryScanner."""
    return LibraryScanner(root_path, metadata=metadata, strict=strict).scan()
