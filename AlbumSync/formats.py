"""
Formats - Audio formats, file classification and cover-image priority.

Supported audio formats:
- MP3 (.mp3)
- FLAC (.flac)
- AAC/ALAC in MP4 container (.m4a)
- Ogg Vorbis (.ogg, .oga)
- Opus (.opus)
- WAV (.wav)
- AIFF (.aif, .aiff)
- WMA (.wma)
"""

from enum import Enum
from pathlib import Path
from typing import Optional


class AudioFormat(Enum):
    """Audio format of a track, named after its canonical extension."""

    MP3 = "mp3"
    FLAC = "flac"
    M4A = "m4a"
    OGG = "ogg"
    OPUS = "opus"
    WAV = "wav"
    AIFF = "aiff"
    WMA = "wma"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @classmethod
    def parse(cls, value: str) -> "AudioFormat":
        """Parse a format name or extension ("flac", ".FLAC", "aif")."""
        key = value.strip().lower().lstrip(".")
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown audio format: {value!r}") from None

    @classmethod
    def from_path(cls, path: str | Path) -> Optional["AudioFormat"]:
        """Return the format of an audio file, or None for non-audio files."""
        suffix = Path(path).suffix.lower()
        return EXTENSION_FORMATS.get(suffix)

    def __str__(self) -> str:
        return self.value


_ALIASES = {
    "aif": "aiff",
    "oga": "ogg",
}

# Extension → format
EXTENSION_FORMATS = {
    ".mp3": AudioFormat.MP3,
    ".flac": AudioFormat.FLAC,
    ".m4a": AudioFormat.M4A,
    ".ogg": AudioFormat.OGG,
    ".oga": AudioFormat.OGG,
    ".opus": AudioFormat.OPUS,
    ".wav": AudioFormat.WAV,
    ".aif": AudioFormat.AIFF,
    ".aiff": AudioFormat.AIFF,
    ".wma": AudioFormat.WMA,
}

AUDIO_EXTENSIONS = frozenset(EXTENSION_FORMATS)

IMAGE_EXTENSIONS = frozenset({
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".webp",
})

# Cover candidates by file stem, highest priority first.
# Any other image comes after these, in name order.
COVER_PRIORITY = ("cover", "folder", "front", "album")


def is_audio(path: str | Path) -> bool:
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def is_image(path: str | Path) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def is_hidden(name: str) -> bool:
    """Hidden entries hold cache and staging data and are never scanned."""
    return name.startswith(".")


def cover_rank(path: str | Path) -> tuple[int, str]:
    """Sort key for cover candidates: priority stem first, then name."""
    p = Path(path)
    stem = p.stem.lower()
    try:
        rank = COVER_PRIORITY.index(stem)
    except ValueError:
        rank = len(COVER_PRIORITY)
    return (rank, p.name.lower())


def pick_cover(candidates: list[Path]) -> Optional[Path]:
    """Pick at most one cover image from an album directory's images."""
    images = [c for c in candidates if is_image(c)]
    if not images:
        return None
    return min(images, key=cover_rank)


def cover_target_name(cover: str | Path) -> str:
    """Destination name for a cover; .jpeg is shortened to .jpg."""
    p = Path(cover)
    if p.suffix.lower() == ".jpeg":
        return p.stem + ".jpg"
    return p.name


def single_format(paths) -> Optional[AudioFormat]:
    """The one audio format shared by all audio paths, or None if mixed/empty."""
    formats = {AudioFormat.from_path(p) for p in paths}
    formats.discard(None)
    if len(formats) == 1:
        return formats.pop()
    return None
