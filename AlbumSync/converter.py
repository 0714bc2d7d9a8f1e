"""
Converter - Convert audio tracks between formats using FFmpeg.

The sync engine only depends on the Converter protocol:

    convert(source_path, target_format, output_dir) -> converted_path

and treats any failure as ConversionFailed for the track and its album.
FFmpegConverter is the shipped implementation.

Codecs per target format:
- FLAC → flac        (lossless)
- M4A  → alac/aac    (alac from lossless sources, aac otherwise)
- MP3  → libmp3lame
- OGG  → libvorbis
- OPUS → libopus
- WAV  → pcm_s16le
- AIFF → pcm_s16be
- WMA  → wmav2
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import mutagen

from .errors import ConversionFailed
from .formats import AudioFormat

logger = logging.getLogger(__name__)

LOSSLESS_FORMATS = {AudioFormat.FLAC, AudioFormat.WAV, AudioFormat.AIFF}

# Target format → (codec, uses bitrate)
FORMAT_CODECS = {
    AudioFormat.FLAC: ("flac", False),
    AudioFormat.MP3: ("libmp3lame", True),
    AudioFormat.OGG: ("libvorbis", True),
    AudioFormat.OPUS: ("libopus", True),
    AudioFormat.WAV: ("pcm_s16le", False),
    AudioFormat.AIFF: ("pcm_s16be", False),
    AudioFormat.WMA: ("wmav2", True),
}


class Converter(Protocol):
    def convert(self, source_path: Path, target_format: AudioFormat, output_dir: Path) -> Path:
        ...


@dataclass
class TranscodeResult:
    """Result of a transcode operation."""

    success: bool
    source_path: Path
    output_path: Optional[Path]
    target_format: AudioFormat
    was_transcoded: bool  # False if file was copied directly
    error_message: Optional[str] = None


def find_ffmpeg() -> Optional[str]:
    """Find ffmpeg binary. Returns path or None."""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    # Common installation locations
    common_paths = [
        r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        r"C:\ffmpeg\bin\ffmpeg.exe",
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
        "/usr/bin/ffmpeg",
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    return None


def is_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return find_ffmpeg() is not None


def codec_args(source_format: Optional[AudioFormat], target: AudioFormat, bitrate: int) -> list[str]:
    """ffmpeg audio codec arguments for a conversion."""
    if target == AudioFormat.M4A:
        if source_format in LOSSLESS_FORMATS:
            return ["-acodec", "alac"]
        return ["-acodec", "aac", "-b:a", f"{bitrate}k"]

    codec, uses_bitrate = FORMAT_CODECS[target]
    args = ["-acodec", codec]
    if uses_bitrate:
        args += ["-b:a", f"{bitrate}k"]
    return args


def transcode(
    source_path: str | Path,
    target_format: AudioFormat,
    output_dir: str | Path,
    ffmpeg_path: Optional[str] = None,
    bitrate: int = 256,
    timeout: int = 300,
) -> TranscodeResult:
    """
    Transcode one audio file.

    Args:
        source_path: Path to source audio file
        target_format: Format to produce
        output_dir: Directory to write output file (same stem, new extension)
        ffmpeg_path: Optional path to ffmpeg binary
        bitrate: Bitrate for lossy encoders (kbps)
        timeout: Seconds before ffmpeg is killed

    Returns:
        TranscodeResult with output path and status
    """
    source_path = Path(source_path)
    output_dir = Path(output_dir)
    output_path = output_dir / (source_path.stem + target_format.extension)

    def failed(message: str, transcoded: bool = True) -> TranscodeResult:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            target_format=target_format,
            was_transcoded=transcoded,
            error_message=message,
        )

    if not source_path.exists():
        return failed(f"Source file not found: {source_path}", transcoded=False)

    source_format = AudioFormat.from_path(source_path)

    if source_format == target_format:
        # No transcoding needed - just copy
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, output_path)
        except OSError as e:
            return failed(str(e), transcoded=False)
        return TranscodeResult(
            success=True,
            source_path=source_path,
            output_path=output_path,
            target_format=target_format,
            was_transcoded=False,
        )

    ffmpeg = ffmpeg_path or find_ffmpeg()
    if not ffmpeg:
        return failed("ffmpeg not found", transcoded=False)

    cmd = [
        ffmpeg,
        "-i",
        str(source_path),
        "-vn",  # No video (embedded cover streams)
        *codec_args(source_format, target_format, bitrate),
        "-map_metadata",
        "0",
        "-y",  # Overwrite output
        str(output_path),
    ]

    try:
        output_dir.mkdir(parents=True, exist_ok=True)

        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",  # Handle non-UTF8 bytes gracefully
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return failed("Transcoding timed out")
    except OSError as e:
        return failed(str(e))

    if result.returncode != 0:
        return failed(f"ffmpeg failed: {result.stderr[-500:]}")

    if not output_path.exists():
        return failed("Output file not created")

    logger.info(f"Transcoded {source_path.name} → {output_path.name}")
    return TranscodeResult(
        success=True,
        source_path=source_path,
        output_path=output_path,
        target_format=target_format,
        was_transcoded=True,
    )


def copy_metadata(source_path: str | Path, dest_path: str | Path) -> bool:
    """
    Copy common tags from source to destination file.

    FFmpeg doesn't always carry every tag across containers, so this is run
    after each transcode. Best effort: returns False on any failure.
    """
    try:
        source = mutagen.File(source_path, easy=True)
        dest = mutagen.File(dest_path, easy=True)

        if source is None or dest is None:
            return False
        if dest.tags is None:
            dest.add_tags()

        for tag in ["title", "artist", "album", "albumartist", "genre", "date", "tracknumber", "discnumber"]:
            if source.tags and tag in source.tags:
                try:
                    dest[tag] = source[tag]
                except (KeyError, ValueError):
                    continue

        dest.save()
        return True

    except Exception as e:
        logger.warning(f"Could not copy metadata to {Path(dest_path).name}: {e}")
        return False


class FFmpegConverter:
    """
    Converter backed by the ffmpeg binary.

    Usage:
        converter = FFmpegConverter(bitrate=320)
        out = converter.convert(Path("a.flac"), AudioFormat.MP3, Path("/tmp/out"))
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, bitrate: int = 256, timeout: int = 300):
        self.ffmpeg_path = ffmpeg_path
        self.bitrate = bitrate
        self.timeout = timeout

    def convert(self, source_path: Path, target_format: AudioFormat, output_dir: Path) -> Path:
        result = transcode(
            source_path,
            target_format,
            output_dir,
            ffmpeg_path=self.ffmpeg_path,
            bitrate=self.bitrate,
            timeout=self.timeout,
        )
        if not result.success or result.output_path is None:
            raise ConversionFailed(
                source_path.parent.name,
                result.error_message or "unknown error",
                track=source_path,
            )
        if result.was_transcoded:
            copy_metadata(source_path, result.output_path)
        return result.output_path
