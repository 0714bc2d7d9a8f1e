"""Tests for the library scanner and model."""

from pathlib import Path

import pytest

from AlbumSync.conftest import write_album
from AlbumSync.errors import AmbiguousAlbumIdentity, ScanError
from AlbumSync.formats import AudioFormat
from AlbumSync.library import AlbumKey, normalize, safe_name, scan, split_format_tag
from AlbumSync.metadata import AlbumInfo, StaticMetadata


def snapshot(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


class TestNormalize:
    """Tests for album identity normalization."""

    def test_case_and_whitespace(self) -> None:
        """Should case-fold, trim and collapse whitespace."""
        assert normalize("  The   Beatles ") == "the beatles"
        assert AlbumKey.of("The Beatles", "Abbey  Road") == AlbumKey.of("the beatles", "abbey road")

    def test_unsafe_characters_match_destination_names(self) -> None:
        """A title with characters invalid on destinations keeps one identity."""
        assert normalize("AC/DC") == normalize(safe_name("AC/DC"))
        assert safe_name("What?") == "What_"

    def test_split_format_tag(self) -> None:
        """Should strip a known trailing format tag and keep it as a hint."""
        assert split_format_tag("Kind of Blue [flac]") == ("Kind of Blue", AudioFormat.FLAC)
        assert split_format_tag("Live [Deluxe]") == ("Live [Deluxe]", None)
        assert split_format_tag("Plain") == ("Plain", None)


class TestScan:
    """Tests for scan()."""

    def test_both_layouts(self, source_root: Path) -> None:
        """Should accept artist directories and direct album directories."""
        library = scan(source_root)

        assert [str(a.key) for a in library.albums] == [
            "beatles - abbey road",
            "beatles - revolver",
            "miles davis - kind of blue",
        ]
        assert [a.name for a in library.artists] == ["Beatles", "Miles Davis"]
        assert len(library) == 3
        assert AlbumKey.of("Beatles", "Revolver") in library

    def test_album_details(self, source_root: Path) -> None:
        """Should collect tracks, native format, format hint and cover."""
        library = scan(source_root)

        abbey = library.get(AlbumKey.of("beatles", "abbey road"))
        assert abbey is not None
        assert [t.name for t in abbey.tracks] == ["01 Come Together.flac", "02 Something.flac"]
        assert abbey.native_format == AudioFormat.FLAC
        assert abbey.cover == source_root / "Beatles" / "Abbey Road" / "cover.jpg"
        assert abbey.track_keys == {"01 come together", "02 something"}

        blue = library.get(AlbumKey.of("Miles Davis", "Kind of Blue"))
        assert blue is not None
        assert blue.title == "Kind of Blue"
        assert blue.format_hint == AudioFormat.FLAC
        assert blue.cover is not None and blue.cover.name == "folder.jpeg"

    def test_cover_priority(self, tmp_path: Path) -> None:
        """Should prefer cover.* over other images, then name order."""
        write_album(tmp_path, "A - One", ["1.mp3"], ("zeta.png", "front.jpg", "cover.png"))
        write_album(tmp_path, "A - Two", ["1.mp3"], ("b.png", "a.jpg"))

        library = scan(tmp_path)

        assert library.get(AlbumKey.of("a", "one")).cover.name == "cover.png"
        assert library.get(AlbumKey.of("a", "two")).cover.name == "a.jpg"

    def test_nested_disc_directories(self, tmp_path: Path) -> None:
        """Should name nested album directories by their relative path."""
        write_album(tmp_path, "Pink Floyd/The Wall/CD1", ["01 In the Flesh.flac"])
        write_album(tmp_path, "Pink Floyd/The Wall/CD2", ["01 Hey You.flac"])

        library = scan(tmp_path)

        assert [a.title for a in library.albums] == ["The Wall - CD1", "The Wall - CD2"]

    def test_mixed_formats(self, tmp_path: Path) -> None:
        """Mixed-format albums have no native format."""
        write_album(tmp_path, "A - Mixed", ["1.mp3", "2.flac"])

        album = scan(tmp_path).albums[0]

        assert album.native_format is None

    def test_ignores_hidden_entries(self, source_root: Path) -> None:
        """Cache and staging directories are never albums."""
        write_album(source_root, "Beatles/.Abbey Road.albumsync-mp3", ["01 Come Together.mp3"])
        write_album(source_root, ".trash - Old", ["x.mp3"])

        assert len(scan(source_root)) == 3

    def test_does_not_modify_source(self, source_root: Path) -> None:
        """Scanning is a pure read."""
        before = snapshot(source_root)
        scan(source_root)
        assert snapshot(source_root) == before


class TestScanErrors:
    """Tests for scan failures."""

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(ScanError):
            scan(tmp_path / "nope")

    def test_root_is_a_file(self, tmp_path: Path) -> None:
        f = tmp_path / "file.txt"
        f.write_text("x")
        with pytest.raises(ScanError):
            scan(f)

    def test_ambiguous_identity(self, source_root: Path) -> None:
        """Two directories normalizing to one identity fail the scan."""
        write_album(source_root, "beatles -  ABBEY road", ["01.mp3"])

        with pytest.raises(AmbiguousAlbumIdentity) as exc_info:
            scan(source_root)

        assert exc_info.value.key == AlbumKey.of("beatles", "abbey road")
        names = {exc_info.value.first.name, exc_info.value.second.name}
        assert names == {"Abbey Road", "beatles -  ABBEY road"}

    def test_malformed_album_directory_strict(self, source_root: Path) -> None:
        """A direct album directory without '<Artist> - <Album>' fails in strict mode."""
        write_album(source_root, "Untitled", ["01.mp3"])

        with pytest.raises(ScanError, match="Malformed album directory"):
            scan(source_root)

    def test_malformed_album_directory_lenient(self, source_root: Path) -> None:
        """Non-strict scans skip the broken branch and report it."""
        write_album(source_root, "Untitled", ["01.mp3"])

        library = scan(source_root, strict=False)

        assert len(library) == 3
        assert len(library.skipped) == 1
        assert library.skipped[0].path.name == "Untitled"

    def test_loose_audio_beside_albums(self, source_root: Path) -> None:
        """A stray track in an artist directory does not hide its albums."""
        (source_root / "Beatles" / "stray.mp3").write_bytes(b"x")

        library = scan(source_root)

        assert AlbumKey.of("beatles", "abbey road") in library
        assert AlbumKey.of("beatles", "revolver") in library
        assert library.skipped == []

    def test_same_track_in_two_formats(self, tmp_path: Path) -> None:
        """Only one file per track identity is kept."""
        write_album(tmp_path, "A - Dupes", ["01 Intro.flac", "01 intro.mp3", "02 Outro.mp3"])

        album = scan(tmp_path).albums[0]

        assert [t.name for t in album.tracks] == ["01 Intro.flac", "02 Outro.mp3"]

    def test_loose_audio_in_root(self, source_root: Path) -> None:
        (source_root / "stray.mp3").write_bytes(b"x")

        with pytest.raises(ScanError, match="outside any album"):
            scan(source_root)


class TestMetadataOverrides:
    """Tests for metadata enrichment during scan."""

    def test_override_changes_identity(self, source_root: Path) -> None:
        """Overrides apply before identity is computed."""
        provider = StaticMetadata({("beatles", "revolver"): AlbumInfo(artist="The Beatles", year=1966)})

        library = scan(source_root, metadata=provider)

        album = library.get(AlbumKey.of("The Beatles", "Revolver"))
        assert album is not None
        assert album.year == 1966
        assert AlbumKey.of("Beatles", "Revolver") not in library

    def test_override_can_create_collision(self, source_root: Path) -> None:
        provider = StaticMetadata({("beatles", "revolver"): AlbumInfo(title="Abbey Road")})

        with pytest.raises(AmbiguousAlbumIdentity):
            scan(source_root, metadata=provider)
