"""Tests for LocalLocation."""

import os
import shutil
from pathlib import Path

import pytest

from AlbumSync.conftest import FakeConverter, write_album
from AlbumSync.conversion_cache import ConversionCache
from AlbumSync.errors import ConversionFailed, IoError
from AlbumSync.formats import AudioFormat
from AlbumSync.library import AlbumKey, LibraryModel, scan
from AlbumSync.local_location import LocalLocation
from AlbumSync.planner import compute_plan
from AlbumSync.sync_executor import SyncExecutor


@pytest.fixture
def library(source_root: Path) -> LibraryModel:
    return scan(source_root)


@pytest.fixture
def dest(tmp_path: Path) -> LocalLocation:
    return LocalLocation(tmp_path / "dest")


class TestInventory:
    """Tests for read_inventory()."""

    def test_missing_root_is_empty(self, dest: LocalLocation) -> None:
        assert dest.read_inventory() == {}

    def test_reads_two_levels(self, dest: LocalLocation) -> None:
        write_album(dest.root, "Queen/Jazz", ["01 Mustapha.mp3", "02 Fat Bottomed Girls.mp3"], ("cover.jpg",))
        write_album(dest.root, "Queen/Innuendo [flac]", ["01 Innuendo.flac", "02 Headlong.mp3"])
        write_album(dest.root, "Queen/.Jazz.partial-1234", ["01 Mustapha.mp3"])
        write_album(dest.root, ".stuff/Album", ["x.mp3"])

        inventory = dest.read_inventory()

        assert set(inventory) == {AlbumKey.of("queen", "jazz"), AlbumKey.of("queen", "innuendo")}
        jazz = inventory[AlbumKey.of("queen", "jazz")]
        assert jazz.format == AudioFormat.MP3
        assert jazz.tracks == {"01 mustapha", "02 fat bottomed girls"}
        assert inventory[AlbumKey.of("queen", "innuendo")].format is None

    def test_list_missing_directory(self, dest: LocalLocation) -> None:
        with pytest.raises(IoError):
            dest.list("nowhere")


class TestCopyAlbum:
    """Tests for copy_album()."""

    def test_direct_copy(self, library: LibraryModel, dest: LocalLocation) -> None:
        album = library.get(AlbumKey.of("miles davis", "kind of blue"))

        result = dest.copy_album(album, LocalLocation(library.root))

        album_dir = dest.root / "Miles Davis" / "Kind of Blue"
        assert sorted(p.name for p in album_dir.iterdir()) == ["01 So What.flac", "folder.jpg"]
        assert not result.converted
        assert result.files == 2
        assert result.bytes > 0
        assert (album_dir / "01 So What.flac").read_bytes() == album.tracks[0].path.read_bytes()

    def test_converted_copy(self, library: LibraryModel, dest: LocalLocation, fake_converter: FakeConverter) -> None:
        album = library.get(AlbumKey.of("beatles", "abbey road"))
        cache = ConversionCache(fake_converter)

        result = dest.copy_album(album, LocalLocation(library.root), AudioFormat.MP3, cache)

        assert result.converted
        entry = dest.read_inventory()[album.key]
        assert entry.format == AudioFormat.MP3
        assert entry.tracks == album.track_keys

    def test_conversion_needs_a_cache(self, library: LibraryModel, dest: LocalLocation) -> None:
        album = library.get(AlbumKey.of("beatles", "abbey road"))

        with pytest.raises(ConversionFailed):
            dest.copy_album(album, None, AudioFormat.MP3)

    def test_refuses_album_outside_source(self, library: LibraryModel, dest: LocalLocation, tmp_path: Path) -> None:
        album = library.albums[0]

        with pytest.raises(IoError):
            dest.copy_album(album, LocalLocation(tmp_path / "elsewhere"))

    def test_replaces_format_drift(self, library: LibraryModel, dest: LocalLocation,
                                   fake_converter: FakeConverter) -> None:
        """An album stored under a tagged or differently cased name is replaced."""
        write_album(dest.root, "beatles/abbey road [mp3]", ["01 Come Together.mp3"])
        album = library.get(AlbumKey.of("beatles", "abbey road"))

        dest.copy_album(album, LocalLocation(library.root), AudioFormat.OPUS, ConversionCache(fake_converter))

        assert sorted(p.name for p in (dest.root / "beatles").iterdir()) == ["Abbey Road"]
        assert dest.read_inventory()[album.key].format == AudioFormat.OPUS

    def test_failed_copy_leaves_nothing(self, library: LibraryModel, dest: LocalLocation) -> None:
        album = library.get(AlbumKey.of("beatles", "revolver"))
        album.tracks[1].path.unlink()

        with pytest.raises(IoError):
            dest.copy_album(album, LocalLocation(library.root))

        assert dest.read_inventory() == {}
        leftovers = [p for p in dest.root.rglob("*") if p.is_dir() and ".partial-" in p.name]
        assert leftovers == []

    def test_removes_stale_staging(self, library: LibraryModel, dest: LocalLocation) -> None:
        write_album(dest.root, "Beatles/.Revolver.partial-deadbeef", ["01 Taxman.mp3"])
        album = library.get(AlbumKey.of("beatles", "revolver"))

        dest.copy_album(album, LocalLocation(library.root))

        assert sorted(p.name for p in (dest.root / "Beatles").iterdir()) == ["Revolver"]


class TestRepairAndDelete:
    """Tests for repair_album() and delete_album()."""

    def test_repair_copies_missing_tracks_and_cover(self, library: LibraryModel, dest: LocalLocation) -> None:
        album = library.get(AlbumKey.of("beatles", "abbey road"))
        source = LocalLocation(library.root)
        dest.copy_album(album, source)
        album_dir = dest.root / "Beatles" / "Abbey Road"
        (album_dir / "02 Something.flac").unlink()
        (album_dir / "cover.jpg").unlink()
        (album_dir / "01 Come Together.flac").write_bytes(b"left alone")

        result = dest.repair_album(album, {"02 something"}, source)

        assert result.files == 2
        assert (album_dir / "02 Something.flac").exists()
        assert (album_dir / "cover.jpg").exists()
        assert (album_dir / "01 Come Together.flac").read_bytes() == b"left alone"

    def test_repair_of_vanished_album_copies_it(self, library: LibraryModel, dest: LocalLocation) -> None:
        album = library.get(AlbumKey.of("beatles", "revolver"))

        dest.repair_album(album, {"01 taxman"}, LocalLocation(library.root))

        assert dest.read_inventory()[album.key].tracks == album.track_keys

    def test_delete_removes_empty_artist(self, dest: LocalLocation) -> None:
        write_album(dest.root, "Queen/Jazz", ["01.mp3"])
        write_album(dest.root, "ABBA/Arrival", ["01.mp3"])
        write_album(dest.root, "ABBA/Gold", ["01.mp3"])

        dest.delete_album("queen", "JAZZ")
        dest.delete_album("ABBA", "Gold")

        assert not (dest.root / "Queen").exists()
        assert sorted(p.name for p in (dest.root / "ABBA").iterdir()) == ["Arrival"]

    def test_delete_absent_album(self, dest: LocalLocation) -> None:
        dest.delete_album("Nobody", "Nothing")

    def test_delete_failure(self, dest: LocalLocation, monkeypatch: pytest.MonkeyPatch) -> None:
        write_album(dest.root, "Queen/Jazz", ["01.mp3"])

        def boom(path, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(shutil, "rmtree", boom)
        with pytest.raises(IoError):
            dest.delete_album("Queen", "Jazz")


class TestParallelCopies:
    """Tests for concurrent copies into one artist directory."""

    def test_same_artist_albums_in_parallel(self, tmp_path: Path) -> None:
        """Sibling staging directories appearing and vanishing never fail a copy."""
        source_root = tmp_path / "library"
        for n in range(40):
            write_album(source_root, f"Artist/Album {n}", ["01 Track.mp3", "02 Track.mp3"], ("cover.jpg",))
        library = scan(source_root)

        for run in range(3):
            dest = LocalLocation(tmp_path / f"dest{run}")
            report = SyncExecutor(dest, source=LocalLocation(library.root), max_workers=8).execute(
                compute_plan(library, {}),
            )

            assert report.errors == []
            assert report.copied == 40
            assert set(dest.read_inventory()) == library.keys
            assert [p.name for p in (dest.root / "Artist").iterdir() if p.name.startswith(".")] == []

    def test_list_skips_entries_removed_while_listing(self, dest: LocalLocation,
                                                      monkeypatch: pytest.MonkeyPatch) -> None:
        write_album(dest.root, "Queen/Jazz", ["01.mp3"])
        write_album(dest.root, "Queen/.Jazz.partial-1234", ["01.mp3"])
        real_scandir = os.scandir

        class VanishingEntry:
            def __init__(self, entry):
                self._entry = entry
                self.name = entry.name

            def is_dir(self):
                if ".partial-" in self.name:
                    raise FileNotFoundError(2, "No such file or directory", self.name)
                return self._entry.is_dir()

            def stat(self):
                return self._entry.stat()

        class Listing:
            def __init__(self, path):
                self._it = real_scandir(path)

            def __enter__(self):
                return (VanishingEntry(e) for e in self._it)

            def __exit__(self, *exc):
                self._it.close()

        monkeypatch.setattr(os, "scandir", Listing)

        assert [e.name for e in dest.list("Queen")] == ["Jazz"]
