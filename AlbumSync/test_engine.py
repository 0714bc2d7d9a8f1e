"""Tests for the scan/plan/execute entry points."""

import shutil
from pathlib import Path

import pytest

from AlbumSync.conftest import FakeConverter, FakeDevice
from AlbumSync.conversion_cache import ConversionCache
from AlbumSync.device_location import DeviceLocation
from AlbumSync.engine import Destination, execute, plan, sync_all
from AlbumSync.errors import ConfigError
from AlbumSync.formats import AudioFormat
from AlbumSync.library import AlbumKey, LibraryModel, scan
from AlbumSync.local_location import LocalLocation
from AlbumSync.planner import OperationKind, SyncPolicy


@pytest.fixture
def library(source_root: Path) -> LibraryModel:
    return scan(source_root)


class TestPlanExecute:
    """Tests for plan() and execute()."""

    def test_second_run_is_all_skips(self, library: LibraryModel, tmp_path: Path,
                                     fake_converter: FakeConverter) -> None:
        dest = Destination("usb", LocalLocation(tmp_path / "usb"), AudioFormat.MP3)
        cache = ConversionCache(fake_converter)

        report = execute(plan(library, dest), dest, LocalLocation(library.root), cache)
        assert report.is_complete
        assert report.converted == 2 and report.copied == 1

        again = plan(library, dest)
        assert [op.kind for op in again] == [OperationKind.SKIP] * 3

    def test_format_change_recopies(self, library: LibraryModel, tmp_path: Path,
                                    fake_converter: FakeConverter) -> None:
        cache = ConversionCache(fake_converter)
        native = Destination("usb", LocalLocation(tmp_path / "usb"))
        execute(plan(library, native), native, LocalLocation(library.root), cache)

        as_mp3 = Destination("usb", LocalLocation(tmp_path / "usb"), "mp3")
        ops = plan(library, as_mp3)

        assert [str(op.key) for op in ops.to_copy] == ["beatles - abbey road", "miles davis - kind of blue"]

    def test_mirror_removes_deleted_album(self, library: LibraryModel, source_root: Path, tmp_path: Path) -> None:
        dest = Destination("usb", LocalLocation(tmp_path / "usb"), policy="mirror")
        execute(plan(library, dest), dest, LocalLocation(library.root))

        shutil.rmtree(source_root / "Beatles" / "Revolver")
        smaller = scan(source_root)
        assert AlbumKey.of("beatles", "revolver") not in smaller

        report = execute(plan(smaller, dest), dest, LocalLocation(smaller.root))

        assert report.deleted == 1
        assert not (tmp_path / "usb" / "Beatles" / "Revolver").exists()


class TestSyncAll:
    """Tests for sync_all()."""

    def test_destinations_share_conversions(self, library: LibraryModel, tmp_path: Path,
                                            fake_converter: FakeConverter) -> None:
        """Two destinations wanting mp3 convert each album once."""
        destinations = [
            Destination("usb", LocalLocation(tmp_path / "usb"), AudioFormat.MP3),
            Destination("car", LocalLocation(tmp_path / "car"), AudioFormat.MP3, SyncPolicy.ADDITIVE),
            Destination("archive", LocalLocation(tmp_path / "archive")),
        ]
        cache = ConversionCache(fake_converter)

        reports = sync_all(library, destinations, cache)

        assert list(reports) == ["usb", "car", "archive"]
        assert all(r.is_complete for r in reports.values())
        assert cache.conversions == 2
        assert len(fake_converter.calls) == 3  # Abbey Road (2 tracks) + Kind of Blue (1 track)

    def test_unreachable_device_does_not_affect_others(self, library: LibraryModel, tmp_path: Path,
                                                       fake_converter: FakeConverter) -> None:
        device = FakeDevice(tmp_path / "device")
        device.connected = False
        destinations = [
            Destination("phone", DeviceLocation(device, root="/sdcard/Music", retries=2, retry_delay=0)),
            Destination("usb", LocalLocation(tmp_path / "usb")),
        ]

        reports = sync_all(library, destinations, ConversionCache(fake_converter))

        assert reports["phone"].was_aborted
        assert reports["phone"].error is not None
        assert not reports["phone"].has_failures
        assert reports["usb"].is_complete
        assert reports["usb"].copied == 3

    def test_device_destination(self, library: LibraryModel, tmp_path: Path,
                                fake_converter: FakeConverter) -> None:
        device = FakeDevice(tmp_path / "device")
        phone = Destination("phone", DeviceLocation(device, root="/sdcard/Music", retry_delay=0), "opus")

        reports = sync_all(library, [phone], ConversionCache(fake_converter))

        assert reports["phone"].converted == 3
        assert [op.kind for op in plan(library, phone)] == [OperationKind.SKIP] * 3

    def test_duplicate_names(self, library: LibraryModel, tmp_path: Path) -> None:
        destinations = [
            Destination("usb", LocalLocation(tmp_path / "a")),
            Destination("usb", LocalLocation(tmp_path / "b")),
        ]
        with pytest.raises(ConfigError):
            sync_all(library, destinations)
