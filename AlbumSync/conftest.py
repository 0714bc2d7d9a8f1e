"""Test fixtures and configuration."""

import shutil
from pathlib import Path
from typing import Optional

import pytest

from AlbumSync.device_location import DeviceLocation, ShellResult
from AlbumSync.errors import ConversionFailed, DeviceDisconnected
from AlbumSync.formats import AudioFormat


def write_album(root: Path, rel: str, tracks: list[str], images: tuple[str, ...] = ()) -> Path:
    """Create an album directory with fake track and image files."""
    album_dir = root / rel
    album_dir.mkdir(parents=True, exist_ok=True)
    for name in tracks:
        (album_dir / name).write_bytes(f"audio:{rel}/{name}".encode())
    for name in images:
        (album_dir / name).write_bytes(b"\xff\xd8\xff image")
    return album_dir


class FakeConverter:
    """Converter that renames instead of encoding, and counts calls."""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: list[tuple[Path, AudioFormat]] = []
        self.fail_on = fail_on

    def convert(self, source_path: Path, target_format: AudioFormat, output_dir: Path) -> Path:
        self.calls.append((source_path, target_format))
        if self.fail_on and self.fail_on in source_path.name:
            raise ConversionFailed(source_path.parent.name, "encoder crashed", track=source_path)
        out = output_dir / (source_path.stem + target_format.extension)
        out.write_bytes(b"converted:" + source_path.read_bytes())
        return out


class FakeDevice:
    """
    DeviceHandle backed by a local directory standing in for device storage.

    Remote paths are absolute ("/sdcard/Music/..."); they are mapped below
    `storage`. Set `connected = False` to make every call a transport failure,
    or `disconnect_after` to drop the connection after that many pushes.
    """

    def __init__(self, storage: Path, serial: str = "FAKE123"):
        self.storage = storage
        self.serial = serial
        self.connected = True
        self.pushes = 0
        self.probes = 0
        self.disconnect_after: Optional[int] = None
        self.drops = 0  # Transient transport failures before pushes succeed again

    def _local(self, remote: str) -> Path:
        return self.storage / remote.lstrip("/")

    def _check(self) -> None:
        if not self.connected:
            raise DeviceDisconnected(f"{self.serial}: device offline")

    def probe(self, timeout: float) -> bool:
        self.probes += 1
        return self.connected

    def push(self, local: Path, remote: str, timeout: float) -> None:
        self._check()
        if self.drops:
            self.drops -= 1
            raise DeviceDisconnected(f"{self.serial}: connection reset")
        if self.disconnect_after is not None and self.pushes >= self.disconnect_after:
            self.connected = False
            self._check()
        self.pushes += 1
        target = self._local(remote)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(local, target)

    def shell(self, args: list[str], timeout: float) -> ShellResult:
        self._check()
        cmd, rest = args[0], args[1:]
        if cmd == "test":
            return ShellResult(0 if self._local(rest[-1]).exists() else 1)
        if cmd == "ls":
            path = self._local(rest[-1])
            if not path.is_dir():
                return ShellResult(1, "", f"ls: {rest[-1]}: No such file or directory")
            names = [".", ".."] + [c.name + ("/" if c.is_dir() else "") for c in sorted(path.iterdir())]
            return ShellResult(0, "\n".join(names) + "\n")
        if cmd == "mkdir":
            self._local(rest[-1]).mkdir(parents=True, exist_ok=True)
            return ShellResult(0)
        if cmd == "mv":
            self._local(rest[0]).rename(self._local(rest[1]))
            return ShellResult(0)
        if cmd == "rm":
            target = self._local(rest[-1])
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            return ShellResult(0)
        if cmd == "rmdir":
            try:
                self._local(rest[-1]).rmdir()
            except OSError as e:
                return ShellResult(1, "", str(e))
            return ShellResult(0)
        if cmd == "find":
            root = rest[0]
            depth = int(rest[rest.index("-mindepth") + 1])
            kind = rest[rest.index("-type") + 1]
            base = self._local(root)
            lines = []
            if base.is_dir():
                for p in sorted(base.glob("/".join(["*"] * depth))):
                    if (kind == "d" and p.is_dir()) or (kind == "f" and p.is_file()):
                        lines.append(root.rstrip("/") + "/" + p.relative_to(base).as_posix())
            return ShellResult(0, "\n".join(lines) + "\n")
        return ShellResult(127, "", f"{cmd}: not found")


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    """A small library with both accepted layouts."""
    root = tmp_path / "library"
    write_album(root, "Beatles/Abbey Road", ["01 Come Together.flac", "02 Something.flac"], ("cover.jpg",))
    write_album(root, "Beatles/Revolver", ["01 Taxman.mp3", "02 Eleanor Rigby.mp3"])
    write_album(root, "Miles Davis - Kind of Blue [flac]", ["01 So What.flac"], ("folder.jpeg", "back.png"))
    return root


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def fake_device(tmp_path: Path) -> FakeDevice:
    return FakeDevice(tmp_path / "device")


@pytest.fixture
def device_location(fake_device: FakeDevice) -> DeviceLocation:
    return DeviceLocation(fake_device, root="/sdcard/Music", retries=3, retry_delay=0, timeout=5)
