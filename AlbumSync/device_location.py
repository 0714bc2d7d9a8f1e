"""
Device Location - Destination on device-attached storage (e.g. an Android phone).

The device is reached through a DeviceHandle (AdbDevice in adb.py, a fake in
tests). Every device command:

1. requires the Reachability state CONNECTED, connecting first if needed
2. moves the state to DISCONNECTED on a transport failure (DeviceDisconnected
   or TimeoutError), reconnects and retries, up to `retries` attempts in total
3. raises DestinationUnreachable once the attempts are used up

A command that ran on the device but exited non-zero is an IoError and is not
retried.

All commands against one device are serialized by a lock. Album conversion
(prepare_files) runs before the lock is taken, so parallel workers still
convert concurrently while only one of them talks to the device.
"""

from __future__ import annotations

import logging
import posixpath
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol, TypeVar

from .errors import DestinationUnreachable, DeviceDisconnected, IoError
from .formats import AudioFormat, is_hidden
from .library import Album, AlbumKey, safe_name
from .location import (
    STAGING_TAG,
    CopyResult,
    Entry,
    InventoryEntry,
    Location,
    add_to_inventory,
    make_inventory_entry,
)
from .reachability import DeviceState, Reachability

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_ROOT = "/storage/emulated/0/Music"

# Slowest transfer rate a push is allowed before it times out (bytes/s)
MIN_PUSH_RATE = 1024 * 1024

T = TypeVar("T")


@dataclass
class ShellResult:
    """Outcome of a command run on the device."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class DeviceHandle(Protocol):
    """Transport to one device. Raises DeviceDisconnected when the device is gone."""

    serial: Optional[str]

    def probe(self, timeout: float) -> bool:
        ...

    def shell(self, args: list[str], timeout: float) -> ShellResult:
        ...

    def push(self, local: Path, remote: str, timeout: float) -> None:
        ...


class DeviceLocation(Location):
    """
    A device directory laid out as <root>/<Artist>/<Album>/.

    Usage:
        dest = DeviceLocation(AdbDevice("R58M123ABC"))
        if dest.connect():
            inventory = dest.read_inventory()

    Args:
        handle: DeviceHandle used for every command.
        root: Music directory on the device.
        retries: Attempts per command before DestinationUnreachable.
        retry_delay: Seconds to wait between attempts.
        timeout: Seconds per device command (pushes scale with file size).
    """

    def __init__(
        self,
        handle: DeviceHandle,
        root: str = DEFAULT_DEVICE_ROOT,
        retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
    ):
        self.handle = handle
        self.root = root.rstrip("/") or "/"
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.reachability = Reachability(self.describe())
        self._lock = threading.RLock()

    @property
    def state(self) -> DeviceState:
        return self.reachability.state

    # ── Reachability ────────────────────────────────────────────────────────

    def connect(self) -> bool:
        """
        Drive the state machine towards CONNECTED.

        Returns:
            True if the device is connected, False if it was not found.
        """
        with self._lock:
            reach = self.reachability
            if reach.state is DeviceState.CONNECTED:
                return True

            if reach.state is DeviceState.DISCONNECTED and self._probe():
                reach.transition(DeviceState.CONNECTED)
                return True

            reach.transition(DeviceState.DISCOVERING)
            try:
                found = self._probe()
            except Exception:
                reach.transition(DeviceState.NOT_FOUND)
                raise
            if not found:
                reach.transition(DeviceState.NOT_FOUND)
                return False
            reach.transition(DeviceState.FOUND)
            reach.transition(DeviceState.CONNECTED)
            logger.info(f"{self}: connected")
            return True

    def _probe(self) -> bool:
        try:
            return self.handle.probe(self.timeout)
        except (DeviceDisconnected, TimeoutError) as e:
            logger.debug(f"{self}: probe failed: {e}")
            return False

    def _mark_disconnected(self) -> None:
        if self.reachability.state is DeviceState.CONNECTED:
            self.reachability.transition(DeviceState.DISCONNECTED)

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        """Run one device command with reconnect-and-retry."""
        with self._lock:
            reason = ""
            for attempt in range(1, self.retries + 1):
                if attempt > 1 and self.retry_delay:
                    time.sleep(self.retry_delay)

                if not self.reachability.is_connected and not self.connect():
                    reason = "device not found"
                    logger.warning(f"{self}: {what}: device not found (attempt {attempt}/{self.retries})")
                    continue

                try:
                    return fn()
                except (DeviceDisconnected, TimeoutError) as e:
                    reason = str(e) or type(e).__name__
                    self._mark_disconnected()
                    logger.warning(f"{self}: {what} failed (attempt {attempt}/{self.retries}): {reason}")

            raise DestinationUnreachable(self.describe(), reason)

    # ── Device commands ─────────────────────────────────────────────────────

    def _remote(self, path: str) -> str:
        return posixpath.join(self.root, path) if path else self.root

    def _shell(self, args: list[str], timeout: Optional[float] = None) -> ShellResult:
        return self._call(args[0], lambda: self.handle.shell(args, timeout or self.timeout))

    def _run(self, args: list[str], path: str) -> ShellResult:
        result = self._shell(args)
        if not result.ok:
            raise IoError(path, (result.stderr or result.stdout or f"exit code {result.returncode}").strip())
        return result

    def _push(self, local: Path, remote: str) -> int:
        try:
            size = local.stat().st_size
        except OSError as e:
            raise IoError(local, e.strerror or str(e)) from e
        timeout = max(self.timeout, size / MIN_PUSH_RATE)
        self._call("push", lambda: self.handle.push(local, remote, timeout))
        return size

    def _find(self, depth: int, kind: str) -> list[str]:
        """Root-relative paths of entries exactly depth levels below the root."""
        result = self._run(
            ["find", self.root, "-mindepth", str(depth), "-maxdepth", str(depth), "-type", kind],
            self.root,
        )
        prefix = self.root.rstrip("/") + "/"
        return [line[len(prefix):] for line in result.stdout.splitlines() if line.startswith(prefix)]

    # ── Capabilities ────────────────────────────────────────────────────────

    def list(self, path: str = "") -> list[Entry]:
        remote = self._remote(path)
        result = self._run(["ls", "-1", "-a", "-p", remote], remote)
        entries = []
        for line in result.stdout.splitlines():
            name = line.rstrip("\r")
            if name in ("", "./", "../", ".", ".."):
                continue
            is_dir = name.endswith("/")
            entries.append(Entry(name.rstrip("/"), is_dir))
        return sorted(entries, key=lambda e: e.name)

    def exists(self, path: str) -> bool:
        return self._shell(["test", "-e", self._remote(path)]).ok

    def read_inventory(self) -> dict[AlbumKey, InventoryEntry]:
        inventory: dict[AlbumKey, InventoryEntry] = {}
        with self._lock:
            if not self.exists(""):
                return inventory
            album_dirs = self._find(2, "d")
            files = self._find(3, "f")

        contents: dict[tuple[str, str], list[str]] = {}
        for rel in album_dirs:
            artist, album = rel.split("/", 1)
            if not is_hidden(artist) and not is_hidden(album):
                contents.setdefault((artist, album), [])
        for rel in files:
            artist, album, name = rel.split("/", 2)
            if (artist, album) in contents:
                contents[(artist, album)].append(name)

        for (artist, album), names in sorted(contents.items()):
            add_to_inventory(inventory, make_inventory_entry(artist, album, names), str(self))

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
        with self._lock:
            return self._write_album(album, files, converted)

    def _write_album(self, album: Album, files: list[tuple[Path, str]], converted: bool) -> CopyResult:
        artist_dir = self.artist_dir_name(album.artist)
        album_name = safe_name(album.title)
        replaced = self.album_dir_names(artist_dir, album.title)
        staging = self._remote(f"{artist_dir}/.{album_name}{STAGING_TAG}{uuid.uuid4().hex[:8]}")

        written = 0
        try:
            self._run(["mkdir", "-p", staging], staging)
            for local, name in files:
                written += self._push(local, f"{staging}/{name}")
        except IoError:
            self._shell(["rm", "-rf", staging])
            raise

        for name in replaced:
            logger.debug(f"{self}: replacing {artist_dir}/{name}")
            target = self._remote(f"{artist_dir}/{name}")
            self._run(["rm", "-rf", target], target)
        final = self._remote(f"{artist_dir}/{album_name}")
        self._run(["mv", staging, final], final)

        for name in self.stale_staging_names(artist_dir, album_name):
            self._shell(["rm", "-rf", self._remote(f"{artist_dir}/{name}")])

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
        files, converted = self.prepare_files(album, source, target_format, cache)
        with self._lock:
            artist_dir = self.artist_dir_name(album.artist)
            existing = self.album_dir_names(artist_dir, album.title)
            if not existing:
                logger.debug(f"{self}: {album.description} vanished, copying it whole")
                return self._write_album(album, files, converted)

            album_rel = f"{artist_dir}/{existing[0]}"
            to_write = self.missing_files(files, missing)
            if album.cover is not None:
                cover_local, cover_name = files[-1]
                if not self.exists(f"{album_rel}/{cover_name}"):
                    to_write.append((cover_local, cover_name))

            written = 0
            for local, name in to_write:
                final = self._remote(f"{album_rel}/{name}")
                tmp = self._remote(f"{album_rel}/.{name}{STAGING_TAG}{uuid.uuid4().hex[:8]}")
                written += self._push(local, tmp)
                self._run(["mv", tmp, final], final)

        logger.info(f"{self}: repaired {album.description} ({len(to_write)} files)")
        return CopyResult(converted=converted, files=len(to_write), bytes=written)

    def delete_album(self, artist: str, title: str) -> None:
        with self._lock:
            artist_dir = self.artist_dir_name(artist)
            names = self.album_dir_names(artist_dir, title)
            if not names:
                logger.debug(f"{self}: {artist} - {title} already absent")
                return

            for name in names:
                target = self._remote(f"{artist_dir}/{name}")
                self._run(["rm", "-rf", target], target)
            if not self.list(artist_dir):
                target = self._remote(artist_dir)
                self._run(["rmdir", target], target)

        logger.info(f"{self}: deleted {artist} - {title}")

    def describe(self) -> str:
        serial = getattr(self.handle, "serial", None) or "device"
        return f"device:{serial}:{self.root}"
