"""
ADB Transport - Device handle for Android phones reached through the adb binary.

AdbDevice implements the DeviceHandle protocol consumed by DeviceLocation:

    probe(timeout)                -> bool
    shell(args, timeout)          -> ShellResult
    push(local, remote, timeout)

Transport problems (adb missing, device offline/unplugged/unauthorized) raise
DeviceDisconnected and a subprocess timeout raises TimeoutError, so that
DeviceLocation can tell them apart from a command that ran on the device and
failed.
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .device_location import ShellResult
from .errors import DeviceDisconnected, IoError

logger = logging.getLogger(__name__)

# adb's own messages meaning the device itself is gone, matched against the
# text before the first quote so that quoted paths never match.
TRANSPORT_ERRORS = (
    "device offline",
    "no devices/emulators found",
    "unauthorized",
    "device still authorizing",
    "protocol fault",
    "connection reset",
    "error: closed",
)
DEVICE_NOT_FOUND = re.compile(r"^(adb: )?error: device '[^']*' not found")


def find_adb() -> Optional[str]:
    """Find adb binary. Returns path or None."""
    adb = shutil.which("adb")
    if adb:
        return adb

    exe = "adb.exe" if os.name == "nt" else "adb"
    candidates = []
    for var in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        sdk = os.environ.get(var)
        if sdk:
            candidates.append(Path(sdk) / "platform-tools" / exe)
    local_appdata = os.environ.get("LOCALAPPDATA")
    if local_appdata:
        candidates.append(Path(local_appdata) / "Android" / "Sdk" / "platform-tools" / exe)
    candidates += [
        Path.home() / "Library" / "Android" / "sdk" / "platform-tools" / exe,
        Path("/usr/local/bin/adb"),
        Path("/opt/homebrew/bin/adb"),
        Path("/usr/bin/adb"),
    ]

    for path in candidates:
        if path.exists():
            return str(path)
    return None


def _run(cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise TimeoutError(f"{' '.join(cmd[:4])} timed out after {timeout}s") from e
    except OSError as e:
        raise DeviceDisconnected(f"Cannot run adb: {e}") from e


def discover_adb_devices(adb_path: Optional[str] = None, timeout: float = 10) -> list[str]:
    """Serials of devices in the 'device' state, as listed by `adb devices`."""
    adb = adb_path or find_adb()
    if not adb:
        logger.warning("adb not found - install Android platform-tools or add adb to PATH")
        return []

    result = _run([adb, "devices"], timeout)
    serials = []
    for line in result.stdout.splitlines():
        parts = line.strip().split("\t")
        if len(parts) == 2 and parts[1] == "device":
            serials.append(parts[0])
    logger.debug(f"adb devices: {serials}")
    return serials


class AdbDevice:
    """
    An Android device reached through adb.

    Usage:
        device = AdbDevice("R58M123ABC")
        if device.probe(timeout=10):
            device.push(Path("cover.jpg"), "/storage/emulated/0/Music/cover.jpg", timeout=60)

    Without a serial the first attached device is used.
    """

    def __init__(self, serial: Optional[str] = None, adb_path: Optional[str] = None):
        self.serial = serial
        self.adb_path = adb_path

    def _cmd(self, *args: str) -> list[str]:
        adb = self.adb_path or find_adb()
        if not adb:
            raise DeviceDisconnected("adb not found")
        cmd = [adb]
        if self.serial:
            cmd += ["-s", self.serial]
        return cmd + list(args)

    def _check_transport(self, result: subprocess.CompletedProcess) -> None:
        if result.returncode == 0:
            return
        for line in (result.stderr or "").lower().splitlines():
            line = line.strip()
            if not (line.startswith("error:") or line.startswith("adb: error:")):
                continue
            prefix = line.split("'", 1)[0]
            if DEVICE_NOT_FOUND.match(line) or any(marker in prefix for marker in TRANSPORT_ERRORS):
                raise DeviceDisconnected(f"{self.serial or 'device'}: {result.stderr.strip()}")

    # ── DeviceHandle ────────────────────────────────────────────────────────

    def probe(self, timeout: float) -> bool:
        """True if the device is attached and authorized."""
        try:
            if self.serial is None:
                serials = discover_adb_devices(self.adb_path, timeout)
                if not serials:
                    return False
                self.serial = serials[0]
                logger.info(f"Using adb device {self.serial}")
            result = _run(self._cmd("get-state"), timeout)
        except (DeviceDisconnected, TimeoutError) as e:
            logger.debug(f"Probe failed: {e}")
            return False
        return result.returncode == 0 and result.stdout.strip() == "device"

    def shell(self, args: list[str], timeout: float) -> ShellResult:
        command = " ".join(shlex.quote(a) for a in args)
        result = _run(self._cmd("shell", command), timeout)
        self._check_transport(result)
        return ShellResult(result.returncode, result.stdout or "", result.stderr or "")

    def push(self, local: Path, remote: str, timeout: float) -> None:
        result = _run(self._cmd("push", str(local), remote), timeout)
        self._check_transport(result)
        if result.returncode != 0:
            raise IoError(remote, (result.stderr or result.stdout or "adb push failed").strip()[-500:])

    def __repr__(self) -> str:
        return f"AdbDevice({self.serial!r})"
