"""
Engine - Public entry points tying scan, plan and execute together.

    library = scan("D:/Music")
    reports = sync_all(library, destinations, cache)

Destinations are synced concurrently, one thread each. They share only the
read-only LibraryModel and the ConversionCache, so an album wanted in the
same format by two destinations is converted once.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from .conversion_cache import ConversionCache
from .converter import FFmpegConverter
from .errors import ConfigError, DestinationUnreachable, IoError
from .formats import AudioFormat
from .library import LibraryModel, scan
from .local_location import LocalLocation
from .location import Location
from .planner import SyncPlan, SyncPolicy, compute_plan
from .sync_executor import SyncExecutor, SyncProgress, SyncReport

logger = logging.getLogger(__name__)

__all__ = ["Destination", "scan", "plan", "execute", "sync_destination", "sync_all"]


@dataclass
class Destination:
    """A Location plus the format and policy wanted on it."""

    name: str
    location: Location
    target_format: Optional[AudioFormat] = None  # None = keep each album's native format
    policy: SyncPolicy = SyncPolicy.MIRROR

    def __post_init__(self):
        self.policy = SyncPolicy.parse(self.policy)
        if isinstance(self.target_format, str):
            self.target_format = AudioFormat.parse(self.target_format)

    def __str__(self) -> str:
        fmt = self.target_format.value if self.target_format else "native"
        return f"{self.name} ({self.location}, {fmt}, {self.policy.value})"


def plan(library: LibraryModel, destination: Destination) -> SyncPlan:
    """
    Plan one destination against a freshly read inventory.

    Raises:
        IoError, DestinationUnreachable: the inventory could not be read.
    """
    inventory = destination.location.read_inventory()
    sync_plan = compute_plan(library, inventory, destination.policy, destination.target_format)
    logger.info(f"{destination.name}: {sync_plan.summary}")
    return sync_plan


def execute(
    sync_plan: SyncPlan,
    destination: Destination,
    source: Optional[Location] = None,
    cache: Optional[ConversionCache] = None,
    max_workers: int = 0,
    progress_callback: Optional[Callable[[SyncProgress], None]] = None,
    dry_run: bool = False,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> SyncReport:
    """Apply a plan to its destination. See SyncExecutor."""
    executor = SyncExecutor(
        destination.location,
        source=source,
        cache=cache,
        max_workers=max_workers,
        name=destination.name,
    )
    return executor.execute(sync_plan, progress_callback, dry_run=dry_run, is_cancelled=is_cancelled)


def sync_destination(
    library: LibraryModel,
    destination: Destination,
    cache: Optional[ConversionCache] = None,
    **kwargs,
) -> SyncReport:
    """
    Plan and execute one destination.

    An unreadable inventory is reported, not raised: an unreachable device
    gives a report with was_aborted set, any other I/O error one with
    has_failures set.
    """
    try:
        sync_plan = plan(library, destination)
    except DestinationUnreachable as e:
        logger.error(f"{destination.name}: {e}")
        return SyncReport(destination=destination.name, error=str(e), unreachable=True)
    except IoError as e:
        logger.error(f"{destination.name}: cannot read inventory: {e}")
        return SyncReport(destination=destination.name, error=str(e))

    return execute(sync_plan, destination, source=LocalLocation(library.root), cache=cache, **kwargs)


def sync_all(
    library: LibraryModel,
    destinations: list[Destination],
    cache: Optional[ConversionCache] = None,
    max_workers: int = 0,
    progress_callback: Optional[Callable[[SyncProgress], None]] = None,
    dry_run: bool = False,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> dict[str, SyncReport]:
    """
    Sync every destination concurrently.

    Args:
        library: Scanned source library.
        destinations: Destinations with unique names.
        cache: Shared ConversionCache; an ffmpeg-backed one is created if None.
        max_workers: Worker pool size per destination (0 = auto).

    Returns:
        Reports keyed by destination name, in the order given.
    """
    names = [d.name for d in destinations]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate destination names: {', '.join(duplicates)}")
    if not destinations:
        return {}

    if cache is None:
        cache = ConversionCache(FFmpegConverter())

    def _sync(destination: Destination) -> SyncReport:
        return sync_destination(
            library,
            destination,
            cache,
            max_workers=max_workers,
            progress_callback=progress_callback,
            dry_run=dry_run,
            is_cancelled=is_cancelled,
        )

    reports: dict[str, SyncReport] = {}
    with ThreadPoolExecutor(max_workers=len(destinations)) as pool:
        futures = {d.name: pool.submit(_sync, d) for d in destinations}
        for name, future in futures.items():
            try:
                reports[name] = future.result()
            except Exception as e:
                logger.error(f"{name}: sync failed: {e!r}")
                reports[name] = SyncReport(destination=name, error=str(e))

    for name, report in reports.items():
        logger.info(f"{name}: {'complete' if report.is_complete else 'incomplete'}")
    return reports
