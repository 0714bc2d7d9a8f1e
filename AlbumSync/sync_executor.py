"""
Sync Executor - Applies a sync plan to one destination.

The executor takes a SyncPlan (from SyncPlanner) and:
1. Deletes albums, sequentially, in plan order
2. Copies/converts and repairs albums on a bounded worker pool
3. Records one outcome per operation, in plan order

Failure isolation:
- ConversionFailed, IoError or any other error fails that album only
- DestinationUnreachable aborts the destination: that operation and every
  operation not yet started are ABORTED; operations already running finish
- Cancellation stops dispatch; operations not yet started are CANCELLED

Nothing already applied is rolled back.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .errors import ConversionFailed, DestinationUnreachable, IoError
from .location import CopyResult, Location
from .planner import Operation, OperationKind, SyncPlan

logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    COPIED = "copied"
    CONVERTED = "converted"
    DELETED = "deleted"
    REPAIRED = "repaired"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class SyncProgress:
    """Progress info for sync callbacks."""

    stage: str  # "delete", "copy", "repair", "skip"
    current: int
    total: int
    operation: Optional[Operation] = None
    message: str = ""
    destination: str = ""


@dataclass
class OperationOutcome:
    """What happened to one operation."""

    operation: Operation
    status: OutcomeStatus
    error: Optional[BaseException] = None
    result: Optional[CopyResult] = None

    @property
    def description(self) -> str:
        return self.operation.description


@dataclass
class SyncReport:
    """Result of syncing one destination."""

    destination: str = ""
    outcomes: list[OperationOutcome] = field(default_factory=list)
    error: Optional[str] = None  # Destination-level failure before any operation ran
    unreachable: bool = False
    dry_run: bool = False

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def counts(self) -> dict[str, int]:
        return {status.value: self.count(status) for status in OutcomeStatus}

    @property
    def copied(self) -> int:
        return self.count(OutcomeStatus.COPIED)

    @property
    def converted(self) -> int:
        return self.count(OutcomeStatus.CONVERTED)

    @property
    def deleted(self) -> int:
        return self.count(OutcomeStatus.DELETED)

    @property
    def repaired(self) -> int:
        return self.count(OutcomeStatus.REPAIRED)

    @property
    def skipped(self) -> int:
        return self.count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    @property
    def aborted(self) -> int:
        return self.count(OutcomeStatus.ABORTED)

    @property
    def cancelled(self) -> int:
        return self.count(OutcomeStatus.CANCELLED)

    @property
    def errors(self) -> list[tuple[str, str]]:
        """(operation description, error message) for every failed or aborted operation."""
        errors = []
        if self.error:
            errors.append((self.destination, self.error))
        for o in self.outcomes:
            if o.error is not None and o.status in (OutcomeStatus.FAILED, OutcomeStatus.ABORTED):
                errors.append((o.description, str(o.error)))
        return errors

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or (self.error is not None and not self.unreachable)

    @property
    def was_aborted(self) -> bool:
        return self.unreachable or self.aborted > 0

    @property
    def was_cancelled(self) -> bool:
        return self.cancelled > 0

    @property
    def is_complete(self) -> bool:
        return self.error is None and not (self.has_failures or self.was_aborted or self.was_cancelled)

    @property
    def summary(self) -> str:
        lines = []
        if self.error:
            lines.append(f"  {self.error}")
        for status in OutcomeStatus:
            n = self.count(status)
            if n:
                lines.append(f"  {status.value.capitalize()}: {n} albums")

        if not lines:
            return "No changes made."

        if self.is_complete:
            status = "Sync completed"
        elif self.was_aborted:
            status = "Sync aborted: destination unreachable"
        elif self.was_cancelled:
            status = "Sync cancelled"
        else:
            status = "Sync completed with errors"
        if self.dry_run:
            status = f"[DRY RUN] {status}"
        name = f" ({self.destination})" if self.destination else ""
        return f"{status}{name}:\n" + "\n".join(lines)


class SyncExecutor:
    """
    Applies sync plans to one destination Location.

    Usage:
        executor = SyncExecutor(destination, source=LocalLocation(library.root), cache=cache)
        report = executor.execute(plan, progress_callback)
        print(report.summary)

    Args:
        destination: Location the plan is applied to.
        source: Location holding the library; albums outside it are refused.
        cache: ConversionCache for albums needing conversion.
        max_workers: 0 = auto (CPU count, capped at 8), 1 = sequential.
        name: Destination name used in reports and progress.
    """

    def __init__(
        self,
        destination: Location,
        source: Optional[Location] = None,
        cache=None,
        max_workers: int = 0,
        name: str = "",
    ):
        self.destination = destination
        self.source = source
        self.cache = cache
        self.name = name or str(destination)
        if max_workers <= 0:
            self._max_workers = min(os.cpu_count() or 4, 8)
        else:
            self._max_workers = max_workers
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop dispatching operations; running ones finish."""
        self._cancel.set()

    # ── Public API ──────────────────────────────────────────────────────────

    def execute(
        self,
        plan: SyncPlan,
        progress_callback: Optional[Callable[[SyncProgress], None]] = None,
        dry_run: bool = False,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> SyncReport:
        """
        Execute the sync plan.

        Args:
            plan: The computed sync plan.
            progress_callback: Optional callback for progress updates.
            dry_run: If True, record what would happen without changing anything.
            is_cancelled: Optional callback returning True if user cancelled.

        Returns:
            SyncReport with one outcome per operation, in plan order.
        """
        self._cancel.clear()
        operations = list(plan)
        total = len(operations)
        outcomes: list[Optional[OperationOutcome]] = [None] * total
        abort = threading.Event()

        completed_count = 0
        completed_lock = threading.Lock()

        def _check_cancelled() -> bool:
            if self._cancel.is_set():
                return True
            if is_cancelled and is_cancelled():
                self._cancel.set()
                return True
            return False

        def _record(idx: int, outcome: OperationOutcome) -> None:
            nonlocal completed_count
            with completed_lock:
                outcomes[idx] = outcome
                completed_count += 1
                current = completed_count
            if progress_callback:
                op = outcome.operation
                try:
                    progress_callback(SyncProgress(
                        op.kind.name.lower(), current, total, op,
                        f"{outcome.status.value}: {op.description}", self.name,
                    ))
                except Exception as e:
                    logger.error(f"{self.name}: progress callback failed: {e!r}")

        def _do_operation(idx: int) -> None:
            """Apply one operation. Runs in worker thread."""
            outcome = self._apply(operations[idx], dry_run)
            if outcome.status is OutcomeStatus.ABORTED:
                abort.set()
            _record(idx, outcome)

        logger.info(f"{self.name}: executing {total} operations{' (dry run)' if dry_run else ''}")

        # ── Deletes, sequential ─────────────────────────────────────────
        pending = []
        for idx, op in enumerate(operations):
            if op.kind is not OperationKind.DELETE:
                pending.append(idx)
                continue
            if abort.is_set() or _check_cancelled():
                break
            _do_operation(idx)

        # ── Copies/repairs/skips, parallel ──────────────────────────────
        if not abort.is_set() and not _check_cancelled() and pending:
            workers = min(self._max_workers, len(pending))
            slots = threading.Semaphore(workers)

            def _worker(idx: int) -> None:
                try:
                    _do_operation(idx)
                finally:
                    slots.release()

            futures = {}
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for idx in pending:
                    slots.acquire()
                    if abort.is_set() or _check_cancelled():
                        slots.release()
                        break
                    futures[pool.submit(_worker, idx)] = idx

            for future, idx in futures.items():
                try:
                    future.result()
                except Exception as e:
                    logger.error(f"{self.name}: worker error on {operations[idx].description}: {e!r}")
                    if outcomes[idx] is None:
                        outcomes[idx] = OperationOutcome(operations[idx], OutcomeStatus.FAILED, error=e)

        # ── Never started ───────────────────────────────────────────────
        leftover = OutcomeStatus.ABORTED if abort.is_set() else OutcomeStatus.CANCELLED
        for idx, outcome in enumerate(outcomes):
            if outcome is None:
                outcomes[idx] = OperationOutcome(operations[idx], leftover)

        report = SyncReport(destination=self.name, outcomes=outcomes, dry_run=dry_run)
        if report.was_aborted:
            logger.error(f"{self.name}: destination unreachable, {report.aborted} operations aborted")
        elif report.was_cancelled:
            logger.warning(f"{self.name}: cancelled, {report.cancelled} operations not started")
        logger.info(report.summary)
        return report

    # ── Operations ──────────────────────────────────────────────────────────

    def _apply(self, op: Operation, dry_run: bool) -> OperationOutcome:
        try:
            if dry_run:
                return OperationOutcome(op, self._dry_run_status(op))

            if op.kind is OperationKind.DELETE:
                self.destination.delete_album(op.artist, op.title)
                return OperationOutcome(op, OutcomeStatus.DELETED)

            if op.kind is OperationKind.COPY:
                result = self.destination.copy_album(op.album, self.source, op.target_format, self.cache)
                status = OutcomeStatus.CONVERTED if result.converted else OutcomeStatus.COPIED
                return OperationOutcome(op, status, result=result)

            if op.kind is OperationKind.REPAIR:
                result = self.destination.repair_album(
                    op.album, op.missing, self.source, op.target_format, self.cache
                )
                return OperationOutcome(op, OutcomeStatus.REPAIRED, result=result)

            return OperationOutcome(op, OutcomeStatus.SKIPPED)

        except DestinationUnreachable as e:
            logger.error(f"{self.name}: {op.description}: {e}")
            return OperationOutcome(op, OutcomeStatus.ABORTED, error=e)
        except (ConversionFailed, IoError) as e:
            logger.error(f"{self.name}: {op.description}: {e}")
            return OperationOutcome(op, OutcomeStatus.FAILED, error=e)
        except Exception as e:
            logger.error(f"{self.name}: unexpected error for {op.description}: {e!r}")
            return OperationOutcome(op, OutcomeStatus.FAILED, error=e)

    @staticmethod
    def _dry_run_status(op: Operation) -> OutcomeStatus:
        if op.kind is OperationKind.DELETE:
            status = OutcomeStatus.DELETED
        elif op.kind is OperationKind.REPAIR:
            status = OutcomeStatus.REPAIRED
        elif op.kind is OperationKind.COPY:
            native = op.album.native_format if op.album is not None else None
            converting = op.target_format is not None and op.target_format != native
            status = OutcomeStatus.CONVERTED if converting else OutcomeStatus.COPIED
        else:
            return OutcomeStatus.SKIPPED
        logger.info(f"[DRY RUN] would {op.kind.name.lower()}: {op.description}")
        return status
