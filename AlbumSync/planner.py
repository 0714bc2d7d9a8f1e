"""
Sync Planner - Computes the operations that bring a destination in sync with the library.

Uses set difference over album identity - no persisted sync state needed.

Effective format of an album = destination target format, or the album's
native format when the destination keeps native formats.

Flow:
1. Library album not in inventory                      → COPY
2. In both, stored format ≠ effective format           → COPY (overwrite, any policy)
3. In both, same format, some source tracks missing    → REPAIR
4. In both, same format, nothing missing               → SKIP
5. Inventory album not in library, policy mirror       → DELETE
6. Inventory album not in library, policy additive     → SKIP
7. Inventory album whose source branch the scan skipped → SKIP (any policy)

Ordering: deletes first (frees space), then copies/repairs, then skips;
within each group by (artist, album) identity, so plans are reproducible.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, Optional

from .formats import AudioFormat
from .library import Album, AlbumKey, LibraryModel
from .location import InventoryEntry


class OperationKind(Enum):
    """Type of sync operation."""
    DELETE = auto()     # Album not in library, remove from destination
    COPY = auto()       # Album missing or in the wrong format, (re)write it
    REPAIR = auto()     # Album present but some tracks are missing
    SKIP = auto()       # Album is in sync (or kept by the additive policy)


class SyncPolicy(str, Enum):
    MIRROR = "mirror"       # Destination holds exactly the library's albums
    ADDITIVE = "additive"   # Destination albums are never deleted

    @classmethod
    def parse(cls, value: "str | SyncPolicy") -> "SyncPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown sync policy: {value!r}") from None


_GROUP_ORDER = {
    OperationKind.DELETE: 0,
    OperationKind.COPY: 1,
    OperationKind.REPAIR: 1,
    OperationKind.SKIP: 2,
}


@dataclass
class Operation:
    """A single operation in the sync plan."""
    kind: OperationKind
    key: AlbumKey

    # Display names (destination names for DELETE and orphan SKIP)
    artist: str = ""
    title: str = ""

    # For COPY/REPAIR/SKIP of a library album
    album: Optional[Album] = None
    target_format: Optional[AudioFormat] = None

    # For REPAIR: track identities missing on the destination
    missing: frozenset[str] = field(default_factory=frozenset)

    # Human-readable description
    description: str = ""

    @property
    def sort_key(self) -> tuple[int, AlbumKey]:
        return (_GROUP_ORDER[self.kind], self.key)


@dataclass
class SyncPlan:
    """Ordered operations for one destination."""

    operations: list[Operation] = field(default_factory=list)
    policy: SyncPolicy = SyncPolicy.MIRROR
    target_format: Optional[AudioFormat] = None

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __getitem__(self, index: int) -> Operation:
        return self.operations[index]

    def of_kind(self, kind: OperationKind) -> list[Operation]:
        return [op for op in self.operations if op.kind is kind]

    @property
    def to_copy(self) -> list[Operation]:
        return self.of_kind(OperationKind.COPY)

    @property
    def to_delete(self) -> list[Operation]:
        return self.of_kind(OperationKind.DELETE)

    @property
    def to_repair(self) -> list[Operation]:
        return self.of_kind(OperationKind.REPAIR)

    @property
    def to_skip(self) -> list[Operation]:
        return self.of_kind(OperationKind.SKIP)

    @property
    def has_changes(self) -> bool:
        """Check if any operation would modify the destination."""
        return any(op.kind is not OperationKind.SKIP for op in self.operations)

    @property
    def counts(self) -> dict[OperationKind, int]:
        return {kind: len(self.of_kind(kind)) for kind in OperationKind}

    @property
    def summary(self) -> str:
        """Human-readable summary of the sync plan."""
        lines = []
        if self.to_delete:
            lines.append(f"  {len(self.to_delete)} albums to delete")
        if self.to_copy:
            converting = sum(
                1 for op in self.to_copy
                if op.target_format is not None and op.album is not None
                and op.target_format != op.album.native_format
            )
            extra = f" ({converting} converted)" if converting else ""
            lines.append(f"  {len(self.to_copy)} albums to copy{extra}")
        if self.to_repair:
            tracks = sum(len(op.missing) for op in self.to_repair)
            lines.append(f"  {len(self.to_repair)} albums to repair ({tracks} tracks)")

        if not lines:
            return f"Everything is in sync ({len(self.to_skip)} albums)."

        lines.append(f"  {len(self.to_skip)} albums unchanged")
        return "Sync Plan:\n" + "\n".join(lines)


class SyncPlanner:
    """
    Computes sync plans for a scanned library.

    Usage:
        planner = SyncPlanner(library)
        plan = planner.compute_plan(destination.read_inventory(), SyncPolicy.MIRROR, AudioFormat.MP3)
        print(plan.summary)
    """

    def __init__(self, library: LibraryModel):
        self.library = library

    def compute_plan(
        self,
        inventory: dict[AlbumKey, InventoryEntry],
        policy: "SyncPolicy | str" = SyncPolicy.MIRROR,
        target_format: Optional[AudioFormat] = None,
    ) -> SyncPlan:
        """
        Compute the plan for one destination.

        Args:
            inventory: Albums currently on the destination (read once for this pass)
            policy: mirror or additive
            target_format: Format wanted on the destination; None keeps native formats

        Returns:
            SyncPlan with operations in execution order
        """
        policy = SyncPolicy.parse(policy)
        operations: list[Operation] = []

        for album in self.library:
            effective = target_format or album.native_format
            stored = inventory.get(album.key)

            if stored is None:
                operations.append(self._op(OperationKind.COPY, album, effective, f"New: {album.description}"))
            elif stored.format != effective:
                have = stored.format.value if stored.format else "mixed"
                want = effective.value if effective else "mixed"
                operations.append(self._op(
                    OperationKind.COPY, album, effective,
                    f"Format {have} → {want}: {album.description}",
                ))
            else:
                missing = self._missing_tracks(album, stored)
                if missing:
                    op = self._op(
                        OperationKind.REPAIR, album, effective,
                        f"Missing {len(missing)} tracks: {album.description}",
                    )
                    op.missing = missing
                    operations.append(op)
                else:
                    operations.append(self._op(OperationKind.SKIP, album, effective, f"In sync: {album.description}"))

        for key, entry in inventory.items():
            if key in self.library:
                continue
            if self.library.in_skipped_branch(key):
                kind, description = OperationKind.SKIP, f"Kept (source branch not scanned): {entry.description}"
            elif policy is SyncPolicy.MIRROR:
                kind, description = OperationKind.DELETE, f"Not in library: {entry.description}"
            else:
                kind, description = OperationKind.SKIP, f"Kept (additive): {entry.description}"
            operations.append(Operation(
                kind=kind,
                key=key,
                artist=entry.artist,
                title=entry.title,
                description=description,
            ))

        operations.sort(key=lambda op: op.sort_key)
        return SyncPlan(operations=operations, policy=policy, target_format=target_format)

    @staticmethod
    def _op(kind: OperationKind, album: Album, fmt: Optional[AudioFormat], description: str) -> Operation:
        return Operation(
            kind=kind,
            key=album.key,
            artist=album.artist,
            title=album.title,
            album=album,
            target_format=fmt,
            description=description,
        )

    @staticmethod
    def _missing_tracks(album: Album, stored: InventoryEntry) -> frozenset[str]:
        if stored.tracks is None:
            return frozenset()
        return album.track_keys - stored.tracks


def compute_plan(
    library: LibraryModel,
    inventory: dict[AlbumKey, InventoryEntry],
    policy: "SyncPolicy | str" = SyncPolicy.MIRROR,
    target_format: Optional[AudioFormat] = None,
) -> SyncPlan:
    """Plan one destination. See SyncPlanner.compute_plan."""
    return SyncPlanner(library).compute_plan(inventory, policy, target_format)
