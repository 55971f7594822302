"""
Pure queue state machine for a karaoke room.

Every operation takes an immutable ``QueueSnapshot`` (current song pointer plus
the ordered queue entries) and returns a ``QueueTransition`` describing the
new snapshot, which rows were inserted or deleted, and which events the
change must produce. Nothing here performs I/O; the session coordinator
persists and broadcasts the result.

Invariants held by every snapshot this module produces:
  - positions are exactly 0..n-1, unique
  - when ``current_song_id`` is set, the entry at position 0 references it
"""
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID, uuid4

from karaoke_server.core.exceptions import (
    InvalidArgumentError,
    InvalidOperationError,
    NotFoundError,
)

# Temporary positions live at or below -TEMP_POSITION_FLOOR
TEMP_POSITION_FLOOR = 1000
TEMP_POSITION_SPREAD = 1_000_000


class InsertMode(str, Enum):
    END = "end"
    NEXT = "next"


class AdvanceMode(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class ReorderDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class QueueEventKind(str, Enum):
    QUEUE_UPDATED = "queue_updated"
    SONG_CHANGED = "song_changed"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidArgumentError(
            f"Invalid {field_name} '{value}'. Must be one of: {allowed}", field=field_name
        )


def _coerce_uuid(value, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"Invalid {field_name} '{value}'", field=field_name)


# ==================== SNAPSHOT TYPES ====================

@dataclass(frozen=True)
class EntrySnapshot:
    id: UUID
    position: int
    song_id: UUID


@dataclass(frozen=True)
class PositionAssignment:
    entry_id: UUID
    position: int


@dataclass(frozen=True)
class QueueSnapshot:
    """Immutable view of one room's queue. Entries are kept sorted by position."""

    current_song_id: UUID | None = None
    entries: tuple[EntrySnapshot, ...] = ()
    version: int = 0

    def __post_init__(self):
        object.__setattr__(
            self, "entries", tuple(sorted(self.entries, key=lambda entry: entry.position))
        )

    @classmethod
    def from_records(
        cls,
        current_song_id: UUID | None,
        records: Iterable[Any],
        version: int = 0,
    ) -> "QueueSnapshot":
        """Build a snapshot from anything exposing ``id``, ``position`` and ``song_id``."""
        entries = tuple(
            EntrySnapshot(id=record.id, position=record.position, song_id=record.song_id)
            for record in records
        )
        return cls(current_song_id=current_song_id, entries=entries, version=version)

    def __len__(self) -> int:
        return len(self.entries)

    def find(self, entry_id: UUID) -> EntrySnapshot | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def at(self, position: int) -> EntrySnapshot | None:
        for entry in self.entries:
            if entry.position == position:
                return entry
        return None

    @property
    def head(self) -> EntrySnapshot | None:
        return self.entries[0] if self.entries else None

    @property
    def current_entry(self) -> EntrySnapshot | None:
        """The now-playing entry: position 0 and referencing current_song_id."""
        if self.current_song_id is None:
            return None
        head = self.at(0)
        if head is not None and head.song_id == self.current_song_id:
            return head
        return None

    @property
    def song_ids(self) -> tuple[UUID, ...]:
        return tuple(entry.song_id for entry in self.entries)

    @property
    def is_dense(self) -> bool:
        return [entry.position for entry in self.entries] == list(range(len(self.entries)))

    @property
    def satisfies_now_playing(self) -> bool:
        return self.current_song_id is None or self.current_entry is not None


def _renumber(entries: Sequence[EntrySnapshot]) -> tuple[EntrySnapshot, ...]:
    """Compact an ordered entry list to positions 0..n-1, preserving order."""
    return tuple(
        entry if entry.position == index else EntrySnapshot(entry.id, index, entry.song_id)
        for index, entry in enumerate(entries)
    )


# ==================== WRITE PLAN ====================

@dataclass(frozen=True)
class QueueWritePlan:
    """
    Ordered row writes that move a room from ``before`` to ``after``.

    Storage must apply the phases in order, inside one transaction:
    deletions, temporary positions, final positions, inserts, pointer.
    """

    expected_version: int
    deletions: tuple[UUID, ...] = ()
    temporary: tuple[PositionAssignment, ...] = ()
    final: tuple[PositionAssignment, ...] = ()
    inserts: tuple[EntrySnapshot, ...] = ()
    current_song_id: UUID | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.deletions or self.final or self.inserts)


def temporary_positions(
    assignments: Sequence[PositionAssignment],
    base: int | None = None,
) -> tuple[PositionAssignment, ...]:
    """
    Park entries on distinct negative positions before their final move.

    ``base`` is drawn at random per operation unless given; every temporary
    position is <= -TEMP_POSITION_FLOOR so it cannot meet a real position.
    """
    if base is None:
        base = TEMP_POSITION_FLOOR + secrets.randbelow(TEMP_POSITION_SPREAD)
    if base < TEMP_POSITION_FLOOR:
        raise ValueError(f"temporary base must be >= {TEMP_POSITION_FLOOR}")
    return tuple(
        PositionAssignment(assignment.entry_id, -(base + index))
        for index, assignment in enumerate(assignments)
    )


# ==================== TRANSITION ====================

@dataclass(frozen=True)
class QueueTransition:
    operation: str
    before: QueueSnapshot
    after: QueueSnapshot
    inserted: EntrySnapshot | None = None
    deleted: tuple[EntrySnapshot, ...] = ()
    retired_song_id: UUID | None = None
    advance_mode: AdvanceMode | None = None
    events: tuple[QueueEventKind, ...] = field(default=())

    @property
    def current_changed(self) -> bool:
        return self.before.current_song_id != self.after.current_song_id

    @property
    def moved(self) -> tuple[PositionAssignment, ...]:
        """Surviving entries whose position differs between before and after."""
        before_positions = {entry.id: entry.position for entry in self.before.entries}
        return tuple(
            PositionAssignment(entry.id, entry.position)
            for entry in self.after.entries
            if entry.id in before_positions and before_positions[entry.id] != entry.position
        )

    @property
    def requires_write(self) -> bool:
        return bool(self.inserted or self.deleted or self.moved or self.current_changed)

    @property
    def emits_song_changed(self) -> bool:
        return QueueEventKind.SONG_CHANGED in self.events

    @property
    def emits_queue_updated(self) -> bool:
        return QueueEventKind.QUEUE_UPDATED in self.events

    def write_plan(self, temp_base: int | None = None) -> QueueWritePlan:
        moved = self.moved
        # A lone move always targets a slot freed by a deletion or by nobody
        temporary = temporary_positions(moved, temp_base) if len(moved) >= 2 else ()
        return QueueWritePlan(
            expected_version=self.before.version,
            deletions=tuple(entry.id for entry in self.deleted),
            temporary=temporary,
            final=moved,
            inserts=(self.inserted,) if self.inserted else (),
            current_song_id=self.after.current_song_id,
        )


def _transition(
    operation: str,
    before: QueueSnapshot,
    entries: Sequence[EntrySnapshot],
    current_song_id: UUID | None,
    *,
    inserted: EntrySnapshot | None = None,
    deleted: tuple[EntrySnapshot, ...] = (),
    retired_song_id: UUID | None = None,
    advance_mode: AdvanceMode | None = None,
    force_song_event: bool = False,
) -> QueueTransition:
    after = QueueSnapshot(
        current_song_id=current_song_id,
        entries=tuple(entries),
        version=before.version,
    )
    if not after.satisfies_now_playing:
        # A pointer that does not match the head means nothing is playing
        after = QueueSnapshot(current_song_id=None, entries=after.entries, version=after.version)
    if not after.is_dense:
        raise RuntimeError(f"{operation} produced an invalid queue: {after!r}")

    events = []
    if force_song_event or before.current_song_id != after.current_song_id:
        events.append(QueueEventKind.SONG_CHANGED)
    events.append(QueueEventKind.QUEUE_UPDATED)

    return QueueTransition(
        operation=operation,
        before=before,
        after=after,
        inserted=inserted,
        deleted=deleted,
        retired_song_id=retired_song_id,
        advance_mode=advance_mode,
        events=tuple(events),
    )


def _unchanged(operation: str, snapshot: QueueSnapshot) -> QueueTransition:
    return QueueTransition(operation=operation, before=snapshot, after=snapshot)


# ==================== OPERATIONS ====================

def insert(
    snapshot: QueueSnapshot,
    song_id: UUID,
    mode: InsertMode | str = InsertMode.END,
    entry_id: UUID | None = None,
) -> QueueTransition:
    """
    Add a song to the queue.

    ``end`` appends after the last entry. ``next`` places the song directly
    after the now-playing entry, or at the head when nothing is playing,
    shifting everything behind it by one. A song that lands on position 0
    while nothing is playing becomes the current song.
    """
    mode = _coerce_enum(InsertMode, mode, "addPosition")
    song_id = _coerce_uuid(song_id, "song_id")
    entry_id = entry_id or uuid4()

    ordered = list(snapshot.entries)
    playing = snapshot.current_entry is not None

    if mode is InsertMode.END:
        index = len(ordered)
    elif playing:
        index = 1
    else:
        index = 0

    new_entry = EntrySnapshot(entry_id, index, song_id)
    ordered.insert(index, new_entry)
    entries = _renumber(ordered)

    current_song_id = snapshot.current_song_id
    if not playing and index == 0:
        current_song_id = song_id

    return _transition(
        "insert",
        snapshot,
        entries,
        current_song_id,
        inserted=entries[index],
    )


def remove(snapshot: QueueSnapshot, entry_id: UUID) -> QueueTransition:
    """
    Delete one entry and compact the rest.

    Removing the now-playing entry promotes the new head to current, or
    clears the pointer when the queue becomes empty.
    """
    entry_id = _coerce_uuid(entry_id, "queueItemId")
    target = snapshot.find(entry_id)
    if target is None:
        raise NotFoundError("Queue item", str(entry_id))

    current = snapshot.current_entry
    entries = _renumber([entry for entry in snapshot.entries if entry.id != target.id])

    current_song_id = snapshot.current_song_id
    if current is not None and current.id == target.id:
        current_song_id = entries[0].song_id if entries else None

    return _transition(
        "remove",
        snapshot,
        entries,
        current_song_id,
        deleted=(target,),
    )


def advance(
    snapshot: QueueSnapshot,
    mode: AdvanceMode | str = AdvanceMode.MANUAL,
) -> QueueTransition:
    """
    Retire the now-playing entry and promote the next one.

    Manual and auto advance transform the queue identically; the mode only
    travels along for history and logging. With no now-playing entry the
    head is promoted in place, and an empty queue yields a confirmation with
    no current song. Both events are always emitted.
    """
    mode = _coerce_enum(AdvanceMode, mode, "mode")
    current = snapshot.current_entry

    if current is not None:
        entries = _renumber([entry for entry in snapshot.entries if entry.id != current.id])
        return _transition(
            "advance",
            snapshot,
            entries,
            entries[0].song_id if entries else None,
            deleted=(current,),
            retired_song_id=current.song_id,
            advance_mode=mode,
            force_song_event=True,
        )

    if snapshot.entries:
        entries = _renumber(snapshot.entries)
        return _transition(
            "advance",
            snapshot,
            entries,
            entries[0].song_id,
            advance_mode=mode,
            force_song_event=True,
        )

    return _transition(
        "advance",
        snapshot,
        (),
        None,
        advance_mode=mode,
        force_song_event=True,
    )


def retreat(
    snapshot: QueueSnapshot,
    recent_history_song_ids: Sequence[UUID],
    entry_id: UUID | None = None,
) -> QueueTransition:
    """
    Go back to the most recently played song that is not queued.

    ``recent_history_song_ids`` is newest first. The chosen song is inserted
    at position 0 as the current song and every queued entry moves back one
    slot, so an interrupted song plays right after it. Without a candidate
    the snapshot is returned unchanged and no events are produced.
    """
    queued = set(snapshot.song_ids)
    candidate = next(
        (song_id for song_id in recent_history_song_ids if song_id not in queued), None
    )
    if candidate is None:
        return _unchanged("retreat", snapshot)

    new_entry = EntrySnapshot(entry_id or uuid4(), 0, candidate)
    entries = _renumber([new_entry, *snapshot.entries])

    return _transition(
        "retreat",
        snapshot,
        entries,
        candidate,
        inserted=entries[0],
        force_song_event=True,
    )


def reorder_step(
    snapshot: QueueSnapshot,
    entry_id: UUID,
    direction: ReorderDirection | str,
) -> QueueTransition:
    """Swap an entry with its neighbour above or below."""
    direction = _coerce_enum(ReorderDirection, direction, "direction")
    entry_id = _coerce_uuid(entry_id, "queueItemId")

    target = snapshot.find(entry_id)
    if target is None:
        raise NotFoundError("Queue item", str(entry_id))

    current = snapshot.current_entry
    if current is not None and current.id == target.id:
        raise InvalidOperationError("Cannot reorder the currently playing song")

    ordered = list(snapshot.entries)
    index = ordered.index(target)

    if direction is ReorderDirection.UP:
        if index <= 0:
            raise InvalidOperationError("Cannot move item further up")
        if current is not None and index == 1:
            raise InvalidOperationError("Cannot move above the currently playing song")
        other = index - 1
    else:
        if index >= len(ordered) - 1:
            raise InvalidOperationError("Cannot move item further down")
        other = index + 1

    ordered[index], ordered[other] = ordered[other], ordered[index]

    return _transition(
        "reorder",
        snapshot,
        _renumber(ordered),
        snapshot.current_song_id,
    )


def _parse_assignment(raw) -> PositionAssignment:
    if isinstance(raw, PositionAssignment):
        entry_id, position = raw.entry_id, raw.position
    elif isinstance(raw, Mapping):
        entry_id = raw.get("id", raw.get("entry_id"))
        position = raw.get("position")
    else:
        entry_id = getattr(raw, "id", getattr(raw, "entry_id", None))
        position = getattr(raw, "position", None)

    if entry_id is None:
        raise InvalidArgumentError("Each queue item must have id and position", field="id")
    if isinstance(position, bool) or not isinstance(position, int):
        raise InvalidArgumentError("Each queue item must have id and position", field="position")
    if position < 0:
        raise InvalidArgumentError(f"Position {position} must not be negative", field="position")
    return PositionAssignment(_coerce_uuid(entry_id, "id"), position)


def bulk_reorder(snapshot: QueueSnapshot, assignments: Sequence[Any]) -> QueueTransition:
    """
    Apply many position assignments as one batch.

    Entries not mentioned keep their position. The resulting queue must be
    dense and the now-playing entry must stay at position 0, otherwise
    nothing is applied.
    """
    if not assignments:
        raise InvalidArgumentError("Queue items array is required", field="queueItems")

    parsed = [_parse_assignment(raw) for raw in assignments]

    seen: set[UUID] = set()
    for assignment in parsed:
        if assignment.entry_id in seen:
            raise InvalidArgumentError(
                f"Queue item {assignment.entry_id} appears more than once", field="queueItems"
            )
        seen.add(assignment.entry_id)
        if snapshot.find(assignment.entry_id) is None:
            raise NotFoundError(
                "Queue item",
                str(assignment.entry_id),
                message=f"Queue item {assignment.entry_id} not found in room",
            )

    positions = {entry.id: entry.position for entry in snapshot.entries}
    for assignment in parsed:
        positions[assignment.entry_id] = assignment.position

    current = snapshot.current_entry
    if current is not None and positions[current.id] != 0:
        raise InvalidOperationError("Cannot reorder the currently playing song")

    if sorted(positions.values()) != list(range(len(positions))):
        raise InvalidOperationError(
            "Reorder must leave positions 0 to n-1 with no gaps or duplicates"
        )

    entries = tuple(
        EntrySnapshot(entry.id, positions[entry.id], entry.song_id)
        for entry in snapshot.entries
    )

    return _transition(
        "bulk_reorder",
        snapshot,
        entries,
        snapshot.current_song_id,
    )
