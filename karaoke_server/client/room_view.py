"""
Local view of one room, kept by a participant.

The store holds the last authoritative state built from server events and a
set of optimistic patches keyed by operation id. The visible view is the
authoritative state with pending patches folded on top, in the order they
were added. A patch disappears once the authoritative state shows its
operation landed, or when the caller discards it after a failed request.
"""
from dataclasses import dataclass, replace
from typing import Callable, Dict, Sequence

from karaoke_server.schemas.events import (
    EventQueueEntry,
    EventSong,
    PlaybackControl,
    PlaybackControlPayload,
    QueueUpdated,
    SongChanged,
)


@dataclass(frozen=True)
class RoomViewState:
    room_code: str
    queue: tuple[EventQueueEntry, ...] = ()
    current_song_id: str | None = None
    current_song: EventSong | None = None
    last_control: PlaybackControlPayload | None = None

    @property
    def entry_ids(self) -> tuple[str, ...]:
        return tuple(entry.entry_id for entry in self.queue)


def reduce_event(state: RoomViewState, event) -> RoomViewState:
    """
    Apply one server event. Every event replaces the part of the state it
    describes, so applying the same event twice changes nothing.
    """
    if event.data.room_code != state.room_code:
        return state

    if isinstance(event, QueueUpdated):
        queue = tuple(sorted(event.data.queue, key=lambda entry: entry.position))
        return replace(state, queue=queue)
    if isinstance(event, SongChanged):
        return replace(
            state,
            current_song_id=event.data.current_song_id,
            current_song=event.data.song,
        )
    if isinstance(event, PlaybackControl):
        return replace(state, last_control=event.data)
    return state


@dataclass(frozen=True)
class OptimisticPatch:
    op_id: str
    apply: Callable[[RoomViewState], RoomViewState]
    is_settled: Callable[[RoomViewState], bool]


class RoomViewStore:
    def __init__(self, room_code: str, on_change: Callable[[RoomViewState], None] | None = None):
        self._authoritative = RoomViewState(room_code=room_code)
        self._patches: Dict[str, OptimisticPatch] = {}
        self._on_change = on_change

    @property
    def authoritative(self) -> RoomViewState:
        return self._authoritative

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._patches)

    @property
    def view(self) -> RoomViewState:
        state = self._authoritative
        for patch in self._patches.values():
            state = patch.apply(state)
        return state

    def _changed(self) -> RoomViewState:
        view = self.view
        if self._on_change is not None:
            self._on_change(view)
        return view

    def apply(self, event) -> RoomViewState:
        self._authoritative = reduce_event(self._authoritative, event)
        self._patches = {
            op_id: patch
            for op_id, patch in self._patches.items()
            if not patch.is_settled(self._authoritative)
        }
        return self._changed()

    def add_patch(self, patch: OptimisticPatch) -> RoomViewState:
        self._patches[patch.op_id] = patch
        return self._changed()

    def discard(self, op_id: str) -> RoomViewState:
        self._patches.pop(op_id, None)
        return self._changed()


# ==================== COMMON PATCHES ====================

def _renumber(entries: Sequence[EventQueueEntry]) -> tuple[EventQueueEntry, ...]:
    return tuple(
        entry if entry.position == index else entry.model_copy(update={"position": index})
        for index, entry in enumerate(entries)
    )


def remove_entry_patch(op_id: str, entry_id: str) -> OptimisticPatch:
    """Hide an entry until the server's queue no longer contains it."""

    def apply(state: RoomViewState) -> RoomViewState:
        return replace(state, queue=_renumber([e for e in state.queue if e.entry_id != entry_id]))

    def is_settled(state: RoomViewState) -> bool:
        return entry_id not in state.entry_ids

    return OptimisticPatch(op_id=op_id, apply=apply, is_settled=is_settled)


def reorder_patch(op_id: str, ordered_entry_ids: Sequence[str]) -> OptimisticPatch:
    """Show the queue in ``ordered_entry_ids`` order until the server agrees."""
    target = tuple(ordered_entry_ids)

    def apply(state: RoomViewState) -> RoomViewState:
        by_id = {entry.entry_id: entry for entry in state.queue}
        ordered = [by_id[entry_id] for entry_id in target if entry_id in by_id]
        ordered += [entry for entry in state.queue if entry.entry_id not in target]
        return replace(state, queue=_renumber(ordered))

    def is_settled(state: RoomViewState) -> bool:
        return tuple(e for e in state.entry_ids if e in target) == tuple(
            e for e in target if e in state.entry_ids
        )

    return OptimisticPatch(op_id=op_id, apply=apply, is_settled=is_settled)
