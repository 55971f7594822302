"""
Client-side subscriber: a reducer over room events plus a WebSocket stream feeding it.
"""

from .room_view import (
    OptimisticPatch,
    RoomViewState,
    RoomViewStore,
    reduce_event,
    remove_entry_patch,
    reorder_patch,
)
from .stream import RoomEventStream

__all__ = [
    "OptimisticPatch",
    "RoomViewState",
    "RoomViewStore",
    "reduce_event",
    "remove_entry_patch",
    "reorder_patch",
    "RoomEventStream",
]
