"""
API request and response schemas (DTOs).
Separate from database models - these are for API endpoints and realtime frames.
"""

from .room import (
    RoomResponse,
    CreateRoomResponse,
    RoomStateResponse,
)
from .song import (
    AddSongRequest,
    ReorderRequest,
    BulkReorderItem,
    BulkReorderRequest,
    SongResponse,
    QueueItemResponse,
    HistoryItemResponse,
    QueueMutationResponse,
    SearchResultResponse,
)
from .playback import (
    PlaybackAction,
    PlaybackControlRequest,
    PlaybackControlResponse,
)
from .events import (
    EventSong,
    EventQueueEntry,
    QueueUpdated,
    QueueUpdatedPayload,
    SongChanged,
    SongChangedPayload,
    PlaybackControl,
    PlaybackControlPayload,
    RoomEvent,
    PongMessage,
    parse_event,
    serialize_event,
    dump_event,
)

__all__ = [
    # Room schemas
    "RoomResponse",
    "CreateRoomResponse",
    "RoomStateResponse",
    # Song and queue schemas
    "AddSongRequest",
    "ReorderRequest",
    "BulkReorderItem",
    "BulkReorderRequest",
    "SongResponse",
    "QueueItemResponse",
    "HistoryItemResponse",
    "QueueMutationResponse",
    "SearchResultResponse",
    # Playback schemas
    "PlaybackAction",
    "PlaybackControlRequest",
    "PlaybackControlResponse",
    # Realtime events
    "EventSong",
    "EventQueueEntry",
    "QueueUpdated",
    "QueueUpdatedPayload",
    "SongChanged",
    "SongChangedPayload",
    "PlaybackControl",
    "PlaybackControlPayload",
    "RoomEvent",
    "PongMessage",
    "parse_event",
    "serialize_event",
    "dump_event",
]
