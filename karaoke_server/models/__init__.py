"""
Database models for the karaoke server.
These Pydantic models map to the Supabase database schema.
"""

from .room import (
    ROOM_CODE_PATTERN,
    Room,
    RoomBase,
    RoomCreate,
)
from .song import (
    Song,
    SongBase,
    SongCreate,
)
from .queue_entry import (
    QueueEntry,
    QueueEntryBase,
    QueueEntryWithSong,
)
from .history_entry import (
    HistoryEntry,
    HistoryEntryBase,
    HistoryEntryCreate,
    HistoryEntryWithSong,
)

__all__ = [
    # Room models
    "ROOM_CODE_PATTERN",
    "Room",
    "RoomBase",
    "RoomCreate",
    # Song models
    "Song",
    "SongBase",
    "SongCreate",
    # Queue entry models
    "QueueEntry",
    "QueueEntryBase",
    "QueueEntryWithSong",
    # History models
    "HistoryEntry",
    "HistoryEntryBase",
    "HistoryEntryCreate",
    "HistoryEntryWithSong",
]
