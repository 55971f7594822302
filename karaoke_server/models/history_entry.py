from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID

from .song import Song


class HistoryEntryBase(BaseModel):
    """Base history model: a song that left the now-playing slot"""
    room_id: UUID
    song_id: UUID
    played_at: datetime
    duration_played: int | None = Field(None, ge=0, description="Seconds actually played, if known")


class HistoryEntryCreate(HistoryEntryBase):
    """Model for appending a history entry"""
    pass


class HistoryEntry(HistoryEntryBase):
    """Complete history entry from database. Append-only."""
    id: UUID

    class Config:
        from_attributes = True


class HistoryEntryWithSong(HistoryEntry):
    """History entry joined with its song"""
    song: Song

    class Config:
        from_attributes = True
