from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID

from .song import Song


class QueueEntryBase(BaseModel):
    """Base queue entry model"""
    room_id: UUID
    song_id: UUID
    position: int = Field(..., ge=0, description="Position in the queue, 0 is now playing")


class QueueEntry(QueueEntryBase):
    """Complete queue entry model from database"""
    id: UUID
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class QueueEntryWithSong(QueueEntry):
    """Queue entry joined with its song"""
    song: Song

    class Config:
        from_attributes = True
