"""
Room-related response schemas for API endpoints.
"""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from .song import HistoryItemResponse, QueueItemResponse, SongResponse


# ==================== RESPONSE SCHEMAS ====================

class RoomResponse(BaseModel):
    """Response schema for room data"""
    id: UUID
    code: str
    current_song_id: UUID | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class CreateRoomResponse(BaseModel):
    """Response schema for room creation"""
    room: RoomResponse
    message: str


class RoomStateResponse(BaseModel):
    """Response schema for a room with its playback state"""
    room: RoomResponse
    current_song: SongResponse | None = None
    queue: list[QueueItemResponse]
    history: list[HistoryItemResponse]
