from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID

ROOM_CODE_PATTERN = r"^\d{4}$"


class RoomBase(BaseModel):
    """Base room model with common fields"""
    code: str = Field(..., pattern=ROOM_CODE_PATTERN, description="Public 4-digit room code")


class RoomCreate(RoomBase):
    """Model for creating a new room"""
    is_active: bool = True


class Room(RoomBase):
    """Complete room model from database"""
    id: UUID
    current_song_id: UUID | None = None
    is_active: bool = True
    queue_version: int = Field(default=0, ge=0, description="Bumped by every committed queue write")
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
