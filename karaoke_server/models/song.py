from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID


class SongBase(BaseModel):
    """Catalog metadata shared by create and read models"""
    external_video_id: str = Field(..., description="YouTube video ID (natural key)")
    title: str = Field(..., min_length=1, max_length=500)
    artist: str = Field(..., min_length=1, max_length=500)
    duration_display: str = Field(..., min_length=1, description="Display duration, e.g. 3:45")
    thumbnail_url: str | None = None
    channel_title: str | None = None


class SongCreate(SongBase):
    """Model for creating a new song"""
    pass


class Song(SongBase):
    """Complete song model from database. Songs are never updated."""
    id: UUID
    created_at: datetime | None = None

    class Config:
        from_attributes = True
        frozen = True
