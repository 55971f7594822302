"""
Song and queue request/response schemas for API endpoints.
"""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from karaoke_server.services.queue_engine import InsertMode, ReorderDirection

YOUTUBE_VIDEO_ID_PATTERN = r"^[a-zA-Z0-9_-]{11}$"


def _not_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# ==================== REQUEST SCHEMAS ====================

class AddSongRequest(BaseModel):
    """Request schema for adding a song to a room's queue"""
    external_video_id: str = Field(..., alias="externalVideoId", pattern=YOUTUBE_VIDEO_ID_PATTERN)
    title: str = Field(..., max_length=500)
    artist: str = Field(..., max_length=500)
    duration_display: str = Field(..., alias="durationDisplay")
    thumbnail_url: str | None = Field(None, alias="thumbnailUrl")
    channel_title: str | None = Field(None, alias="channelTitle")
    add_position: InsertMode = Field(InsertMode.END, alias="addPosition")

    strip_required_text = field_validator("title", "artist", "duration_display")(_not_blank)

    class Config:
        populate_by_name = True


class ReorderRequest(BaseModel):
    """Request schema for moving one queue item up or down"""
    queue_item_id: UUID = Field(..., alias="queueItemId")
    direction: ReorderDirection

    class Config:
        populate_by_name = True


class BulkReorderItem(BaseModel):
    id: UUID
    position: int


class BulkReorderRequest(BaseModel):
    """Request schema for applying many positions at once"""
    queue_items: list[BulkReorderItem] = Field(..., alias="queueItems")

    class Config:
        populate_by_name = True


# ==================== RESPONSE SCHEMAS ====================

class SongResponse(BaseModel):
    """Response schema for a catalog song"""
    id: UUID
    external_video_id: str
    title: str
    artist: str
    duration_display: str
    thumbnail_url: str | None = None
    channel_title: str | None = None

    class Config:
        from_attributes = True


class QueueItemResponse(BaseModel):
    """Response schema for a queue item"""
    id: UUID
    position: int
    song: SongResponse
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class HistoryItemResponse(BaseModel):
    """Response schema for a played song"""
    id: UUID
    played_at: datetime
    duration_played: int | None = None
    song: SongResponse

    class Config:
        from_attributes = True


class QueueMutationResponse(BaseModel):
    """Response schema for any queue change"""
    message: str
    current_song_id: UUID | None = None
    queue: list[QueueItemResponse]
    queue_item: QueueItemResponse | None = None


class SearchResultResponse(BaseModel):
    """Response schema for a catalog search candidate"""
    external_id: str
    title: str
    uploader_label: str
    thumbnail_url: str | None = None
    duration_display: str
