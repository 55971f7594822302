"""
Realtime event schemas.

Every frame on a room channel is ``{"type": ..., "data": {...}}``. The three
room events form a tagged union checked at the serialization boundary;
payload fields go over the wire in camelCase.
"""
import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .playback import PlaybackAction


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


# ==================== PAYLOADS ====================

class EventSong(CamelModel):
    id: str
    title: str
    artist: str
    external_video_id: str
    duration_display: str
    thumbnail_url: str | None = None


class EventQueueEntry(CamelModel):
    entry_id: str
    position: int
    song: EventSong


class QueueUpdatedPayload(CamelModel):
    room_code: str
    queue: tuple[EventQueueEntry, ...] = ()


class SongChangedPayload(CamelModel):
    room_code: str
    current_song_id: str | None = None
    song: EventSong | None = None


class PlaybackControlPayload(CamelModel):
    room_code: str
    action: PlaybackAction
    timestamp: int = Field(..., description="Server time in milliseconds since the epoch")
    volume: int | None = Field(None, ge=0, le=100)


# ==================== EVENTS ====================

class QueueUpdated(BaseModel):
    type: Literal["queue_updated"] = "queue_updated"
    data: QueueUpdatedPayload


class SongChanged(BaseModel):
    type: Literal["song_changed"] = "song_changed"
    data: SongChangedPayload


class PlaybackControl(BaseModel):
    type: Literal["playback_control"] = "playback_control"
    data: PlaybackControlPayload


RoomEvent = Annotated[
    Union[QueueUpdated, SongChanged, PlaybackControl],
    Field(discriminator="type"),
]

ROOM_EVENT_TYPES = ("queue_updated", "song_changed", "playback_control")

_room_event_adapter = TypeAdapter(RoomEvent)


def parse_event(raw: str | bytes | dict) -> QueueUpdated | SongChanged | PlaybackControl:
    """Validate a wire frame into a typed room event."""
    if isinstance(raw, (str, bytes)):
        return _room_event_adapter.validate_json(raw)
    return _room_event_adapter.validate_python(raw)


def serialize_event(event: QueueUpdated | SongChanged | PlaybackControl) -> dict:
    return event.model_dump(mode="json", by_alias=True)


def dump_event(event: QueueUpdated | SongChanged | PlaybackControl) -> str:
    return json.dumps(serialize_event(event))


# ==================== CONNECTION MESSAGES ====================

class PongMessage(BaseModel):
    """WebSocket pong response"""
    type: Literal["pong"] = "pong"
    data: dict = Field(default_factory=dict)
