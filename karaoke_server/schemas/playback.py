"""
Playback-related request and response schemas for API endpoints.
"""
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class PlaybackAction(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"
    NEXT = "next"
    PREVIOUS = "previous"
    AUTO_NEXT = "auto-next"
    VOLUME = "volume"
    MUTE = "mute"
    UNMUTE = "unmute"


# ==================== REQUEST SCHEMAS ====================

class PlaybackControlRequest(BaseModel):
    """Request schema for a playback command"""
    action: PlaybackAction
    volume: int | None = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def volume_required_for_volume_action(self):
        if self.action is PlaybackAction.VOLUME and self.volume is None:
            raise ValueError("Volume (0-100) is required for the volume action")
        return self


# ==================== RESPONSE SCHEMAS ====================

class PlaybackControlResponse(BaseModel):
    """Response schema for a playback command"""
    success: bool = True
    action: PlaybackAction
    timestamp: int
    volume: int | None = None
    current_song_id: str | None = None
