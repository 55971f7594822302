from fastapi import APIRouter, Depends

from karaoke_server.core.logging import get_logger
from karaoke_server.dependencies import get_coordinator
from karaoke_server.schemas.playback import PlaybackControlRequest, PlaybackControlResponse
from karaoke_server.services.session_coordinator import SessionCoordinator

logger = get_logger("api.playback")
router = APIRouter()


@router.post("/{code}/playback", response_model=PlaybackControlResponse)
async def control_playback(
    code: str,
    request: PlaybackControlRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """
    Send a playback command to everyone in the room.

    next and auto-next advance the queue, previous brings back the last
    played song; the other actions are relayed to the host player as-is.
    """
    logger.info(f"Playback {request.action.value} for room {code}")
    result = await coordinator.playback_control(code, request.action, request.volume)
    return {
        "success": True,
        "action": result.action,
        "timestamp": result.timestamp,
        "volume": result.volume,
        "current_song_id": str(result.current_song_id) if result.current_song_id else None,
    }
