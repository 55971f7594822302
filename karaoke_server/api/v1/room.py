from fastapi import APIRouter, Depends, Query, status

from karaoke_server.core.logging import get_logger
from karaoke_server.dependencies import get_coordinator
from karaoke_server.schemas.room import CreateRoomResponse, RoomResponse, RoomStateResponse
from karaoke_server.schemas.song import HistoryItemResponse, QueueItemResponse, SongResponse
from karaoke_server.services.session_coordinator import SessionCoordinator

logger = get_logger("api.room")
router = APIRouter()


@router.post("", response_model=CreateRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """Create a room with a fresh 4-digit code"""
    room = await coordinator.create_room()
    logger.info(f"Room {room.code} created")
    return {
        "room": RoomResponse.model_validate(room),
        "message": "Room created successfully",
    }


@router.get("/{code}", response_model=RoomStateResponse)
async def get_room(code: str, coordinator: SessionCoordinator = Depends(get_coordinator)):
    """
    Get a room with its current song, ordered queue and recent history.
    Anyone with the code can read it.
    """
    logger.debug(f"Fetching room: {code}")
    state = await coordinator.get_room_state(code)
    current = state.current_song
    return {
        "room": RoomResponse.model_validate(state.room),
        "current_song": SongResponse.model_validate(current) if current else None,
        "queue": [QueueItemResponse.model_validate(entry) for entry in state.queue],
        "history": [HistoryItemResponse.model_validate(entry) for entry in state.history],
    }


@router.get("/{code}/history", response_model=list[HistoryItemResponse])
async def get_history(
    code: str,
    limit: int | None = Query(None, ge=1, le=200),
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Recently played songs, newest first"""
    history = await coordinator.get_history(code, limit)
    return [HistoryItemResponse.model_validate(entry) for entry in history]
