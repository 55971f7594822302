from uuid import UUID

from fastapi import APIRouter, Depends, status

from karaoke_server.core.logging import get_logger
from karaoke_server.dependencies import get_coordinator
from karaoke_server.models import SongCreate
from karaoke_server.schemas.song import (
    AddSongRequest,
    BulkReorderRequest,
    QueueItemResponse,
    QueueMutationResponse,
    ReorderRequest,
)
from karaoke_server.services.queue_engine import PositionAssignment
from karaoke_server.services.session_coordinator import QueueMutationResult, SessionCoordinator

logger = get_logger("api.queue")
router = APIRouter()


def _mutation_response(result: QueueMutationResult, message: str) -> dict:
    return {
        "message": message,
        "current_song_id": result.room.current_song_id,
        "queue": [QueueItemResponse.model_validate(entry) for entry in result.queue],
        "queue_item": QueueItemResponse.model_validate(result.inserted) if result.inserted else None,
    }


@router.post("/{code}/queue", response_model=QueueMutationResponse, status_code=status.HTTP_201_CREATED)
async def add_song(
    code: str,
    request: AddSongRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Add a song at the end of the queue or right after the current song"""
    logger.info(f"Adding {request.external_video_id} to room {code} ({request.add_position.value})")
    song = SongCreate(
        external_video_id=request.external_video_id,
        title=request.title,
        artist=request.artist,
        duration_display=request.duration_display,
        thumbnail_url=request.thumbnail_url,
        channel_title=request.channel_title,
    )
    result = await coordinator.add_song(code, song, request.add_position)
    return _mutation_response(result, "Song added to queue")


@router.delete("/{code}/queue/{queue_item_id}", response_model=QueueMutationResponse)
async def remove_song(
    code: str,
    queue_item_id: UUID,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Remove a song from the queue"""
    logger.info(f"Removing queue item {queue_item_id} from room {code}")
    result = await coordinator.remove_entry(code, queue_item_id)
    return _mutation_response(result, "Song removed from queue")


@router.post("/{code}/queue/reorder", response_model=QueueMutationResponse)
async def reorder_song(
    code: str,
    request: ReorderRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Move one queue item up or down by one slot"""
    result = await coordinator.reorder_entry(code, request.queue_item_id, request.direction)
    return _mutation_response(result, "Queue reordered successfully")


@router.post("/{code}/queue/bulk-reorder", response_model=QueueMutationResponse)
async def bulk_reorder(
    code: str,
    request: BulkReorderRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """Apply a full drag-and-drop ordering in one write"""
    assignments = [PositionAssignment(item.id, item.position) for item in request.queue_items]
    result = await coordinator.bulk_reorder(code, assignments)
    return _mutation_response(result, "Queue reordered successfully")
