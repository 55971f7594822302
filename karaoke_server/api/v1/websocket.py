from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from karaoke_server.core.exceptions import KaraokeError
from karaoke_server.core.logging import get_logger
from karaoke_server.dependencies import get_ws_broadcaster, get_ws_coordinator
from karaoke_server.schemas.events import PongMessage
from karaoke_server.services.realtime_broadcaster import RealtimeBroadcaster
from karaoke_server.services.session_coordinator import SessionCoordinator

logger = get_logger("api.websocket")
router = APIRouter()


@router.websocket("/ws/{code}")
async def websocket_endpoint(
    websocket: WebSocket,
    code: str,
    coordinator: SessionCoordinator = Depends(get_ws_coordinator),
    broadcaster: RealtimeBroadcaster = Depends(get_ws_broadcaster),
):
    """
    WebSocket endpoint for real-time room updates.

    Clients receive queue_updated, song_changed and playback_control frames.
    The current queue and song are sent first, followed by every update
    published since the subscription was opened; "ping" is answered with a
    pong frame.
    """
    subscription = await broadcaster.connect_websocket(websocket, code)

    try:
        initial_events = await coordinator.snapshot_events(code)
    except KaraokeError as e:
        await broadcaster.unsubscribe(subscription)
        logger.warning(f"WebSocket connection rejected for room {code}: {e.message}")
        await websocket.close(code=1008, reason=e.message)
        return

    try:
        await websocket.accept()
        subscription.release(initial_events)
        logger.info(f"Client connected to room {code} - {broadcaster.subscriber_count(code)} total")

        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await broadcaster.send_personal_message(websocket, PongMessage().model_dump_json())

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from room {code}")

    finally:
        await broadcaster.unsubscribe(subscription)
        logger.debug(f"Room {code} has {broadcaster.subscriber_count(code)} connections left")
