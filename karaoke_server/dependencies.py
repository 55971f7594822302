from fastapi import Request, WebSocket

from karaoke_server.services.catalog_search import CatalogSearchService
from karaoke_server.services.realtime_broadcaster import RealtimeBroadcaster
from karaoke_server.services.room_repository import RoomRepository
from karaoke_server.services.session_coordinator import SessionCoordinator


# Process-scoped resources are created in the lifespan and live on app.state

def get_repository(request: Request) -> RoomRepository:
    return request.app.state.repository


def get_coordinator(request: Request) -> SessionCoordinator:
    return request.app.state.coordinator


def get_catalog_search(request: Request) -> CatalogSearchService:
    return request.app.state.catalog_search


def get_ws_coordinator(websocket: WebSocket) -> SessionCoordinator:
    return websocket.app.state.coordinator


def get_ws_broadcaster(websocket: WebSocket) -> RealtimeBroadcaster:
    return websocket.app.state.broadcaster
