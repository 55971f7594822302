import asyncio
import inspect
import json
from typing import Callable

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from karaoke_server.core.logging import get_logger
from karaoke_server.schemas.events import ROOM_EVENT_TYPES, parse_event
from karaoke_server.services.realtime_broadcaster import ConnectionStatus

from .room_view import RoomViewStore

logger = get_logger("RoomEventStream")


class RoomEventStream:
    """
    Follow a room over ``/ws/{code}`` and feed every event into a RoomViewStore.

    Reports SUBSCRIBED once connected, CLOSED on a clean close and
    CHANNEL_ERROR when the connection drops or cannot be opened.
    """

    def __init__(
        self,
        base_url: str,
        store: RoomViewStore,
        on_status: Callable[[ConnectionStatus], object] | None = None,
        ping_interval: float | None = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.on_status = on_status
        self.ping_interval = ping_interval
        self.status = ConnectionStatus.CLOSED
        self._websocket = None

    @property
    def url(self) -> str:
        return f"{self.base_url}/ws/{self.store.authoritative.room_code}"

    async def _set_status(self, status: ConnectionStatus) -> None:
        self.status = status
        if self.on_status is None:
            return
        result = self.on_status(status)
        if inspect.isawaitable(result):
            await result

    def handle_frame(self, raw: str | bytes) -> bool:
        """Apply one frame to the store. Returns False for frames that are not room events."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON frame")
            return False

        if frame.get("type") not in ROOM_EVENT_TYPES:
            return False
        try:
            event = parse_event(frame)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed {frame.get('type')} frame: {e.error_count()} errors")
            return False
        self.store.apply(event)
        return True

    async def _keepalive(self, websocket) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            await websocket.send("ping")

    async def run(self) -> None:
        """Connect and apply events until the server closes the connection."""
        keepalive = None
        try:
            async with websockets.connect(self.url) as websocket:
                self._websocket = websocket
                await self._set_status(ConnectionStatus.SUBSCRIBED)
                if self.ping_interval:
                    keepalive = asyncio.create_task(self._keepalive(websocket))
                async for message in websocket:
                    self.handle_frame(message)
        except ConnectionClosedOK:
            await self._set_status(ConnectionStatus.CLOSED)
            return
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Room stream {self.url} failed: {e}")
            await self._set_status(ConnectionStatus.CHANNEL_ERROR)
            return
        finally:
            self._websocket = None
            if keepalive is not None:
                keepalive.cancel()
        await self._set_status(ConnectionStatus.CLOSED)

    async def close(self) -> None:
        if self._websocket is not None:
            await self._websocket.close()
