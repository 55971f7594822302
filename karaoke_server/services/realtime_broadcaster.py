import asyncio
import inspect
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List
from uuid import UUID, uuid4

from fastapi import WebSocket

from karaoke_server.core.logging import get_logger
from karaoke_server.schemas.events import (
    PlaybackControl,
    QueueUpdated,
    SongChanged,
    dump_event,
)

logger = get_logger("RealtimeBroadcaster")

RoomEventType = QueueUpdated | SongChanged | PlaybackControl
Handler = Callable[[Any], Any]


class ConnectionStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


@dataclass
class RoomEventHandlers:
    """Callbacks for one subscriber. Each may be a plain function or a coroutine function."""
    on_queue_updated: Handler | None = None
    on_song_changed: Handler | None = None
    on_playback_control: Handler | None = None
    on_connection_status_change: Handler | None = None

    def for_event(self, event: RoomEventType) -> Handler | None:
        if isinstance(event, QueueUpdated):
            return self.on_queue_updated
        if isinstance(event, SongChanged):
            return self.on_song_changed
        return self.on_playback_control


@dataclass(eq=False)
class Subscription:
    """
    One subscriber of a room topic.

    Every subscription owns its event queue and delivery task, so a slow
    handler only delays its own events. A held subscription buffers what is
    published until ``release`` hands it the events to deliver first.
    """
    room_code: str
    handlers: RoomEventHandlers
    id: UUID = field(default_factory=uuid4)
    events: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    ready: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    initial: List[RoomEventType] = field(default_factory=list, repr=False)
    worker: asyncio.Task | None = field(default=None, repr=False)

    @property
    def topic(self) -> str:
        return topic_for(self.room_code)

    @property
    def held(self) -> bool:
        return not self.ready.is_set()

    def release(self, initial_events: Iterable[RoomEventType] = ()) -> None:
        """Start delivery with ``initial_events`` ahead of anything buffered while held."""
        if not self.held:
            raise RuntimeError(f"Subscription {self.id} is already live")
        self.initial = list(initial_events)
        self.ready.set()

    async def drain(self) -> None:
        await self.events.join()

    def discard_pending(self) -> None:
        while not self.events.empty():
            self.events.get_nowait()
            self.events.task_done()


def topic_for(room_code: str) -> str:
    return f"room:{room_code}"


async def _call(handler: Handler, *args) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class RoomChannel:
    """
    Fan-out state for one room topic.

    Publishing copies the event onto every subscription's queue in publish
    order; each subscription drains its own queue.
    """

    def __init__(self, topic: str, on_empty: Callable[["RoomChannel"], Awaitable[None]] | None = None):
        self.topic = topic
        self.subscriptions: Dict[UUID, Subscription] = {}
        self._on_empty = on_empty

    def add(self, subscription: Subscription) -> None:
        self.subscriptions[subscription.id] = subscription
        subscription.worker = asyncio.create_task(
            self._run(subscription), name=f"broadcast-{self.topic}-{subscription.id}"
        )

    async def remove(self, subscription: Subscription, status: ConnectionStatus) -> bool:
        if self.subscriptions.pop(subscription.id, None) is None:
            return False
        await self._stop(subscription)
        await self.notify_status(subscription, status)
        return True

    async def close(self) -> None:
        for subscription in list(self.subscriptions.values()):
            await self.remove(subscription, ConnectionStatus.CLOSED)

    def enqueue(self, event: RoomEventType) -> None:
        for subscription in self.subscriptions.values():
            subscription.events.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every event published so far has been delivered."""
        await asyncio.gather(*(s.drain() for s in list(self.subscriptions.values())))

    async def _stop(self, subscription: Subscription) -> None:
        worker, subscription.worker = subscription.worker, None
        if worker is not None and worker is not asyncio.current_task():
            worker.cancel()
            with suppress(asyncio.CancelledError):
                await worker
        subscription.discard_pending()

    async def _run(self, subscription: Subscription) -> None:
        await subscription.ready.wait()
        initial, subscription.initial = subscription.initial, []
        for event in initial:
            if not await self._deliver(subscription, event):
                return
        while True:
            event = await subscription.events.get()
            try:
                delivered = await self._deliver(subscription, event)
            finally:
                subscription.events.task_done()
            if not delivered:
                return

    async def _deliver(self, subscription: Subscription, event: RoomEventType) -> bool:
        handler = subscription.handlers.for_event(event)
        if handler is None:
            return True
        try:
            await _call(handler, event)
        except Exception as e:
            logger.warning(f"Failed to deliver {event.type} to subscriber on {self.topic}: {e}")
            await self.remove(subscription, ConnectionStatus.CHANNEL_ERROR)
            if not self.subscriptions and self._on_empty is not None:
                await self._on_empty(self)
            return False
        return True

    async def notify_status(self, subscription: Subscription, status: ConnectionStatus) -> None:
        handler = subscription.handlers.on_connection_status_change
        if handler is None:
            return
        try:
            await _call(handler, status)
        except Exception as e:
            logger.warning(f"Status handler failed on {self.topic} ({status.value}): {e}")


class RealtimeBroadcaster:
    """
    Per-room publish/subscribe fan-out.

    One channel per room topic; subscribing again to the same room reuses the
    channel. Publishing is fire-and-forget: events are queued per subscriber
    and delivered in publish order. A channel is dropped as soon as its last
    subscriber leaves or fails.
    """

    def __init__(self):
        self.channels: Dict[str, RoomChannel] = {}

    async def init(self) -> None:
        logger.info("Realtime broadcaster ready")

    async def shutdown(self) -> None:
        for channel in list(self.channels.values()):
            await channel.close()
        self.channels.clear()
        logger.info("Realtime broadcaster stopped")

    def channel(self, room_code: str) -> RoomChannel:
        topic = topic_for(room_code)
        channel = self.channels.get(topic)
        if channel is None:
            channel = RoomChannel(topic, on_empty=self._discard_channel)
            self.channels[topic] = channel
        return channel

    async def _discard_channel(self, channel: RoomChannel) -> None:
        if channel.subscriptions or self.channels.get(channel.topic) is not channel:
            return
        del self.channels[channel.topic]
        await channel.close()
        logger.debug(f"Closed channel {channel.topic}")

    async def subscribe(
        self,
        room_code: str,
        handlers: RoomEventHandlers,
        hold: bool = False,
    ) -> Subscription:
        """
        Subscribe ``handlers`` to the room's events.

        With ``hold=True`` events are buffered until ``Subscription.release``
        is called, so a caller can load a snapshot after subscribing and still
        deliver it before any update published in the meantime.
        """
        channel = self.channel(room_code)
        subscription = Subscription(room_code=room_code, handlers=handlers)
        channel.add(subscription)
        if not hold:
            subscription.release()
        await channel.notify_status(subscription, ConnectionStatus.SUBSCRIBED)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        channel = self.channels.get(subscription.topic)
        if channel is None:
            return
        await channel.remove(subscription, ConnectionStatus.CLOSED)
        await self._discard_channel(channel)

    async def publish(self, room_code: str, event: RoomEventType) -> int:
        """
        Queue ``event`` for every subscriber of the room.

        Returns:
            Number of subscribers the event was queued for
        """
        channel = self.channels.get(topic_for(room_code))
        if channel is None or not channel.subscriptions:
            return 0
        channel.enqueue(event)
        return len(channel.subscriptions)

    async def drain(self, room_code: str) -> None:
        channel = self.channels.get(topic_for(room_code))
        if channel is not None:
            await channel.drain()

    def subscriber_count(self, room_code: str) -> int:
        channel = self.channels.get(topic_for(room_code))
        return len(channel.subscriptions) if channel else 0

    # ==================== WEBSOCKET CONNECTIONS ====================

    async def connect_websocket(self, websocket: WebSocket, room_code: str) -> Subscription:
        """
        Subscribe a WebSocket to the room's events.

        The subscription starts held: the caller accepts the socket, loads the
        room snapshot and passes it to ``Subscription.release``.

        Args:
            websocket: WebSocket connection
            room_code: Room to join

        Returns:
            Subscription to release once connected and to unsubscribe on disconnect
        """
        async def send(event: RoomEventType) -> None:
            await websocket.send_text(dump_event(event))

        handlers = RoomEventHandlers(
            on_queue_updated=send,
            on_song_changed=send,
            on_playback_control=send,
        )
        return await self.subscribe(room_code, handlers, hold=True)

    async def send_personal_message(self, websocket: WebSocket, message: str) -> None:
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.error(f"Failed to send personal message: {e}", exc_info=True)
