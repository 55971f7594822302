import asyncio
import random
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Sequence, TypeVar
from uuid import UUID

from karaoke_server.config import Settings, get_settings
from karaoke_server.core.exceptions import (
    ConflictError,
    DuplicateRoomCodeError,
    InvalidArgumentError,
    TransientStorageError,
    UpstreamUnavailableError,
)
from karaoke_server.core.logging import get_logger
from karaoke_server.models import (
    HistoryEntryCreate,
    HistoryEntryWithSong,
    QueueEntryWithSong,
    Room,
    Song,
    SongCreate,
)
from karaoke_server.schemas.playback import PlaybackAction
from karaoke_server.services import queue_engine
from karaoke_server.services.queue_engine import (
    AdvanceMode,
    InsertMode,
    QueueEventKind,
    QueueSnapshot,
    QueueTransition,
    ReorderDirection,
)
from karaoke_server.services.realtime_broadcaster import RealtimeBroadcaster
from karaoke_server.services.room_repository import RoomRepository
from karaoke_server.utils.formatters import (
    format_playback_control,
    format_queue_updated,
    format_song_changed,
    now_ms,
)

logger = get_logger("SessionCoordinator")

T = TypeVar("T")

ROOM_CODE_RE = re.compile(r"^\d{4}$")


def generate_room_code() -> str:
    return f"{secrets.randbelow(10000):04d}"


@dataclass
class RoomState:
    room: Room
    queue: list[QueueEntryWithSong]
    history: list[HistoryEntryWithSong] = field(default_factory=list)

    @property
    def current_song(self) -> Song | None:
        if self.room.current_song_id is None:
            return None
        for entry in self.queue:
            if entry.song_id == self.room.current_song_id:
                return entry.song
        return None


@dataclass
class QueueMutationResult:
    room: Room
    queue: list[QueueEntryWithSong]
    transition: QueueTransition
    current_song: Song | None = None
    inserted: QueueEntryWithSong | None = None


@dataclass
class PlaybackResult:
    room_code: str
    action: PlaybackAction
    timestamp: int
    volume: int | None = None
    mutation: QueueMutationResult | None = None

    @property
    def current_song_id(self) -> UUID | None:
        if self.mutation is None:
            return None
        return self.mutation.room.current_song_id


Compute = Callable[[Room, QueueSnapshot, Dict[UUID, Song]], Awaitable[QueueTransition]]


class SessionCoordinator:
    """
    Runs every queue change for a room as load -> engine -> persist -> broadcast.

    This is the only writer of queue positions and the current-song pointer.
    Conflicts and transient storage errors restart the whole cycle with
    exponential backoff; other errors propagate unchanged. Nothing is
    broadcast unless the write committed.
    """

    def __init__(
        self,
        repository: RoomRepository,
        broadcaster: RealtimeBroadcaster,
        settings: Settings | None = None,
        code_generator: Callable[[], str] = generate_room_code,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.repository = repository
        self.broadcaster = broadcaster
        self.settings = settings or get_settings()
        self._generate_code = code_generator
        self._sleep = sleep

    # ==================== RETRY POLICY ====================

    def _backoff_seconds(self, attempt: int) -> float:
        base = self.settings.storage_retry_base_delay_ms * (2 ** (attempt - 1))
        jitter = random.uniform(0, self.settings.storage_retry_jitter_ms)
        return (base + jitter) / 1000

    async def _retry(
        self,
        operation: str,
        attempt_fn: Callable[[], Awaitable[T]],
        retry_on: tuple = (ConflictError, TransientStorageError),
    ) -> T:
        max_attempts = max(1, self.settings.storage_max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await attempt_fn()
            except retry_on as e:
                if attempt >= max_attempts:
                    logger.error(f"{operation} gave up after {attempt} attempts: {e.message}")
                    raise UpstreamUnavailableError(
                        "The room is busy or storage is unavailable. Please try again."
                    ) from e
                if isinstance(e, TransientStorageError):
                    await self.repository.reconnect()
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    f"{operation} attempt {attempt}/{max_attempts} failed ({e.code}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

    # ==================== ROOMS ====================

    @staticmethod
    def validate_room_code(room_code: str) -> str:
        if not isinstance(room_code, str) or not ROOM_CODE_RE.match(room_code):
            raise InvalidArgumentError("Room code must be exactly 4 digits", field="code")
        return room_code

    async def create_room(self) -> Room:
        """Create a room under a fresh random 4-digit code."""
        for _ in range(self.settings.room_code_max_attempts):
            code = self._generate_code()
            try:
                room = await self._retry(
                    "create_room",
                    lambda: self.repository.create_room(code),
                    retry_on=(TransientStorageError,),
                )
            except DuplicateRoomCodeError:
                logger.warning(f"Room code {code} already taken, generating another")
                continue
            logger.info(f"Created room {room.code}")
            return room
        raise ConflictError("Unable to generate a unique room code. Please try again.")

    async def get_room(self, room_code: str) -> Room:
        self.validate_room_code(room_code)
        return await self._retry("get_room", lambda: self.repository.get_room_by_code(room_code))

    async def get_room_state(self, room_code: str, history_limit: int | None = None) -> RoomState:
        self.validate_room_code(room_code)
        if history_limit is not None and history_limit < 1:
            raise InvalidArgumentError("Limit must be a positive number", field="limit")
        limit = self.settings.history_limit if history_limit is None else history_limit

        async def load() -> RoomState:
            room = await self.repository.get_room_by_code(room_code)
            queue = await self.repository.get_queue(room.id)
            history = await self.repository.get_history(room.id, limit)
            return RoomState(room=room, queue=queue, history=history)

        return await self._retry("get_room_state", load)

    async def get_history(self, room_code: str, limit: int | None = None) -> list[HistoryEntryWithSong]:
        if limit is not None and limit < 1:
            raise InvalidArgumentError("Limit must be a positive number", field="limit")
        room = await self.get_room(room_code)
        return await self._retry(
            "get_history",
            lambda: self.repository.get_history(room.id, limit or self.settings.history_limit),
        )

    async def snapshot_events(self, room_code: str) -> list:
        """The events a newly connected subscriber needs to render the room."""
        state = await self.get_room_state(room_code, history_limit=1)
        return [
            format_queue_updated(room_code, state.queue),
            format_song_changed(room_code, state.current_song),
        ]

    # ==================== MUTATION CYCLE ====================

    async def _mutate(self, room_code: str, operation: str, compute: Compute) -> QueueMutationResult:
        self.validate_room_code(room_code)

        async def cycle():
            room = await self.repository.get_room_by_code(room_code)
            queue = await self.repository.get_queue(room.id)
            songs = {entry.song_id: entry.song for entry in queue}
            snapshot = QueueSnapshot.from_records(room.current_song_id, queue, room.queue_version)

            transition = await compute(room, snapshot, songs)

            version = room.queue_version
            if transition.requires_write:
                plan = transition.write_plan()
                if plan.is_empty:
                    version = await self.repository.set_current_song(
                        room.id, plan.current_song_id, plan.expected_version
                    )
                else:
                    version = await self.repository.write_queue_batch(room.id, plan)
            return room, queue, songs, transition, version

        room, queue, songs, transition, version = await self._retry(f"{operation}:{room_code}", cycle)

        if transition.retired_song_id is not None:
            await self._record_history(room, transition)

        result = self._build_result(room, queue, songs, transition, version)
        logger.info(
            f"Room {room_code}: {operation} -> {len(result.queue)} queued, "
            f"current={result.room.current_song_id}"
        )
        await self._publish(room_code, self._events_for(room_code, result))
        return result

    def _build_result(
        self,
        room: Room,
        queue: list[QueueEntryWithSong],
        songs: Dict[UUID, Song],
        transition: QueueTransition,
        version: int,
    ) -> QueueMutationResult:
        existing = {entry.id: entry for entry in queue}
        after_queue = []
        for entry in transition.after.entries:
            previous = existing.get(entry.id)
            after_queue.append(
                QueueEntryWithSong(
                    id=entry.id,
                    room_id=room.id,
                    song_id=entry.song_id,
                    position=entry.position,
                    created_at=previous.created_at if previous else None,
                    song=songs[entry.song_id],
                )
            )

        after_room = room.model_copy(
            update={"current_song_id": transition.after.current_song_id, "queue_version": version}
        )
        inserted = None
        if transition.inserted is not None:
            inserted = next(e for e in after_queue if e.id == transition.inserted.id)

        current_song_id = transition.after.current_song_id
        return QueueMutationResult(
            room=after_room,
            queue=after_queue,
            transition=transition,
            current_song=songs.get(current_song_id) if current_song_id else None,
            inserted=inserted,
        )

    def _events_for(self, room_code: str, result: QueueMutationResult) -> list:
        events = []
        for kind in result.transition.events:
            if kind is QueueEventKind.SONG_CHANGED:
                events.append(format_song_changed(room_code, result.current_song))
            elif kind is QueueEventKind.QUEUE_UPDATED:
                events.append(format_queue_updated(room_code, result.queue))
        return events

    async def _record_history(self, room: Room, transition: QueueTransition) -> None:
        entry = HistoryEntryCreate(
            room_id=room.id,
            song_id=transition.retired_song_id,
            played_at=datetime.now(timezone.utc),
        )
        try:
            await self.repository.append_history(entry)
        except Exception as e:
            logger.warning(
                f"Failed to record history for song {entry.song_id} in room {room.code} "
                f"({transition.advance_mode.value if transition.advance_mode else 'advance'}): {e}"
            )

    async def _publish(self, room_code: str, events: Sequence) -> None:
        for event in events:
            try:
                await self.broadcaster.publish(room_code, event)
            except Exception as e:
                logger.warning(f"Failed to broadcast {event.type} to room {room_code}: {e}")

    # ==================== QUEUE OPERATIONS ====================

    async def add_song(
        self,
        room_code: str,
        song: SongCreate,
        mode: InsertMode | str = InsertMode.END,
    ) -> QueueMutationResult:
        await self.get_room(room_code)
        stored = await self._retry("upsert_song", lambda: self.repository.upsert_song(song))

        async def compute(room, snapshot, songs):
            songs[stored.id] = stored
            return queue_engine.insert(snapshot, stored.id, mode)

        return await self._mutate(room_code, "add_song", compute)

    async def remove_entry(self, room_code: str, entry_id: UUID) -> QueueMutationResult:
        async def compute(room, snapshot, songs):
            return queue_engine.remove(snapshot, entry_id)

        return await self._mutate(room_code, "remove_entry", compute)

    async def reorder_entry(
        self,
        room_code: str,
        entry_id: UUID,
        direction: ReorderDirection | str,
    ) -> QueueMutationResult:
        async def compute(room, snapshot, songs):
            return queue_engine.reorder_step(snapshot, entry_id, direction)

        return await self._mutate(room_code, "reorder_entry", compute)

    async def bulk_reorder(self, room_code: str, assignments: Sequence) -> QueueMutationResult:
        async def compute(room, snapshot, songs):
            return queue_engine.bulk_reorder(snapshot, assignments)

        return await self._mutate(room_code, "bulk_reorder", compute)

    async def advance(
        self,
        room_code: str,
        mode: AdvanceMode | str = AdvanceMode.MANUAL,
    ) -> QueueMutationResult:
        async def compute(room, snapshot, songs):
            return queue_engine.advance(snapshot, mode)

        return await self._mutate(room_code, "advance", compute)

    async def retreat(self, room_code: str) -> QueueMutationResult:
        async def compute(room, snapshot, songs):
            history = await self.repository.get_history(room.id, self.settings.history_limit)
            for entry in history:
                songs.setdefault(entry.song_id, entry.song)
            return queue_engine.retreat(snapshot, [entry.song_id for entry in history])

        return await self._mutate(room_code, "retreat", compute)

    # ==================== PLAYBACK ====================

    async def playback_control(
        self,
        room_code: str,
        action: PlaybackAction | str,
        volume: int | None = None,
    ) -> PlaybackResult:
        """
        Run a playback command and broadcast it with the server timestamp.

        next/auto-next advance the queue and previous retreats it before the
        control event goes out; other actions are forwarded unchanged.
        """
        try:
            action = PlaybackAction(action)
        except ValueError:
            allowed = ", ".join(a.value for a in PlaybackAction)
            raise InvalidArgumentError(f"Invalid action. Must be one of: {allowed}", field="action")

        if action is PlaybackAction.VOLUME:
            if volume is None or isinstance(volume, bool) or not 0 <= volume <= 100:
                raise InvalidArgumentError("Volume must be between 0 and 100", field="volume")
        else:
            volume = None

        mutation = None
        if action is PlaybackAction.NEXT:
            mutation = await self.advance(room_code, AdvanceMode.MANUAL)
        elif action is PlaybackAction.AUTO_NEXT:
            mutation = await self.advance(room_code, AdvanceMode.AUTO)
        elif action is PlaybackAction.PREVIOUS:
            mutation = await self.retreat(room_code)
        else:
            await self.get_room(room_code)

        timestamp = now_ms()
        await self._publish(room_code, [format_playback_control(room_code, action, volume, timestamp)])
        logger.info(f"Room {room_code}: playback {action.value}")

        return PlaybackResult(
            room_code=room_code,
            action=action,
            timestamp=timestamp,
            volume=volume,
            mutation=mutation,
        )
