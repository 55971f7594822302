from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from karaoke_server.config import Settings, get_settings
from karaoke_server.core.exceptions import (
    DuplicateRoomCodeError,
    NotFoundError,
    QueueWriteConflictError,
    TransientStorageError,
    UpstreamUnavailableError,
)
from karaoke_server.core.logging import get_logger
from karaoke_server.models import (
    HistoryEntry,
    HistoryEntryCreate,
    HistoryEntryWithSong,
    QueueEntryWithSong,
    Room,
    RoomCreate,
    Song,
    SongCreate,
)
from karaoke_server.services.queue_engine import QueueWritePlan

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"
SERIALIZATION_FAILURE = "40001"
ROOM_NOT_FOUND = "P0002"
# Statement cache, deadlock and admin shutdown are worth a reconnect
TRANSIENT_CODES = {"42P05", "26000", "40P01", "57P01"}

QUEUE_SELECT = "id, room_id, song_id, position, created_at, song:song_id(*)"
HISTORY_SELECT = "id, room_id, song_id, played_at, duration_played, song:song_id(*)"


def classify_storage_error(exc: Exception, operation: str) -> Exception:
    """
    Translate a backend failure into the karaoke error taxonomy.

    This is the only place that looks at Postgres/PostgREST error codes.
    """
    if isinstance(exc, APIError):
        code = exc.code or ""
        if code == SERIALIZATION_FAILURE:
            return QueueWriteConflictError(f"Queue changed during {operation}")
        if code == ROOM_NOT_FOUND:
            return NotFoundError("Room", message=exc.message or "Room not found")
        if code in TRANSIENT_CODES or code.startswith("08"):
            return TransientStorageError(f"Storage connection problem during {operation}. Please try again.")
        return UpstreamUnavailableError(f"Storage request failed during {operation}. Please try again.")

    if isinstance(exc, httpx.TransportError):
        return TransientStorageError(f"Storage unreachable during {operation}. Please try again.")

    return UpstreamUnavailableError(f"Storage request failed during {operation}. Please try again.")


class RoomRepository(ABC):
    """
    Durable store for rooms, songs, queue entries and play history.

    Implementations raise only karaoke errors: NotFoundError,
    DuplicateRoomCodeError, QueueWriteConflictError, TransientStorageError
    or UpstreamUnavailableError.
    """

    async def init(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def reconnect(self) -> None:
        await self.shutdown()
        await self.init()

    @abstractmethod
    async def ping(self) -> None: ...

    # ==================== ROOMS ====================

    @abstractmethod
    async def get_room_by_code(self, code: str) -> Room: ...

    @abstractmethod
    async def get_room(self, room_id: UUID) -> Room: ...

    @abstractmethod
    async def create_room(self, code: str) -> Room: ...

    # ==================== SONGS ====================

    @abstractmethod
    async def get_song(self, song_id: UUID) -> Song | None: ...

    @abstractmethod
    async def upsert_song(self, song: SongCreate) -> Song: ...

    # ==================== QUEUE ====================

    @abstractmethod
    async def get_queue(self, room_id: UUID) -> list[QueueEntryWithSong]: ...

    @abstractmethod
    async def write_queue_batch(self, room_id: UUID, plan: QueueWritePlan) -> int:
        """Apply every phase of ``plan`` atomically and return the new queue version."""

    @abstractmethod
    async def set_current_song(self, room_id: UUID, song_id: UUID | None, expected_version: int) -> int:
        """Move the current-song pointer alone and return the new queue version."""

    # ==================== HISTORY ====================

    @abstractmethod
    async def append_history(self, entry: HistoryEntryCreate) -> HistoryEntry: ...

    @abstractmethod
    async def get_history(self, room_id: UUID, limit: int = 50) -> list[HistoryEntryWithSong]: ...


class SupabaseRoomRepository(RoomRepository):
    """RoomRepository backed by Supabase tables and the write_queue_batch function."""

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[], Client] | None = None,
    ):
        self.settings = settings or get_settings()
        self._client_factory = client_factory or (
            lambda: create_client(self.settings.supabase_url, self.settings.supabase_key)
        )
        self._client: Client | None = None

    async def init(self) -> None:
        if self._client is None:
            self._client = self._client_factory()
            logger.info("Supabase client initialized")

    async def shutdown(self) -> None:
        if self._client is not None:
            self._client = None
            logger.info("Supabase client released")

    async def reconnect(self) -> None:
        logger.warning("Reconnecting Supabase client")
        await super().reconnect()

    @property
    def client(self) -> Client:
        if self._client is None:
            raise UpstreamUnavailableError("Storage is not initialized. Please try again.")
        return self._client

    def _execute(self, operation: str, build: Callable[[Client], Any]):
        try:
            return build(self.client).execute()
        except (APIError, httpx.HTTPError) as e:
            error = classify_storage_error(e, operation)
            logger.warning(f"{operation} failed: {type(e).__name__}: {e} -> {error.code}")
            raise error from e

    async def ping(self) -> None:
        self._execute("ping", lambda c: c.table("room").select("id").limit(1))

    # ==================== ROOMS ====================

    async def get_room_by_code(self, code: str) -> Room:
        result = self._execute(
            "get_room_by_code",
            lambda c: c.table("room").select("*").eq("code", code).eq("is_active", True).limit(1),
        )
        if not result.data:
            raise NotFoundError("Room", code)
        return Room.model_validate(result.data[0])

    async def get_room(self, room_id: UUID) -> Room:
        result = self._execute(
            "get_room",
            lambda c: c.table("room").select("*").eq("id", str(room_id)).limit(1),
        )
        if not result.data:
            raise NotFoundError("Room", str(room_id))
        return Room.model_validate(result.data[0])

    async def create_room(self, code: str) -> Room:
        data = {**RoomCreate(code=code).model_dump(), "queue_version": 0}
        try:
            result = self.client.table("room").insert(data).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateRoomCodeError(code) from e
            raise classify_storage_error(e, "create_room") from e
        except httpx.HTTPError as e:
            raise classify_storage_error(e, "create_room") from e
        return Room.model_validate(result.data[0])

    # ==================== SONGS ====================

    async def get_song(self, song_id: UUID) -> Song | None:
        result = self._execute(
            "get_song",
            lambda c: c.table("song").select("*").eq("id", str(song_id)).limit(1),
        )
        return Song.model_validate(result.data[0]) if result.data else None

    async def _get_song_by_external_id(self, external_video_id: str) -> Song | None:
        result = self._execute(
            "get_song_by_external_id",
            lambda c: c.table("song").select("*").eq("external_video_id", external_video_id).limit(1),
        )
        return Song.model_validate(result.data[0]) if result.data else None

    async def upsert_song(self, song: SongCreate) -> Song:
        """Return the song for ``song.external_video_id``, creating it on first reference."""
        existing = await self._get_song_by_external_id(song.external_video_id)
        if existing:
            return existing

        try:
            result = self.client.table("song").insert(song.model_dump()).execute()
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise classify_storage_error(e, "upsert_song") from e
            # Another request created it first
            existing = await self._get_song_by_external_id(song.external_video_id)
            if existing is None:
                raise classify_storage_error(e, "upsert_song") from e
            return existing
        except httpx.HTTPError as e:
            raise classify_storage_error(e, "upsert_song") from e
        return Song.model_validate(result.data[0])

    # ==================== QUEUE ====================

    async def get_queue(self, room_id: UUID) -> list[QueueEntryWithSong]:
        result = self._execute(
            "get_queue",
            lambda c: c.table("queue_entry").select(QUEUE_SELECT).eq("room_id", str(room_id)).order("position"),
        )
        return [QueueEntryWithSong.model_validate(row) for row in result.data or []]

    async def write_queue_batch(self, room_id: UUID, plan: QueueWritePlan) -> int:
        params = {
            "p_room_id": str(room_id),
            "p_expected_version": plan.expected_version,
            "p_deletions": [str(entry_id) for entry_id in plan.deletions],
            "p_temporary": [
                {"id": str(a.entry_id), "position": a.position} for a in plan.temporary
            ],
            "p_final": [
                {"id": str(a.entry_id), "position": a.position} for a in plan.final
            ],
            "p_inserts": [
                {"id": str(e.id), "song_id": str(e.song_id), "position": e.position}
                for e in plan.inserts
            ],
            "p_current_song_id": str(plan.current_song_id) if plan.current_song_id else None,
        }
        try:
            result = self.client.rpc("write_queue_batch", params).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise QueueWriteConflictError("Queue positions changed concurrently") from e
            raise classify_storage_error(e, "write_queue_batch") from e
        except httpx.HTTPError as e:
            raise classify_storage_error(e, "write_queue_batch") from e

        logger.debug(
            f"Queue batch for room {room_id}: -{len(plan.deletions)} "
            f"~{len(plan.final)} +{len(plan.inserts)} -> v{result.data}"
        )
        return int(result.data)

    async def set_current_song(self, room_id: UUID, song_id: UUID | None, expected_version: int) -> int:
        new_version = expected_version + 1
        data = {
            "current_song_id": str(song_id) if song_id else None,
            "queue_version": new_version,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        result = self._execute(
            "set_current_song",
            lambda c: c.table("room").update(data).eq("id", str(room_id)).eq("queue_version", expected_version),
        )
        if not result.data:
            raise QueueWriteConflictError("Queue changed while updating the current song")
        return new_version

    # ==================== HISTORY ====================

    async def append_history(self, entry: HistoryEntryCreate) -> HistoryEntry:
        data = entry.model_dump(mode="json")
        result = self._execute("append_history", lambda c: c.table("history_entry").insert(data))
        return HistoryEntry.model_validate(result.data[0])

    async def get_history(self, room_id: UUID, limit: int = 50) -> list[HistoryEntryWithSong]:
        result = self._execute(
            "get_history",
            lambda c: (
                c.table("history_entry")
                .select(HISTORY_SELECT)
                .eq("room_id", str(room_id))
                .order("played_at", desc=True)
                .limit(limit)
            ),
        )
        return [HistoryEntryWithSong.model_validate(row) for row in result.data or []]
