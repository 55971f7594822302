import os

# Settings are read at import time by the app module
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-service-key")
os.environ.setdefault("YOUTUBE_API_KEY", "test-youtube-key")

import pytest
import pytest_asyncio

from karaoke_server.config import Settings
from karaoke_server.services.realtime_broadcaster import RealtimeBroadcaster
from karaoke_server.services.session_coordinator import SessionCoordinator

from tests.fakes import InMemoryRoomRepository


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def settings():
    """Settings with fast retries and a known search key."""
    return Settings(
        supabase_url="http://localhost:54321",
        supabase_key="test-service-key",
        youtube_api_key="test-youtube-key",
        storage_max_attempts=3,
        storage_retry_base_delay_ms=0,
        storage_retry_jitter_ms=0,
        room_code_max_attempts=10,
        _env_file=None,
    )


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def repository():
    """In-memory room repository."""
    return InMemoryRoomRepository()


@pytest_asyncio.fixture
async def broadcaster():
    """Realtime broadcaster, shut down after the test."""
    broadcaster = RealtimeBroadcaster()
    await broadcaster.init()
    yield broadcaster
    await broadcaster.shutdown()


@pytest.fixture
def sleeps():
    """Backoff delays requested by the coordinator."""
    return []


@pytest.fixture
def coordinator(repository, broadcaster, settings, sleeps):
    """Coordinator wired to the in-memory repository, without real sleeping."""

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return SessionCoordinator(repository, broadcaster, settings, sleep=record_sleep)


@pytest_asyncio.fixture
async def room(coordinator):
    """A freshly created room."""
    return await coordinator.create_room()


@pytest.fixture
def make_song(repository):
    """Factory for stored songs."""

    def factory(title: str):
        return repository.add_song_row(title)

    return factory
