import math
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from karaoke_server.api.v1 import playback, queue, room, song, websocket
from karaoke_server.config import Settings, get_settings
from karaoke_server.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidOperationError,
    KaraokeError,
    NotFoundError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from karaoke_server.core.logging import get_logger, setup_logging
from karaoke_server.dependencies import get_repository
from karaoke_server.services.catalog_search import CatalogSearchService
from karaoke_server.services.realtime_broadcaster import RealtimeBroadcaster
from karaoke_server.services.room_repository import RoomRepository, SupabaseRoomRepository
from karaoke_server.services.session_coordinator import SessionCoordinator

logger = get_logger(__name__)

ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (InvalidOperationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (UpstreamUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _error_response(status_code: int, message: str, code: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code}, headers=headers)


async def karaoke_error_handler(request: Request, exc: KaraokeError) -> JSONResponse:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = mapped
            break

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}

    code = exc.code
    if isinstance(exc, UpstreamUnavailableError):
        # Storage details stay in the logs
        code = UpstreamUnavailableError.code

    level = logger.warning if status_code >= 500 else logger.info
    level(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return _error_response(status_code, exc.message, code, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    logger.info(f"{request.method} {request.url.path} -> 400: {message}")
    return _error_response(status.HTTP_400_BAD_REQUEST, message, InvalidArgumentError.code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error. Please try again.", "INTERNAL"
    )


def create_app(
    settings: Settings | None = None,
    repository: RoomRepository | None = None,
    broadcaster: RealtimeBroadcaster | None = None,
    catalog_search: CatalogSearchService | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup: initializing storage, realtime and search clients...")
        app.state.repository = repository or SupabaseRoomRepository(settings)
        app.state.broadcaster = broadcaster or RealtimeBroadcaster()
        app.state.catalog_search = catalog_search or CatalogSearchService(settings)
        app.state.coordinator = SessionCoordinator(
            app.state.repository, app.state.broadcaster, settings
        )

        await app.state.repository.init()
        await app.state.broadcaster.init()
        await app.state.catalog_search.init()
        logger.info("Application startup complete")

        yield

        logger.info("Application shutdown: closing clients...")
        await app.state.catalog_search.shutdown()
        await app.state.broadcaster.shutdown()
        await app.state.repository.shutdown()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Karaoke Server",
        description="Shared karaoke rooms: one queue, many remotes, real-time updates",
        version="1.0.0",
        debug=settings.debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(KaraokeError, karaoke_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # API v1 endpoints
    app.include_router(room.router, prefix=f"{settings.api_v1_prefix}/rooms", tags=["Rooms"])
    app.include_router(queue.router, prefix=f"{settings.api_v1_prefix}/rooms", tags=["Queue"])
    app.include_router(playback.router, prefix=f"{settings.api_v1_prefix}/rooms", tags=["Playback"])
    app.include_router(song.router, prefix=f"{settings.api_v1_prefix}/songs", tags=["Songs"])
    app.include_router(websocket.router, tags=["WebSocket"])

    @app.get("/")
    async def root():
        return {"message": "Welcome to Karaoke Server!", "status": "running"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.get("/health/database")
    async def database_health(repository: RoomRepository = Depends(get_repository)):
        started = time.perf_counter()
        try:
            await repository.ping()
        except KaraokeError as e:
            duration_ms = round((time.perf_counter() - started) * 1000)
            logger.warning(f"Database health check failed after {duration_ms}ms: {e.message}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "error": e.message, "duration_ms": duration_ms},
            )
        duration_ms = round((time.perf_counter() - started) * 1000)
        return {"status": "healthy", "duration_ms": duration_ms}

    return app


# Configure logging before anything else
setup_logging()
app = create_app()
