"""
Error taxonomy shared by the queue engine, repository, coordinator and
catalog search adapter.

Every error carries a human-readable ``message`` that is safe to show to a
participant and a stable ``code`` for clients.
"""


class KaraokeError(Exception):
    """Base class for all expected karaoke-session failures."""

    code = "KARAOKE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(KaraokeError):
    """Room, queue entry or song does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: str | None = None, message: str | None = None) -> None:
        if message is None:
            message = f"{entity} not found" if identifier is None else f"{entity} '{identifier}' not found"
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class InvalidArgumentError(KaraokeError):
    """Request is structurally malformed (missing fields, bad types, bad format)."""

    code = "INVALID_ARGUMENT"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidOperationError(KaraokeError):
    """Request is well-formed but not allowed in the current queue state."""

    code = "INVALID_OPERATION"


class ConflictError(KaraokeError):
    """A write lost a race; retried internally before it reaches a caller."""

    code = "CONFLICT"


class DuplicateRoomCodeError(ConflictError):
    """The generated room code is already taken."""

    code = "DUPLICATE_ROOM_CODE"

    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room code {room_code} is already in use")
        self.room_code = room_code


class QueueWriteConflictError(ConflictError):
    """The room's queue changed between load and persist."""

    code = "QUEUE_WRITE_CONFLICT"


class RateLimitedError(KaraokeError):
    """Outbound search quota exhausted for the current window."""

    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailableError(KaraokeError):
    """Storage or search provider unreachable (after retries, where retried)."""

    code = "UPSTREAM_UNAVAILABLE"


class TransientStorageError(UpstreamUnavailableError):
    """Connection drop or statement-cache error; reconnect and retry."""

    code = "TRANSIENT_STORAGE_ERROR"
