"""Error taxonomy for the game data core.

Every failure the core surfaces to a caller is a GameDataError subclass
carrying an uppercase error code and the HTTP status the API layer maps
it to. Looking up an absent record is NOT an error: lookups return None.

Tier 1 leaf module: stdlib only.

Usage:
    from hideseek.errors import RateLimitError, StorageError, ValidationError
"""


class GameDataError(Exception):
    """Base class for all errors raised by the game data core.

    Attributes:
        code: Uppercase machine-readable code ("VALIDATION_ERROR", ...).
        status_code: HTTP status the API layer responds with.
        message: Human-readable description, safe to show to players.
    """

    code = "GAME_DATA_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(GameDataError):
    """Malformed input. Raised before any write happens; never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class RateLimitError(GameDataError):
    """Too-frequent submission. The caller may retry after the window.

    Attributes:
        retry_after_ms: Length of the rate window that was violated.
    """

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, retry_after_ms: int = 0) -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(message)


class StorageError(GameDataError):
    """Connectivity or (de)serialization failure against the shared store."""

    code = "STORAGE_ERROR"
    status_code = 503


class NotFoundError(GameDataError):
    """A record the caller required does not exist (or has expired)."""

    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(GameDataError):
    """The caller is not allowed to perform this action on the record."""

    code = "FORBIDDEN"
    status_code = 403


class CorruptRecordError(StorageError):
    """A stored value exists but cannot be decoded into its record shape."""
