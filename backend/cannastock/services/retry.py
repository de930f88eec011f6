import asyncio

from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings

settings = get_settings()

# Matched against the lower-cased exception text; the driver is not known here.
TRANSIENT_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "deadlock",
    "could not serialize",
    "serialization failure",
    "database is locked",
    "reset by peer",
)


def is_transient_error(exc: BaseException) -> bool:
    if not isinstance(exc, (SQLAlchemyError, OSError, asyncio.TimeoutError)):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after the given zero-based failed attempt."""
    delay_ms = min(
        settings.movement_retry_base_delay_ms * (2 ** attempt),
        settings.movement_retry_max_delay_ms,
    )
    return delay_ms / 1000
