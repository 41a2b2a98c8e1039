"""
Error taxonomy for the inbound pipeline.

Errors are tagged with an ErrorKind where they originate (persistence,
provider calls, bounded waits) so callers branch on ``kind`` instead of
sniffing driver codes or message text.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_DB_CODES = {"57P01", "08006", "08003", "08001", "40001", "40P01"}
TRANSIENT_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "econnrefused",
    "enotfound",
    "econnreset",
    "network",
    "connection reset",
    "connection refused",
    "database is locked",
)
UNIQUE_VIOLATION_CODE = "23505"
UNIQUE_VIOLATION_MARKERS = ("unique constraint", "duplicate key")


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    DUPLICATE = "duplicate"
    PERMANENT = "permanent"
    TIMEOUT = "timeout"


class PipelineError(Exception):
    """An error tagged with the ErrorKind decided at its origin."""

    def __init__(
        self, kind: ErrorKind, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    def __repr__(self) -> str:
        return f"PipelineError(kind={self.kind.value!r}, message={self.message!r})"


def _pg_code(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a raw exception to an ErrorKind."""
    if isinstance(exc, PipelineError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    message = str(exc).lower()
    code = _pg_code(exc)
    if isinstance(exc, IntegrityError):
        if code == UNIQUE_VIOLATION_CODE or any(
            marker in message for marker in UNIQUE_VIOLATION_MARKERS
        ):
            return ErrorKind.DUPLICATE
        return ErrorKind.PERMANENT
    if isinstance(exc, (OperationalError, DisconnectionError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, DBAPIError) and code in TRANSIENT_DB_CODES:
        return ErrorKind.TRANSIENT
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def to_pipeline_error(exc: BaseException, context: str = "") -> PipelineError:
    """Wrap ``exc`` in a PipelineError classified at this boundary."""
    if isinstance(exc, PipelineError):
        return exc
    kind = classify_error(exc)
    message = f"{context}: {exc}" if context else str(exc)
    return PipelineError(kind, message, cause=exc)


def is_duplicate_error(exc: BaseException) -> bool:
    return classify_error(exc) == ErrorKind.DUPLICATE


def is_transient_error(exc: BaseException) -> bool:
    return classify_error(exc) == ErrorKind.TRANSIENT


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 1,
    initial_delay: float = 0.5,
    max_delay: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
    operation: str = "operation",
) -> T:
    """Run ``fn``, retrying up to ``max_retries`` times on retryable errors.

    Delay doubles per attempt, capped at ``max_delay``, plus 0-100ms jitter.
    The last error is re-raised unchanged.
    """
    attempt = 0
    delay = initial_delay
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not should_retry(exc):
                raise
            attempt += 1
            sleep_for = min(delay, max_delay) + random.uniform(0, 0.1)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation,
                attempt,
                max_retries,
                sleep_for,
                exc,
            )
            await asyncio.sleep(sleep_for)
            delay = min(delay * 2, max_delay)
