"""
Primary/fallback execution of upstream provider calls.

The primary call is attempted first (skipped when its circuit is open). On
failure the fallback runs only if the caller's budget predicate and the
fallback provider's circuit both allow it. When both layers fail the
fallback's error propagates; the primary error is logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from app.core.circuit_breaker import CircuitBreaker
from app.core.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_COST_BUFFER = 1.2


@dataclass(frozen=True)
class FallbackContext:
    primary_provider: str
    fallback_provider: str
    operation: str = "llm_call"
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None

    def log_extra(self) -> dict[str, Optional[str]]:
        return {
            "operation": self.operation,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
        }


@dataclass
class FallbackResult(Generic[T]):
    result: T
    provider: str
    fallback_used: bool


class FallbackUnavailableError(PipelineError):
    """Primary failed and the fallback was not permitted (budget or open circuit)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(ErrorKind.TRANSIENT, message, cause)


def can_afford_fallback(budget_remaining: float, estimated_cost: float) -> bool:
    """True when the remaining budget covers the estimate plus a 20% margin."""
    return budget_remaining >= estimated_cost * FALLBACK_COST_BUFFER


class FallbackExecutor:
    def __init__(self, breaker: CircuitBreaker) -> None:
        self.breaker = breaker

    async def execute_with_fallback(
        self,
        primary_fn: Callable[[], Awaitable[T]],
        fallback_fn: Optional[Callable[[], Awaitable[T]]],
        context: FallbackContext,
        budget_allows_fallback: Callable[[], bool] = lambda: True,
    ) -> FallbackResult[T]:
        primary_error: Optional[BaseException] = None
        if self.breaker.can_request(context.primary_provider):
            try:
                result = await primary_fn()
            except Exception as e:
                self.breaker.record_failure(context.primary_provider)
                primary_error = e
                logger.warning(
                    "Primary provider %s failed: %s",
                    context.primary_provider,
                    e,
                    extra=context.log_extra(),
                )
            else:
                self.breaker.record_success(context.primary_provider)
                return FallbackResult(result, context.primary_provider, False)
        else:
            logger.info(
                "Circuit open for %s, skipping primary",
                context.primary_provider,
                extra=context.log_extra(),
            )

        if fallback_fn is None:
            raise FallbackUnavailableError(
                f"{context.primary_provider} failed and no fallback is configured",
                cause=primary_error,
            ) from primary_error

        if not budget_allows_fallback():
            logger.error(
                "Fallback to %s blocked: insufficient budget",
                context.fallback_provider,
                extra=context.log_extra(),
            )
            raise FallbackUnavailableError(
                "Primary provider failed and budget does not allow fallback",
                cause=primary_error,
            ) from primary_error

        if not self.breaker.can_request(context.fallback_provider):
            logger.error(
                "Fallback to %s blocked: circuit open",
                context.fallback_provider,
                extra=context.log_extra(),
            )
            raise FallbackUnavailableError(
                f"Primary provider failed and circuit for {context.fallback_provider} is open",
                cause=primary_error,
            ) from primary_error

        try:
            result = await fallback_fn()
        except Exception as fallback_error:
            self.breaker.record_failure(context.fallback_provider)
            logger.error(
                "Both providers failed (primary=%s: %s, fallback=%s: %s)",
                context.primary_provider,
                primary_error,
                context.fallback_provider,
                fallback_error,
                extra=context.log_extra(),
            )
            raise

        self.breaker.record_success(context.fallback_provider)
        logger.info(
            "Fallback provider %s succeeded",
            context.fallback_provider,
            extra=context.log_extra(),
        )
        return FallbackResult(result, context.fallback_provider, True)
