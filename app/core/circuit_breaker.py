"""Per-provider circuit breaker for upstream AI calls.

States:
- closed: requests pass through
- open: tripped after ``failure_threshold`` failures inside ``failure_window``
- after ``reset_timeout`` past the last failure the next ``can_request`` closes
  the circuit again and resets its counters (no explicit half-open state)

The breaker is advisory: concurrent callers may race past ``can_request``
before a trip is observed. State lives in an injectable store.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_FAILURE_WINDOW_SECONDS = 5 * 60
DEFAULT_RESET_TIMEOUT_SECONDS = 10 * 60


@dataclass
class CircuitState:
    """Runtime state for one provider."""

    failure_count: int = 0
    last_failure_at: Optional[float] = None
    is_open: bool = False


class CircuitStateStore(Protocol):
    def get(self, provider: str) -> Optional[CircuitState]: ...

    def put(self, provider: str, state: CircuitState) -> None: ...

    def clear(self, provider: Optional[str] = None) -> None: ...

    def items(self) -> list[tuple[str, CircuitState]]: ...


class InMemoryCircuitStateStore:
    """Process-local, thread-safe provider -> state map. Copies on read and write."""

    def __init__(self) -> None:
        self._states: dict[str, CircuitState] = {}
        self._lock = threading.Lock()

    def get(self, provider: str) -> Optional[CircuitState]:
        with self._lock:
            state = self._states.get(provider)
            return CircuitState(**asdict(state)) if state is not None else None

    def put(self, provider: str, state: CircuitState) -> None:
        with self._lock:
            self._states[provider] = CircuitState(**asdict(state))

    def clear(self, provider: Optional[str] = None) -> None:
        with self._lock:
            if provider is None:
                self._states.clear()
            else:
                self._states.pop(provider, None)

    def items(self) -> list[tuple[str, CircuitState]]:
        with self._lock:
            return [(k, CircuitState(**asdict(v))) for k, v in self._states.items()]


class CircuitBreaker:
    def __init__(
        self,
        store: CircuitStateStore | None = None,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        failure_window: float = DEFAULT_FAILURE_WINDOW_SECONDS,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.store = store or InMemoryCircuitStateStore()
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self.reset_timeout = reset_timeout
        self._clock = clock
        # serializes read-modify-write on a state; the store itself is only get/put
        self._lock = threading.Lock()

    def get_state(self, provider: str) -> CircuitState:
        return self.store.get(provider) or CircuitState()

    def can_request(self, provider: str) -> bool:
        """True if ``provider`` may be called now."""
        with self._lock:
            state = self.get_state(provider)
            if not state.is_open:
                return True
            if (
                state.last_failure_at is not None
                and self._clock() - state.last_failure_at > self.reset_timeout
            ):
                self._reset_locked(provider)
                return True
            return False

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self.get_state(provider)
            state.failure_count = 0
            state.is_open = False
            self.store.put(provider, state)

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self.get_state(provider)
            now = self._clock()
            if (
                state.last_failure_at is not None
                and now - state.last_failure_at > self.failure_window
            ):
                state.failure_count = 1
            else:
                state.failure_count += 1
            state.last_failure_at = now
            if state.failure_count >= self.failure_threshold:
                if not state.is_open:
                    logger.warning(
                        "Circuit OPEN for %s (%d failures)",
                        provider,
                        state.failure_count,
                        extra={"provider": provider, "failure_count": state.failure_count},
                    )
                state.is_open = True
            self.store.put(provider, state)

    def reset(self, provider: Optional[str] = None) -> None:
        """Reset one provider, or every provider when ``provider`` is None."""
        with self._lock:
            if provider is None:
                self.store.clear()
                logger.info("All circuits reset")
            else:
                self._reset_locked(provider)

    def get_health_status(self) -> dict[str, dict[str, object]]:
        return {
            provider: {
                "is_open": state.is_open,
                "failure_count": state.failure_count,
                "last_failure_at": state.last_failure_at,
            }
            for provider, state in self.store.items()
        }

    def _reset_locked(self, provider: str) -> None:
        self.store.put(provider, CircuitState())
        logger.info("Circuit RESET for %s", provider, extra={"provider": provider})


def build_circuit_breaker_from_settings(settings) -> CircuitBreaker:
    return CircuitBreaker(
        failure_threshold=settings.circuit_failure_threshold,
        failure_window=settings.circuit_failure_window_seconds,
        reset_timeout=settings.circuit_reset_timeout_seconds,
    )
