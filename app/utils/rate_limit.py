"""
Per-sender rate guard for inbound WhatsApp messages.

A sender may send at most one message per ``min_interval`` seconds; the first
message from an unseen sender is always allowed. State lives in an injectable
store: an in-process map by default, Redis when RATE_LIMIT_BACKEND=redis.
The guard is abuse/cost dampening, not a correctness mechanism.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

import redis

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimitStore(Protocol):
    def try_acquire(self, sender: str, now: float, min_interval: float) -> bool:
        """Record ``now`` for ``sender`` if the interval has elapsed. True when allowed."""
        ...

    def last_seen(self, sender: str) -> Optional[float]: ...

    def evict_older_than(self, cutoff: float) -> int: ...

    def size(self) -> int: ...


class InMemoryRateLimitStore:
    """Thread-safe map of sender -> last accepted message time (seconds)."""

    def __init__(self) -> None:
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, sender: str, now: float, min_interval: float) -> bool:
        with self._lock:
            last = self._entries.get(sender)
            if last is not None and now - last < min_interval:
                return False
            self._entries[sender] = now
            return True

    def last_seen(self, sender: str) -> Optional[float]:
        with self._lock:
            return self._entries.get(sender)

    def evict_older_than(self, cutoff: float) -> int:
        with self._lock:
            stale = [k for k, ts in self._entries.items() if ts < cutoff]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisRateLimitStore:
    """Cross-instance store: one key per sender, set with NX and a PX expiry."""

    def __init__(self, redis_client, namespace: str = "mensajero") -> None:
        self._redis = redis_client
        self._namespace = namespace

    def _key(self, sender: str) -> str:
        return f"{self._namespace}:ratelimit:whatsapp:{sender}"

    def try_acquire(self, sender: str, now: float, min_interval: float) -> bool:
        created = self._redis.set(
            self._key(sender), repr(now), nx=True, px=max(1, int(min_interval * 1000))
        )
        return bool(created)

    def last_seen(self, sender: str) -> Optional[float]:
        value = self._redis.get(self._key(sender))
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def evict_older_than(self, cutoff: float) -> int:
        # keys expire on their own
        return 0

    def size(self) -> int:
        return 0


class RateGuard:
    def __init__(
        self,
        store: RateLimitStore | None = None,
        min_interval: float = 5.0,
        entry_ttl: float = 3600.0,
        sweep_interval: float = 300.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.store = store or InMemoryRateLimitStore()
        self.min_interval = min_interval
        self.entry_ttl = entry_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._last_sweep = clock()

    def check_rate_limit(self, sender: str) -> bool:
        """True if ``sender`` may send now. Records the message when allowed."""
        now = self._clock()
        self._maybe_sweep(now)
        try:
            allowed = self.store.try_acquire(sender, now, self.min_interval)
        except Exception as e:
            # Redis outage must not take ingress down with it
            logger.warning("Rate limit check failed, allowing request: %s", e)
            return True
        if not allowed:
            logger.info("Rate limit hit for sender %s", _mask(sender))
        return allowed

    def wait_time(self, sender: str) -> float:
        """Seconds until ``sender`` may send again (0 when allowed now)."""
        try:
            last = self.store.last_seen(sender)
        except Exception as e:
            logger.warning("Rate limit lookup failed: %s", e)
            return 0.0
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - last))

    def sweep(self) -> int:
        now = self._clock()
        self._last_sweep = now
        evicted = self.store.evict_older_than(now - self.entry_ttl)
        if evicted:
            logger.debug("Rate guard evicted %d idle senders", evicted)
        return evicted

    def stats(self) -> dict[str, int]:
        return {"tracked_senders": self.store.size()}

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self.sweep_interval:
            self.sweep()


def _mask(sender: str) -> str:
    if len(sender) <= 4:
        return "***"
    return f"***{sender[-4:]}"


def build_rate_guard_from_settings(settings) -> RateGuard:
    """Build the process-wide guard; Redis store when RATE_LIMIT_BACKEND=redis."""
    store: RateLimitStore
    clock: Clock = time.monotonic
    if settings.rate_limit_backend.lower() == "redis":
        store = RedisRateLimitStore(
            redis.Redis(host=settings.redis_host, port=settings.redis_port),
            namespace=settings.redis_namespace,
        )
        # timestamps are shared across instances, so use wall-clock time
        clock = time.time
    else:
        store = InMemoryRateLimitStore()
    return RateGuard(
        store=store,
        min_interval=settings.rate_limit_min_interval_seconds,
        entry_ttl=settings.rate_limit_entry_ttl_seconds,
        sweep_interval=settings.rate_limit_sweep_interval_seconds,
        clock=clock,
    )
