"""
Circuit breaker implementation using pybreaker library.
Provides Redis-backed state storage for distributed systems.
"""
import logging
from datetime import datetime

import redis
import pybreaker
from typing import Iterable

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed storage for circuit breaker state (distributed-friendly)."""

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._success_counter_key = f"cb:{name}:success_counter"
        self._opened_at_key = f"cb:{name}:opened_at"

    @property
    def state(self) -> str:
        state = self.client.get(self._state_key)
        return state or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=settings.cb_open_seconds * 2)

    @property
    def counter(self) -> int:
        count = self.client.get(self._counter_key)
        return int(count) if count else 0

    @counter.setter
    def counter(self, value: int) -> None:
        self.client.set(self._counter_key, str(value), ex=settings.cb_open_seconds)

    def increment_counter(self) -> None:
        self.client.incr(self._counter_key)
        self.client.expire(self._counter_key, settings.cb_open_seconds)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    @property
    def success_counter(self) -> int:
        count = self.client.get(self._success_counter_key)
        return int(count) if count else 0

    def increment_success_counter(self) -> None:
        self.client.incr(self._success_counter_key)
        self.client.expire(self._success_counter_key, settings.cb_open_seconds * 2)

    def reset_success_counter(self) -> None:
        self.client.delete(self._success_counter_key)

    @property
    def opened_at(self) -> datetime | None:
        value = self.client.get(self._opened_at_key)
        if not value:
            return None
        return datetime.fromisoformat(value)

    @opened_at.setter
    def opened_at(self, dt: datetime) -> None:
        self.client.set(self._opened_at_key, dt.isoformat(), ex=settings.cb_open_seconds * 2)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": old_name,
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def _make_storage(name: str) -> pybreaker.CircuitBreakerStorage:
    if settings.cb_storage == "memory":
        return pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
    return RedisCircuitBreakerStorage(name)


def get_circuit_breaker(name: str, exclude: Iterable[type[Exception]] = ()) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name. `exclude` lists errors that do not count as failures."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=list(exclude),
            state_storage=_make_storage(name),
            listeners=[CircuitBreakerListener(name)],
        )
    return _breakers[name]
