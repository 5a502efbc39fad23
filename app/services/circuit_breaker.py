"""
Circuit breaker implementation using pybreaker library.
Provides Redis-backed state storage so every API replica sees the same
breaker state for the payment-network RPC.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Redis-backed storage for circuit breaker state (distributed-friendly).

    Fails open: while Redis is unreachable the breaker reads as closed and
    state writes are dropped, so RPC calls still go through.
    """

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._opened_at_key = f"cb:{name}:opened_at"

    def _get(self, key: str) -> str | None:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.warning("circuit_breaker_storage_error", extra={"breaker_name": self._name, "error": str(e)})
            return None

    def _write(self, op, *args, **kwargs) -> None:
        try:
            op(*args, **kwargs)
        except redis.RedisError as e:
            logger.warning("circuit_breaker_storage_error", extra={"breaker_name": self._name, "error": str(e)})

    @property
    def state(self) -> str:
        return self._get(self._state_key) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self._write(self.client.set, self._state_key, value, ex=settings.cb_open_seconds * 2)
        circuit_breaker_state.labels(name=self._name).set(
            1 if value == pybreaker.STATE_OPEN else 0
        )

    @property
    def counter(self) -> int:
        count = self._get(self._counter_key)
        return int(count) if count else 0

    @counter.setter
    def counter(self, value: int) -> None:
        self._write(self.client.set, self._counter_key, str(value), ex=settings.cb_open_seconds)

    def increment_counter(self) -> None:
        self._write(self.client.incr, self._counter_key)
        self._write(self.client.expire, self._counter_key, settings.cb_open_seconds)

    def reset_counter(self) -> None:
        self._write(self.client.delete, self._counter_key)

    @property
    def success_counter(self) -> int:
        return 0

    @success_counter.setter
    def success_counter(self, value: int) -> None:
        pass

    def increment_success_counter(self) -> None:
        pass

    def reset_success_counter(self) -> None:
        pass

    @property
    def opened_at(self) -> datetime | None:
        raw = self._get(self._opened_at_key)
        # same awareness pybreaker stored it with
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self._write(self.client.set, self._opened_at_key, value.isoformat(), ex=settings.cb_open_seconds * 2)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", old_state),
                "new_state": getattr(new_state, "name", new_state),
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Get or create a Redis-backed circuit breaker by name.

    Created lazily: pybreaker reads the stored state on construction.
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            state_storage=RedisCircuitBreakerStorage(name),
            listeners=[CircuitBreakerListener(name)],
        )
    return _breakers[name]
