"""Circuit breaker around a flaky backend: CLOSED, OPEN, HALF_OPEN."""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from infra_dashboard.application.exceptions import BackendUnavailableError

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(BackendUnavailableError):
    """Raised without touching the backend while the circuit is open."""

    def __init__(self, name: str, retry_after_sec: float) -> None:
        super().__init__(f"Circuit breaker {name} is OPEN")
        self.name = name
        self.retry_after_sec = retry_after_sec


class CircuitBreaker:
    """
    After failure_threshold consecutive failures the circuit opens for recovery_timeout_seconds,
    then lets a single probe through. Only exceptions in `counted` trip the breaker; anything
    else propagates without affecting state.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 30.0,
        counted: tuple[type[BaseException], ...] = (Exception,),
        metrics: Any = None,
    ) -> None:
        self._name = name
        self._threshold = failure_threshold
        self._recovery_timeout = recovery_timeout_seconds
        self._counted = counted
        self._metrics = metrics
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    def _retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._recovery_timeout - (time.monotonic() - self._opened_at))

    def _count(self, metric: str) -> None:
        if self._metrics is not None:
            self._metrics.increment(metric, 1, category=self._name)

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._count("circuit_breaker_opened")

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.OPEN and self._retry_after() > 0:
                self._count("circuit_breaker_rejected")
                raise CircuitOpenError(self._name, self._retry_after())
            if self._probe_in_flight:
                self._count("circuit_breaker_rejected")
                raise CircuitOpenError(self._name, self._recovery_timeout)
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = True

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self._counted:
            async with self._lock:
                self._probe_in_flight = False
                self._failures += 1
                self._count("circuit_breaker_failure")
                if self._state == CircuitState.HALF_OPEN or self._failures >= self._threshold:
                    self._open()
            raise
        except BaseException:
            async with self._lock:
                self._probe_in_flight = False
            raise
        async with self._lock:
            self._probe_in_flight = False
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._opened_at = None
        return result
