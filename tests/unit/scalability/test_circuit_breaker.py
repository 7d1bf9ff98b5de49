"""CircuitBreaker: state transitions CLOSED -> OPEN -> HALF_OPEN, counted exceptions only."""

import asyncio

import pytest

from infra_dashboard.application.exceptions import BackendUnavailableError
from infra_dashboard.observability.metrics import MetricsCollector
from infra_dashboard.scalability.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState


async def _fail():
    raise BackendUnavailableError("Prometheus unreachable")


async def _ok():
    return 1


@pytest.mark.asyncio
async def test_closed_success():
    cb = CircuitBreaker("prometheus", failure_threshold=3, recovery_timeout_seconds=0.1)

    async def ok():
        return 42

    assert await cb.call(ok) == 42
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_after_threshold():
    metrics = MetricsCollector()
    cb = CircuitBreaker("prometheus", failure_threshold=3, recovery_timeout_seconds=10.0, metrics=metrics)

    for _ in range(3):
        with pytest.raises(BackendUnavailableError):
            await cb.call(_fail)
    assert cb.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError, match="OPEN") as exc:
        await cb.call(_ok)
    assert exc.value.retry_after_sec > 0
    assert metrics.counter("circuit_breaker_opened", category="prometheus") == 1
    assert metrics.counter("circuit_breaker_rejected", category="prometheus") == 1


@pytest.mark.asyncio
async def test_uncounted_errors_do_not_trip():
    cb = CircuitBreaker(
        "prometheus",
        failure_threshold=1,
        recovery_timeout_seconds=10.0,
        counted=(BackendUnavailableError,),
    )

    async def bad_query():
        raise ValueError("parse error")

    for _ in range(3):
        with pytest.raises(ValueError):
            await cb.call(bad_query)
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_recovery():
    cb = CircuitBreaker("prometheus", failure_threshold=2, recovery_timeout_seconds=0.05)

    for _ in range(2):
        with pytest.raises(BackendUnavailableError):
            await cb.call(_fail)
    assert cb.state == CircuitState.OPEN

    await asyncio.sleep(0.1)

    assert await cb.call(_ok) == 1
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_opens_again():
    cb = CircuitBreaker("prometheus", failure_threshold=2, recovery_timeout_seconds=0.05)

    for _ in range(2):
        with pytest.raises(BackendUnavailableError):
            await cb.call(_fail)
    await asyncio.sleep(0.1)
    with pytest.raises(BackendUnavailableError):
        await cb.call(_fail)
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_only_one_probe_while_half_open():
    cb = CircuitBreaker("prometheus", failure_threshold=1, recovery_timeout_seconds=0.01)
    with pytest.raises(BackendUnavailableError):
        await cb.call(_fail)
    await asyncio.sleep(0.05)

    release = asyncio.Event()

    async def slow_ok():
        await release.wait()
        return 1

    probe = asyncio.create_task(cb.call(slow_ok))
    await asyncio.sleep(0)
    assert cb.state == CircuitState.HALF_OPEN
    with pytest.raises(CircuitOpenError):
        await cb.call(_ok)
    release.set()
    assert await probe == 1
    assert cb.state == CircuitState.CLOSED
