"""SnapshotAggregator: per-source fallbacks, versioning, publish on tick, on-demand polling."""

import asyncio

import pytest

from infra_dashboard.application.broadcast_hub import BroadcastHub
from infra_dashboard.application.snapshot_aggregator import SnapshotAggregator, SnapshotSources
from infra_dashboard.domain.schemas.deployment import LiveDeployments
from infra_dashboard.domain.schemas.metrics import DatabaseHealth
from infra_dashboard.domain.schemas.site import SiteHealthSummary
from infra_dashboard.domain.schemas.snapshot import ServiceHealth, ServiceStatus
from infra_dashboard.observability.metrics import MetricsCollector


def _healthy() -> ServiceHealth:
    ok = ServiceStatus(ok=True, message="ok", latency_ms=1)
    return ServiceHealth(deployment_platform=ok, metrics_backend=ok, queue_store=ok)


def _sources(**replacements) -> SnapshotSources:
    async def service_health():
        return _healthy()

    async def deployments():
        return LiveDeployments.empty()

    async def database_health():
        return DatabaseHealth.unavailable()

    async def queues():
        return []

    async def host_metrics():
        return []

    async def site_health():
        return SiteHealthSummary(all_healthy=True, down_count=0)

    async def worker_supervisor():
        return None

    calls = dict(
        service_health=service_health,
        deployments=deployments,
        database_health=database_health,
        queues=queues,
        host_metrics=host_metrics,
        site_health=site_health,
        worker_supervisor=worker_supervisor,
    )
    calls.update(replacements)
    return SnapshotSources(**calls)


@pytest.mark.asyncio
async def test_timed_out_source_falls_back_without_blocking_others():
    async def slow_health():
        await asyncio.sleep(5)
        return _healthy()

    metrics = MetricsCollector()
    aggregator = SnapshotAggregator(
        _sources(service_health=slow_health),
        BroadcastHub(),
        backend_timeout_sec=0.05,
        metrics=metrics,
    )
    snapshot = await asyncio.wait_for(aggregator.poll(), timeout=2)

    assert snapshot.degraded_sources == ("service_health",)
    assert snapshot.service_health.deployment_platform.ok is False
    assert snapshot.service_health.deployment_platform.message == "Failed to check"
    assert snapshot.site_health.all_healthy is True
    assert metrics.counter("source_fallbacks", source="service_health", reason="timeout") == 1


@pytest.mark.asyncio
async def test_failing_sources_use_their_fallbacks():
    async def broken():
        raise RuntimeError("connection refused")

    aggregator = SnapshotAggregator(
        _sources(queues=broken, site_health=broken, worker_supervisor=broken),
        BroadcastHub(),
    )
    snapshot = await aggregator.poll()

    assert set(snapshot.degraded_sources) == {"queues", "site_health", "worker_supervisor"}
    assert snapshot.queues == ()
    assert snapshot.site_health.all_healthy is False
    assert snapshot.worker_supervisor is None
    wire = snapshot.to_wire()
    assert wire["degradedSources"] == ["queues", "site_health", "worker_supervisor"]


@pytest.mark.asyncio
async def test_versions_increase_and_tick_publishes():
    hub = BroadcastHub(keepalive_interval_sec=60)
    aggregator = SnapshotAggregator(_sources(), hub)
    stream = hub.subscribe().stream()
    await anext(stream)

    first = await aggregator.tick()
    second = await aggregator.tick()

    assert (first.version, second.version) == (1, 2)
    assert aggregator.latest is second
    frame = await anext(stream)
    assert '"version":2' in frame
    await stream.aclose()


@pytest.mark.asyncio
async def test_next_snapshot_waits_for_tick():
    aggregator = SnapshotAggregator(_sources(), BroadcastHub())
    waiter = asyncio.create_task(aggregator.next_snapshot(timeout=1))
    await asyncio.sleep(0)
    snapshot = await aggregator.tick()
    assert await waiter is snapshot


@pytest.mark.asyncio
async def test_next_snapshot_times_out():
    aggregator = SnapshotAggregator(_sources(), BroadcastHub())
    with pytest.raises(asyncio.TimeoutError):
        await aggregator.next_snapshot(timeout=0.01)


@pytest.mark.asyncio
async def test_current_polls_on_demand_without_loop():
    aggregator = SnapshotAggregator(_sources(), BroadcastHub())
    first = await aggregator.current()
    assert first.version == 1
    assert await aggregator.current() is first
    fresh = await aggregator.current(wait=True)
    assert fresh.version == 2


@pytest.mark.asyncio
async def test_run_loop_publishes_on_cadence_and_stops_on_cancel():
    hub = BroadcastHub(keepalive_interval_sec=60)
    aggregator = SnapshotAggregator(_sources(), hub, poll_interval_sec=0.01)
    task = asyncio.create_task(aggregator.run())
    snapshot = await aggregator.next_snapshot(timeout=1)
    assert aggregator.running is True
    assert snapshot.version >= 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert aggregator.running is False
