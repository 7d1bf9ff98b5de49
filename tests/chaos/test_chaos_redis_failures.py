"""
Chaos: job-queue store outage (every Redis call fails).
System must: keep publishing complete snapshots, name the degraded sources, surface 503 on
store-backed actions, and recover on the next tick once the store is back.
"""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from infra_dashboard.application.exceptions import BackendUnavailableError
from infra_dashboard.core.container import build_container
from infra_dashboard.domain.schemas.snapshot import ServiceStatus
from infra_dashboard.main import create_app
from tests.fakes import (
    FailingKV,
    FakeDeploymentControl,
    FakeDeploymentSource,
    FakeKV,
    FakeMetricsSource,
    FakeQueueStore,
    gauges,
    make_settings,
)


class UnreachableQueueStore(FakeQueueStore):
    async def ping(self) -> ServiceStatus:
        return ServiceStatus.failed("Error 111 connecting to redis:6379. Connection refused.")

    async def discover_queues(self) -> list[str]:
        raise BackendUnavailableError("Queue store unavailable: Connection refused")


class FlappingQueueStore(FakeQueueStore):
    down = False

    async def discover_queues(self) -> list[str]:
        if self.down:
            raise BackendUnavailableError("Queue store unavailable: Connection refused")
        return await super().discover_queues()


def _container(kv, queue_store):
    return build_container(
        make_settings(environment="test"),
        kv=kv,
        queue_store=queue_store,
        deployment_source=FakeDeploymentSource(),
        deployment_control=FakeDeploymentControl(),
        metrics_source=FakeMetricsSource(),
        probe_transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )


@pytest.mark.asyncio
async def test_snapshot_stays_complete_during_redis_outage():
    container = _container(FailingKV(), UnreachableQueueStore({"emails": gauges()}))
    snapshot = await container.aggregator.tick()

    assert set(snapshot.degraded_sources) == {"queues", "worker_supervisor"}
    assert snapshot.queues == ()
    assert snapshot.worker_supervisor is None
    assert snapshot.service_health.queue_store.ok is False
    assert snapshot.service_health.deployment_platform.ok is True
    assert snapshot.site_health.all_healthy is True
    assert container.metrics.counter("source_fallbacks", source="queues", reason="error") == 1


@pytest.mark.asyncio
async def test_store_backed_endpoints_return_503():
    container = _container(FailingKV(), UnreachableQueueStore())
    app = create_app(container, start_aggregator=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        r = await client.get("/autoheal/config")
        assert r.status_code == 503
        assert "unreachable" in r.json()["detail"]

        r = await client.post("/queues/jobs/failed", json={"action": "retry_all"})
        assert r.status_code == 503

        r = await client.get("/health")
        assert r.status_code == 503
        assert r.json()["services"]["queueStore"]["ok"] is False


@pytest.mark.asyncio
async def test_recovers_on_next_tick_after_outage():
    store = FlappingQueueStore({"emails": gauges(waiting=4)})
    container = _container(FakeKV(), store)

    store.down = True
    degraded = await container.aggregator.tick()
    assert "queues" in degraded.degraded_sources

    store.down = False
    recovered = await container.aggregator.tick()
    assert recovered.version == degraded.version + 1
    assert recovered.degraded_sources == ()
    assert [q.waiting for q in recovered.queues] == [4]


@pytest.mark.asyncio
async def test_one_broken_queue_does_not_hide_the_others():
    store = FakeQueueStore({"emails": gauges(waiting=1), "reports": gauges(waiting=2)})
    store.broken.add("emails")
    container = _container(FakeKV(), store)
    snapshot = await container.aggregator.tick()

    assert [q.name for q in snapshot.queues] == ["reports"]
    assert "queues" not in snapshot.degraded_sources
    assert container.metrics.counter("queue_stats_failed", queue="emails") == 1
