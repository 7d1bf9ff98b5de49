"""Fixtures for API unit tests: container over in-memory backends, AsyncClient over ASGI."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from infra_dashboard.application.ports import ApplicationRow
from infra_dashboard.core.container import build_container
from infra_dashboard.main import create_app
from infra_dashboard.security.session import SessionManager
from tests.fakes import (
    FakeDeploymentControl,
    FakeDeploymentSource,
    FakeKV,
    FakeMetricsSource,
    FakeQueueStore,
    failed_job,
    gauges,
    make_settings,
    record,
)

PASSWORD = "correct-horse"


def _probe_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200)


def _backends():
    now = datetime.now(timezone.utc)
    store = FakeQueueStore({"emails": gauges(waiting=3, failed=2), "reports": gauges()})
    store.failed["emails"] = [failed_job("emails", "e-1", 1000), failed_job("emails", "e-2", 2000)]
    source = FakeDeploymentSource(
        records=[
            record("d-active", "in_progress", now - timedelta(minutes=2)),
            record("d-old", "finished", now - timedelta(hours=3), finished_at=now - timedelta(hours=3)),
            record("d-failed", "failed", now - timedelta(hours=1), logs='[{"output": "npm ERR!"}]'),
        ],
        apps=[ApplicationRow(uuid="app-web", name="web", fqdn="https://web.example.com")],
    )
    return dict(
        kv=FakeKV(),
        queue_store=store,
        deployment_source=source,
        deployment_control=FakeDeploymentControl(),
        metrics_source=FakeMetricsSource(),
        probe_transport=httpx.MockTransport(_probe_handler),
    )


def _client(container) -> AsyncClient:
    app = create_app(container, start_aggregator=False)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def container():
    return build_container(make_settings(environment="test"), **_backends())


@pytest.fixture
def gated_container():
    c = build_container(make_settings(environment="test", dashboard_password=PASSWORD), **_backends())
    c.sessions = SessionManager(PASSWORD, c.settings.session_secret, 3600, kdf_iterations=1000)
    return c


@pytest.fixture
async def async_client(container):
    async with _client(container) as client:
        yield client


@pytest.fixture
async def gated_client(gated_container):
    async with _client(gated_container) as client:
        yield client
