"""Wire schemas: camelCase aliases, immutability, documented fallbacks."""

import pytest
from pydantic import ValidationError

from infra_dashboard.domain.schemas.metrics import DatabaseHealth
from infra_dashboard.domain.schemas.site import SiteHealthSummary
from infra_dashboard.domain.schemas.snapshot import ServiceHealth, Snapshot
from tests.fakes import utc


def test_snapshot_defaults_are_complete_fallbacks():
    snapshot = Snapshot(version=1, timestamp=utc(2026, 3, 1), service_health=ServiceHealth.unavailable())
    wire = snapshot.to_wire()
    assert set(wire) == {
        "version",
        "timestamp",
        "serviceHealth",
        "deployments",
        "databaseHealth",
        "queues",
        "hostMetrics",
        "siteHealth",
        "workerSupervisor",
        "degradedSources",
    }
    assert wire["serviceHealth"]["deploymentPlatform"]["ok"] is False
    assert wire["siteHealth"]["allHealthy"] is False
    assert wire["databaseHealth"]["postgres"]["up"] is False
    assert wire["workerSupervisor"] is None


def test_snapshot_is_frozen():
    snapshot = Snapshot(version=1, timestamp=utc(2026, 3, 1), service_health=ServiceHealth.unavailable())
    with pytest.raises(ValidationError):
        snapshot.version = 2


def test_unavailable_fallbacks():
    assert not ServiceHealth.unavailable().all_ok
    assert DatabaseHealth.unavailable().pooler is None
    assert SiteHealthSummary.unavailable().sites == ()
