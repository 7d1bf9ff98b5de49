"""Pydantic schema for the aggregated Snapshot pushed to subscribers once per polling cycle."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from infra_dashboard.domain.schemas.base import WireModel
from infra_dashboard.domain.schemas.deployment import LiveDeployments
from infra_dashboard.domain.schemas.metrics import DatabaseHealth, HostMetrics
from infra_dashboard.domain.schemas.queue import QueueStats
from infra_dashboard.domain.schemas.site import SiteHealthSummary
from infra_dashboard.domain.schemas.workers import WorkerSupervisorStatus


class ServiceStatus(WireModel):
    ok: bool
    message: str
    latency_ms: Optional[int] = None

    @classmethod
    def failed(cls, message: str) -> "ServiceStatus":
        return cls(ok=False, message=message)


class ServiceHealth(WireModel):
    deployment_platform: ServiceStatus
    metrics_backend: ServiceStatus
    queue_store: ServiceStatus

    @property
    def all_ok(self) -> bool:
        return self.deployment_platform.ok and self.metrics_backend.ok and self.queue_store.ok

    @classmethod
    def unavailable(cls, message: str = "Failed to check") -> "ServiceHealth":
        return cls(
            deployment_platform=ServiceStatus.failed(message),
            metrics_backend=ServiceStatus.failed(message),
            queue_store=ServiceStatus.failed(message),
        )


class Snapshot(WireModel):
    """
    Immutable aggregate of one polling cycle. Always complete: a source that failed or
    timed out contributes its fallback value and is listed in `degraded_sources`.
    """

    version: int
    timestamp: datetime
    service_health: ServiceHealth
    deployments: LiveDeployments = Field(default_factory=LiveDeployments)
    database_health: DatabaseHealth = Field(default_factory=DatabaseHealth.unavailable)
    queues: tuple[QueueStats, ...] = ()
    host_metrics: tuple[HostMetrics, ...] = ()
    site_health: SiteHealthSummary = Field(default_factory=SiteHealthSummary.unavailable)
    worker_supervisor: Optional[WorkerSupervisorStatus] = None
    degraded_sources: tuple[str, ...] = ()
