"""Backend adapter protocols. Application layer depends on these; infrastructure implements them."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from infra_dashboard.domain.models.deployment import DeploymentFilters
from infra_dashboard.domain.schemas.deployment import Application, DeploymentRecord, DeploymentStats
from infra_dashboard.domain.schemas.queue import FailedJob, JobDetails
from infra_dashboard.domain.schemas.snapshot import ServiceStatus


@dataclass(frozen=True)
class ApplicationRow:
    """Deployment-platform application with its raw, possibly comma-separated FQDN list."""

    uuid: str
    name: str
    fqdn: str


@dataclass(frozen=True)
class QueueGauges:
    """Raw per-queue reads taken in one round trip."""

    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    paused: int
    is_paused: bool
    # TTL of the worker's stalled-check marker: -2 missing, -1 no expiry, >0 seconds left.
    stalled_check_ttl: int
    oldest_waiting_job_id: Optional[str] = None


@dataclass(frozen=True)
class MetricSample:
    labels: dict[str, str]
    value: float


@dataclass(frozen=True)
class MetricSeries:
    labels: dict[str, str]
    points: list[tuple[float, float]] = field(default_factory=list)


class DeploymentSource(Protocol):
    """Read queries against the deployment platform's database."""

    async def ping(self) -> ServiceStatus: ...

    async def list_active(self, limit: int) -> list[DeploymentRecord]:
        """Queued or in-progress deployments, newest first. Never includes logs."""
        ...

    async def list_recent(self, since: datetime, limit: int) -> list[DeploymentRecord]:
        """Terminal deployments updated after `since`, most recently updated first."""
        ...

    async def list_page(
        self,
        before: Optional[datetime],
        limit: int,
        filters: DeploymentFilters,
    ) -> list[DeploymentRecord]:
        """Terminal deployments strictly older than `before` (by created_at), newest first."""
        ...

    async def count(self, filters: DeploymentFilters) -> int: ...

    async def daily_stats(self, window_start: datetime, day_start: datetime) -> DeploymentStats:
        """Counts over records updated after `window_start` plus every still-active record."""
        ...

    async def get_by_uuid(self, uuid: str) -> Optional[DeploymentRecord]:
        """Single deployment including its build logs."""
        ...

    async def list_applications_with_fqdn(self) -> list[ApplicationRow]: ...


class DeploymentControl(Protocol):
    """Mutations and listings through the deployment platform's REST API."""

    async def ping(self) -> ServiceStatus: ...

    async def trigger_deploy(self, application_uuid: str, force: bool = False) -> str: ...

    async def cancel_deployment(self, deployment_uuid: str) -> Optional[str]: ...

    async def list_applications(self) -> list[Application]: ...


class MetricsSource(Protocol):
    """Metric query interface. The expression language is opaque here."""

    async def ping(self) -> ServiceStatus: ...

    async def query_scalar(self, expression: str) -> Optional[float]: ...

    async def query_vector(self, expression: str) -> list[MetricSample]: ...

    async def query_range(
        self,
        expression: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> list[MetricSeries]: ...


class KeyValueStore(Protocol):
    """Generic key/value primitive used for operational state and the autoheal config."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def scan_keys(self, pattern: str) -> list[str]: ...

    async def mget(self, keys: list[str]) -> list[Optional[str]]: ...


class QueueStore(Protocol):
    """Typed reads and writes against the job-queue store's layout."""

    async def ping(self) -> ServiceStatus: ...

    async def discover_queues(self) -> list[str]: ...

    async def read_gauges(self, queue: str) -> QueueGauges: ...

    async def job_timestamp(self, queue: str, job_id: str) -> Optional[int]:
        """Enqueue time of a job in epoch millis, or None if missing/unparseable."""
        ...

    async def list_failed(self, queue: str, limit: int) -> list[FailedJob]: ...

    async def job_details(self, queue: str, job_id: str) -> Optional[JobDetails]: ...

    async def retry_job(self, queue: str, job_id: str) -> bool: ...

    async def delete_job(self, queue: str, job_id: str) -> bool: ...

    async def retry_all_failed(self, queue: str, limit: Optional[int] = None) -> int: ...

    async def delete_all_failed(self, queue: str, limit: Optional[int] = None) -> int: ...

    async def pause(self, queue: str) -> None: ...

    async def resume(self, queue: str) -> None: ...
