"""Pydantic schemas for deployment records, live view and history pages."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from infra_dashboard.domain.models.deployment import BuildStage, DeploymentStatus
from infra_dashboard.domain.schemas.base import WireModel


class DeploymentRecord(WireModel):
    """One deployment attempt. `duration_ms` is derived at read time; `logs` only on detail reads."""

    uuid: str
    application_name: str
    application_uuid: str
    status: DeploymentStatus
    commit: Optional[str] = None
    commit_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    logs: Optional[str] = None


class DeploymentStats(WireModel):
    queued: int = 0
    in_progress: int = 0
    finished_today: int = 0
    failed_today: int = 0


class LiveDeployments(WireModel):
    active: tuple[DeploymentRecord, ...] = ()
    recent: tuple[DeploymentRecord, ...] = ()
    stats: DeploymentStats = Field(default_factory=DeploymentStats)

    @classmethod
    def empty(cls) -> "LiveDeployments":
        return cls()


class DeploymentPage(WireModel):
    records: tuple[DeploymentRecord, ...]
    next_cursor: Optional[str] = None
    total_count: int


class DeploymentDetail(WireModel):
    deployment: DeploymentRecord
    build_stage: BuildStage
    log_preview: tuple[str, ...] = ()


class TriggerDeployRequest(WireModel):
    application_uuid: str = Field(..., min_length=1)
    force: bool = False


class TriggerDeployResponse(WireModel):
    success: bool = True
    deployment_uuid: str


class CancelDeploymentResponse(WireModel):
    success: bool = True
    uuid: str
    message: Optional[str] = None


class Application(WireModel):
    uuid: str
    name: str
    fqdn: Optional[str] = None
    status: Optional[str] = None
    git_repository: Optional[str] = None
    git_branch: Optional[str] = None
