"""Pydantic schemas for the external worker-supervisor roster."""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import Field

from infra_dashboard.domain.schemas.base import WireModel


class WorkerSupervisorItem(WireModel):
    name: str
    source: Literal["systemd", "pm2", "docker"]
    status: Literal["ok", "warning", "down"]
    detail: Optional[str] = None
    metadata: Optional[dict[str, Union[str, int, float, bool, None]]] = None


class WorkerSupervisorSummary(WireModel):
    total: int = 0
    ok: int = 0
    warning: int = 0
    down: int = 0


class WorkerSupervisorStatus(WireModel):
    """Roster written by an external supervisor. May be stale; `stale`/`age_sec` are derived here."""

    version: int = 1
    host: Optional[str] = None
    updated_at: Optional[datetime] = None
    summary: WorkerSupervisorSummary = Field(default_factory=WorkerSupervisorSummary)
    items: tuple[WorkerSupervisorItem, ...] = ()
    stale: Optional[bool] = None
    age_sec: Optional[int] = None
