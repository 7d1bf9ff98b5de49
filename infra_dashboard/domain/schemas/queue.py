"""Pydantic schemas for job-queue stats, failed jobs and job actions."""

from enum import Enum
from typing import Any, Optional

from pydantic import Field

from infra_dashboard.domain.schemas.base import WireModel


class QueueStats(WireModel):
    """
    Live state of one job queue. Optional signals are None when unknown, never a
    fabricated zero.
    """

    name: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    paused: int
    is_paused: bool = False
    worker_active: bool
    worker_last_seen_sec: Optional[int] = None
    worker_count: Optional[int] = None
    worker_heartbeat_max_age_sec: Optional[int] = None
    oldest_waiting_age_sec: Optional[int] = None
    jobs_per_min: Optional[float] = None
    failures_per_min: Optional[float] = None


class FailedJob(WireModel):
    id: str
    queue: str
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    failed_reason: str
    stacktrace: tuple[str, ...] = ()
    attempts_made: int = 0
    timestamp: int = 0
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None


class JobDetails(WireModel):
    id: str
    queue: str
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    opts: dict[str, Any] = Field(default_factory=dict)
    progress: Any = 0
    delay: int = 0
    timestamp: int = 0
    attempts_made: int = 0
    stacktrace: tuple[str, ...] = ()
    returnvalue: Any = None
    failed_reason: Optional[str] = None
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None


class JobAction(str, Enum):
    RETRY = "retry"
    DELETE = "delete"
    RETRY_ALL = "retry_all"
    DELETE_ALL = "delete_all"


class JobActionRequest(WireModel):
    action: JobAction
    queue: Optional[str] = None
    job_id: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)


class QueueProcessed(WireModel):
    queue: str
    processed: int


class JobActionResponse(WireModel):
    success: bool
    action: JobAction
    queues: tuple[QueueProcessed, ...] = ()
    processed: int = 0


class QueueControlResponse(WireModel):
    success: bool = True
    action: str
    queue: str
