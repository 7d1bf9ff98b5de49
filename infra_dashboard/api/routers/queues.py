"""Queue stats, failed-job inspection and job actions, pause/resume."""

from typing import Optional

from fastapi import APIRouter, Query

from infra_dashboard.api.dependencies import Container
from infra_dashboard.application.actions import DEFAULT_FAILED_LIMIT
from infra_dashboard.domain.exceptions import UnknownQueueError
from infra_dashboard.domain.schemas.queue import (
    FailedJob,
    JobActionRequest,
    JobActionResponse,
    JobDetails,
    QueueControlResponse,
    QueueStats,
)

router = APIRouter()


@router.get("", response_model=list[QueueStats])
async def all_queues(container: Container):
    return await container.queue_health.all_stats(record=False)


@router.get("/jobs/failed", response_model=list[FailedJob])
async def failed_jobs(
    container: Container,
    queue: Optional[str] = None,
    limit: int = Query(DEFAULT_FAILED_LIMIT, ge=1, le=500),
):
    return await container.actions.list_failed(queue, limit)


@router.post("/jobs/failed", response_model=JobActionResponse)
async def job_action(body: JobActionRequest, container: Container):
    return await container.actions.handle(body)


@router.get("/{name}", response_model=QueueStats)
async def one_queue(name: str, container: Container):
    if name not in await container.queue_store.discover_queues():
        raise UnknownQueueError(f"Unknown queue: {name}")
    return await container.queue_health.stats(name, record=False)


@router.get("/{name}/jobs/{job_id}", response_model=JobDetails)
async def job_details(name: str, job_id: str, container: Container):
    return await container.actions.job_details(name, job_id)


@router.post("/{name}/pause", response_model=QueueControlResponse)
async def pause(name: str, container: Container):
    return await container.actions.pause_queue(name)


@router.post("/{name}/resume", response_model=QueueControlResponse)
async def resume(name: str, container: Container):
    return await container.actions.resume_queue(name)
