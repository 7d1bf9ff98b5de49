"""
Ad hoc actions against the backends: deploy control, failed-job handling, queue pause/resume.

Actions run outside the aggregation loop and are never retried; the next snapshot picks up
their effect.
"""

import asyncio
import logging
import math
from typing import Optional

from infra_dashboard.application.ports import DeploymentControl, QueueStore
from infra_dashboard.domain.exceptions import (
    DomainValidationError,
    JobNotFoundError,
    UnknownQueueError,
)
from infra_dashboard.domain.schemas.deployment import (
    Application,
    CancelDeploymentResponse,
    TriggerDeployRequest,
    TriggerDeployResponse,
)
from infra_dashboard.domain.schemas.queue import (
    FailedJob,
    JobAction,
    JobActionRequest,
    JobActionResponse,
    JobDetails,
    QueueControlResponse,
    QueueProcessed,
)

logger = logging.getLogger(__name__)

ALL_QUEUES = "all"
DEFAULT_FAILED_LIMIT = 20


class ActionService:
    def __init__(self, queue_store: QueueStore, control: DeploymentControl, metrics=None) -> None:
        self._queues = queue_store
        self._control = control
        self._metrics = metrics

    def _count(self, action: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("actions_total", action=action, outcome=outcome)

    async def _require_queue(self, name: str) -> None:
        if name not in await self._queues.discover_queues():
            raise UnknownQueueError(f"Unknown queue: {name}")

    # --- Deployments ---

    async def trigger_deploy(self, request: TriggerDeployRequest) -> TriggerDeployResponse:
        try:
            deployment_uuid = await self._control.trigger_deploy(request.application_uuid, request.force)
        except Exception:
            self._count("trigger_deploy", "failed")
            logger.warning("action_failed", extra={"action": "trigger_deploy", "application": request.application_uuid})
            raise
        self._count("trigger_deploy", "ok")
        logger.info(
            "deploy_triggered",
            extra={"application": request.application_uuid, "deployment": deployment_uuid, "force": request.force},
        )
        return TriggerDeployResponse(deployment_uuid=deployment_uuid)

    async def cancel_deployment(self, deployment_uuid: str) -> CancelDeploymentResponse:
        if not deployment_uuid.strip():
            raise DomainValidationError("deployment uuid is required")
        try:
            message = await self._control.cancel_deployment(deployment_uuid)
        except Exception:
            self._count("cancel_deployment", "failed")
            logger.warning("action_failed", extra={"action": "cancel_deployment", "deployment": deployment_uuid})
            raise
        self._count("cancel_deployment", "ok")
        logger.info("deployment_cancel_requested", extra={"deployment": deployment_uuid})
        return CancelDeploymentResponse(uuid=deployment_uuid, message=message)

    async def list_applications(self) -> list[Application]:
        return await self._control.list_applications()

    # --- Failed jobs ---

    async def list_failed(self, queue: Optional[str] = None, limit: int = DEFAULT_FAILED_LIMIT) -> list[FailedJob]:
        """One queue, or all of them with the limit split evenly and the merged list capped."""
        limit = max(1, limit)
        if queue and queue != ALL_QUEUES:
            await self._require_queue(queue)
            return await self._queues.list_failed(queue, limit)
        names = await self._queues.discover_queues()
        if not names:
            return []
        per_queue = math.ceil(limit / len(names))
        batches = await asyncio.gather(*(self._queues.list_failed(n, per_queue) for n in names))
        return [job for batch in batches for job in batch][:limit]

    async def job_details(self, queue: str, job_id: str) -> JobDetails:
        await self._require_queue(queue)
        details = await self._queues.job_details(queue, job_id)
        if details is None:
            raise JobNotFoundError(f"Job {job_id} not found in queue {queue}")
        return details

    async def retry_job(self, queue: str, job_id: str) -> JobActionResponse:
        await self._require_queue(queue)
        success = await self._queues.retry_job(queue, job_id)
        self._count("retry", "ok" if success else "noop")
        logger.info("job_retried", extra={"queue": queue, "job_id": job_id, "success": success})
        return JobActionResponse(success=success, action=JobAction.RETRY, processed=int(success))

    async def delete_job(self, queue: str, job_id: str) -> JobActionResponse:
        await self._require_queue(queue)
        success = await self._queues.delete_job(queue, job_id)
        self._count("delete", "ok" if success else "noop")
        logger.info("job_deleted", extra={"queue": queue, "job_id": job_id, "success": success})
        return JobActionResponse(success=success, action=JobAction.DELETE, processed=int(success))

    async def _bulk_one(self, action: JobAction, queue: str, limit: Optional[int]) -> int:
        if action == JobAction.RETRY_ALL:
            return await self._queues.retry_all_failed(queue, limit)
        return await self._queues.delete_all_failed(queue, limit)

    async def bulk_failed(
        self,
        action: JobAction,
        queue: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> JobActionResponse:
        """
        retry_all / delete_all over one queue or every queue. With a limit across several
        queues the limit is a global budget, spent queue by queue in name order.
        """
        if action not in (JobAction.RETRY_ALL, JobAction.DELETE_ALL):
            raise DomainValidationError(f"Not a bulk action: {action.value}")
        if queue and queue != ALL_QUEUES:
            await self._require_queue(queue)
            names = [queue]
        else:
            names = await self._queues.discover_queues()

        results: list[QueueProcessed] = []
        if limit is not None and len(names) > 1:
            remaining = limit
            for name in names:
                processed = await self._bulk_one(action, name, remaining) if remaining > 0 else 0
                results.append(QueueProcessed(queue=name, processed=processed))
                remaining -= processed
        else:
            counts = await asyncio.gather(*(self._bulk_one(action, n, limit) for n in names))
            results = [QueueProcessed(queue=n, processed=c) for n, c in zip(names, counts)]

        total = sum(r.processed for r in results)
        self._count(action.value, "ok")
        logger.info("bulk_action_completed", extra={"action": action.value, "queues": len(names), "processed": total})
        return JobActionResponse(success=True, action=action, queues=tuple(results), processed=total)

    async def handle(self, request: JobActionRequest) -> JobActionResponse:
        if request.action in (JobAction.RETRY, JobAction.DELETE):
            if not request.queue or not request.job_id:
                raise DomainValidationError("queue and jobId are required")
            if request.action == JobAction.RETRY:
                return await self.retry_job(request.queue, request.job_id)
            return await self.delete_job(request.queue, request.job_id)
        return await self.bulk_failed(request.action, request.queue, request.limit)

    # --- Queue control ---

    async def pause_queue(self, name: str) -> QueueControlResponse:
        await self._require_queue(name)
        await self._queues.pause(name)
        self._count("pause", "ok")
        return QueueControlResponse(action="pause", queue=name)

    async def resume_queue(self, name: str) -> QueueControlResponse:
        await self._require_queue(name)
        await self._queues.resume(name)
        self._count("resume", "ok")
        return QueueControlResponse(action="resume", queue=name)
