"""Deployments: live view, history pages, detail, trigger and cancel."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from infra_dashboard.api.dependencies import Container
from infra_dashboard.domain.models.deployment import DeploymentFilters
from infra_dashboard.domain.schemas.deployment import (
    Application,
    CancelDeploymentResponse,
    DeploymentDetail,
    DeploymentPage,
    LiveDeployments,
    TriggerDeployRequest,
    TriggerDeployResponse,
)

router = APIRouter()


@router.get("/live", response_model=LiveDeployments)
async def live(container: Container):
    return await container.deployments.live_view()


@router.get("/applications", response_model=list[Application])
async def applications(container: Container):
    return await container.actions.list_applications()


@router.get("", response_model=DeploymentPage)
async def history(
    container: Container,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    status: Optional[list[str]] = Query(None),
    application: Optional[str] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
):
    """Terminal deployments newest first. `status` may repeat or be comma-separated."""
    filters = DeploymentFilters.from_raw(status, application, start_date, end_date)
    return await container.deployments.page(cursor=cursor, limit=limit, filters=filters)


@router.post("", response_model=TriggerDeployResponse)
async def trigger(body: TriggerDeployRequest, container: Container):
    return await container.actions.trigger_deploy(body)


@router.get("/{uuid}", response_model=DeploymentDetail)
async def detail(uuid: str, container: Container):
    return await container.deployments.detail(uuid)


@router.post("/{uuid}/cancel", response_model=CancelDeploymentResponse)
async def cancel(uuid: str, container: Container):
    return await container.actions.cancel_deployment(uuid)
