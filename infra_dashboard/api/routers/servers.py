"""Supplemental views: host resources with a full site sweep, worker roster, database health."""

from typing import Optional

from fastapi import APIRouter, Query

from infra_dashboard.api.dependencies import Container
from infra_dashboard.domain.schemas.metrics import PostgresHealthView
from infra_dashboard.domain.schemas.workers import WorkerSupervisorStatus

router = APIRouter()


@router.get("/servers/status")
async def servers_status(container: Container, sites_only: bool = Query(False, alias="sitesOnly")):
    """Every host plus every site target, probed in batches. Slower than the snapshot summary."""
    hosts = [] if sites_only else await container.host_metrics.read_all()
    targets = await container.site_targets.list_targets()
    report = container.prober.report(await container.prober.probe_all(targets))
    return {
        "servers": [h.to_wire() for h in hosts],
        "sites": report.to_wire(),
    }


@router.get("/workers/status")
async def workers_status(container: Container):
    status: Optional[WorkerSupervisorStatus] = await container.workers.read()
    return {"status": status.to_wire() if status else None}


@router.get("/postgres/health", response_model=PostgresHealthView)
async def postgres_health(
    container: Container,
    history: bool = False,
    hours: int = Query(1, ge=1, le=168),
):
    health, samples = await container.database_health.read(), None
    if history:
        samples = tuple(await container.database_health.connection_history(hours))
    postgres = health.postgres
    if postgres.up:
        status, message = "ok", f"{int(postgres.connections.active)} active connections"
    elif container.settings.prometheus_url:
        status, message = "error", "PostgreSQL is down"
    else:
        status, message = "warning", "Prometheus not configured"
    return PostgresHealthView(status=status, message=message, database_health=health, history=samples)
