"""In-process metrics export."""

from fastapi import APIRouter

from infra_dashboard.api.dependencies import Container

router = APIRouter()


@router.get("/metrics")
async def metrics(container: Container):
    return {
        **container.metrics.export_metrics(),
        "circuit_breakers": container.circuit_breaker_states(),
        "subscribers": container.hub.subscriber_count,
    }
