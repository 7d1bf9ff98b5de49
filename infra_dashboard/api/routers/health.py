"""Public backend health. Not behind the session gate."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from infra_dashboard.api.dependencies import Container

router = APIRouter()


@router.get("/health")
async def health(container: Container):
    """200 when every backend answers, 503 otherwise. Body always lists each service."""
    report = await container.health.system_health()
    settings = container.settings
    body = {
        **report,
        "environment": settings.environment,
        "version": settings.version,
    }
    return JSONResponse(status_code=200 if report["status"] == "ok" else 503, content=body)
