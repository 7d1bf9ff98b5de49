"""Live snapshot stream (server-sent events) and one-shot snapshot pull."""

import asyncio

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from infra_dashboard.api.dependencies import Container
from infra_dashboard.application.exceptions import BackendUnavailableError
from infra_dashboard.domain.schemas.snapshot import Snapshot

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/stream")
async def stream(container: Container):
    subscriber = container.hub.subscribe()
    return StreamingResponse(
        subscriber.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/snapshot", response_model=Snapshot)
async def snapshot(container: Container, wait: bool = False):
    """Latest snapshot; with ?wait=true, the one published by the next tick."""
    try:
        return await container.aggregator.current(wait=wait)
    except asyncio.TimeoutError:
        raise BackendUnavailableError("No snapshot published in time") from None
