"""Autoheal policy read by the external remediation automation."""

from typing import Any

from fastapi import APIRouter, Body
from pydantic import ValidationError

from infra_dashboard.api.dependencies import Container
from infra_dashboard.domain.exceptions import DomainValidationError
from infra_dashboard.domain.schemas.autoheal import AutohealConfigEnvelope, AutohealConfigUpdate

router = APIRouter()


def _parse_update(body: dict[str, Any]) -> AutohealConfigUpdate:
    """Accepts {"config": {...}} or the bare document."""
    raw = body.get("config") if isinstance(body.get("config"), dict) else body
    try:
        return AutohealConfigUpdate.model_validate(raw)
    except ValidationError as e:
        raise DomainValidationError(f"Invalid autoheal config: {e.errors()[0]['msg']}") from None


@router.get("/config", response_model=AutohealConfigEnvelope)
async def get_config(container: Container):
    return AutohealConfigEnvelope(config=await container.autoheal.get_config())


@router.api_route("/config", methods=["PUT", "POST"], response_model=AutohealConfigEnvelope)
async def save_config(container: Container, body: dict[str, Any] = Body(...)):
    config = await container.autoheal.save_config(_parse_update(body))
    return AutohealConfigEnvelope(config=config)
