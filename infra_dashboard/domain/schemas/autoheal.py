"""Pydantic schemas for the autoheal policy read by external remediation automation."""

from datetime import datetime
from typing import Optional

from infra_dashboard.domain.schemas.base import WireModel

MIN_FAILURE_THRESHOLD = 1
MIN_FAILURE_WINDOW_SEC = 30


class AutohealConfig(WireModel):
    enabled: bool = True
    failure_threshold: int = 2
    failure_window_sec: int = 120
    skip_when_deploying: bool = True
    cooldown_sec: int = 600
    redeploy_delay_sec: int = 90
    redeploy_after_restart: bool = True
    enabled_sites: tuple[str, ...] = ()
    updated_at: Optional[datetime] = None


class AutohealConfigUpdate(WireModel):
    """Wholesale replacement. Omitted fields take their defaults; numbers are clamped to bounds."""

    enabled: Optional[bool] = None
    failure_threshold: Optional[int] = None
    failure_window_sec: Optional[int] = None
    skip_when_deploying: Optional[bool] = None
    cooldown_sec: Optional[int] = None
    redeploy_delay_sec: Optional[int] = None
    redeploy_after_restart: Optional[bool] = None
    enabled_sites: Optional[list[str]] = None
    updated_at: Optional[datetime] = None


class AutohealConfigEnvelope(WireModel):
    config: AutohealConfig
