"""Pydantic schemas for site targets and reachability probes."""

from datetime import datetime
from enum import Enum
from typing import Optional

from infra_dashboard.domain.schemas.base import WireModel


class SiteStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"
    UNKNOWN = "unknown"


class SiteTarget(WireModel):
    id: str
    name: str
    fqdn: str


class SiteProbe(WireModel):
    """Ephemeral result of one reachability check. Recomputed every probe cycle."""

    id: Optional[str] = None
    name: str
    fqdn: str
    status: SiteStatus = SiteStatus.UNKNOWN
    http_status: Optional[int] = None
    response_time_ms: Optional[int] = None
    ssl_valid: Optional[bool] = None
    last_checked: datetime
    error: Optional[str] = None


class SiteHealthSummary(WireModel):
    all_healthy: bool
    down_count: int
    sites: tuple[SiteProbe, ...] = ()

    @classmethod
    def unavailable(cls) -> "SiteHealthSummary":
        # Unknown is not healthy.
        return cls(all_healthy=False, down_count=0, sites=())


class SiteHealthReport(WireModel):
    sites: tuple[SiteProbe, ...]
    total: int
    healthy: int
    degraded: int
    down: int
