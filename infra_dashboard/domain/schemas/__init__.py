"""Wire schemas (pydantic). Frozen, camelCase on the wire."""

from infra_dashboard.domain.schemas.snapshot import ServiceHealth, ServiceStatus, Snapshot

__all__ = ["ServiceHealth", "ServiceStatus", "Snapshot"]
