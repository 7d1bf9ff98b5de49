"""DB-backed deployment source. Read-only queries against the deployment platform's PostgreSQL."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from infra_dashboard.application.exceptions import BackendUnavailableError
from infra_dashboard.application.ports import ApplicationRow
from infra_dashboard.domain.models.deployment import DeploymentFilters, DeploymentStatus
from infra_dashboard.domain.schemas.deployment import DeploymentRecord, DeploymentStats
from infra_dashboard.domain.schemas.snapshot import ServiceStatus

logger = logging.getLogger(__name__)

_COLUMNS = """
    deployment_uuid AS uuid,
    application_name,
    application_id AS application_uuid,
    status,
    commit,
    commit_message,
    created_at,
    updated_at,
    finished_at
"""
_TABLE = "application_deployment_queues"
_NOT_ACTIVE = "status NOT IN ('queued', 'in_progress')"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Platform timestamps are stored as UTC without zone."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_record(row: Any, with_logs: bool = False) -> Optional[DeploymentRecord]:
    """None for a status this dashboard does not model; the row is logged and skipped."""
    m = row._mapping
    try:
        status = DeploymentStatus(m["status"])
    except ValueError:
        logger.warning("deployment_status_unknown", extra={"deployment": m["uuid"], "status": m["status"]})
        return None
    return DeploymentRecord(
        uuid=m["uuid"],
        application_name=m["application_name"] or "",
        application_uuid=str(m["application_uuid"] or ""),
        status=status,
        commit=m["commit"],
        commit_message=m["commit_message"],
        created_at=_aware(m["created_at"]),
        updated_at=_aware(m["updated_at"]),
        finished_at=_aware(m["finished_at"]),
        logs=m["logs"] if with_logs else None,
    )


def _to_records(rows: list[Any]) -> list[DeploymentRecord]:
    return [r for r in map(_to_record, rows) if r is not None]


def _history_clauses(
    filters: DeploymentFilters,
    before: Optional[datetime] = None,
) -> tuple[str, dict[str, Any]]:
    """WHERE clause over terminal records; every value is bound, never interpolated."""
    clauses = [_NOT_ACTIVE]
    params: dict[str, Any] = {}
    if before is not None:
        clauses.append("created_at < :before")
        params["before"] = _naive_utc(before)
    if filters.statuses:
        clauses.append("status = ANY(:statuses)")
        params["statuses"] = sorted(s.value for s in filters.statuses)
    if filters.application_name:
        clauses.append("application_name = :application_name")
        params["application_name"] = filters.application_name
    if filters.start_date:
        clauses.append("created_at >= :start_date")
        params["start_date"] = _naive_utc(filters.start_date)
    if filters.end_date:
        clauses.append("created_at <= :end_date")
        params["end_date"] = _naive_utc(filters.end_date)
    return " AND ".join(clauses), params


class DbDeploymentRepository:
    """Implements DeploymentSource protocol over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]]) -> None:
        self._session_factory = session_factory

    async def _fetch(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[Any]:
        if self._session_factory is None:
            raise BackendUnavailableError("COOLIFY_DB_URL is not configured")
        try:
            async with self._session_factory() as session:
                result = await session.execute(text(sql), params or {})
                return list(result.fetchall())
        except (SQLAlchemyError, OSError) as e:
            raise BackendUnavailableError(f"Deployment database query failed: {e}") from e

    async def ping(self) -> ServiceStatus:
        start = time.monotonic()
        try:
            await self._fetch("SELECT 1")
        except BackendUnavailableError as e:
            logger.warning("deployment_db_ping_failed", extra={"error": str(e)})
            return ServiceStatus.failed(e.message)
        latency_ms = int((time.monotonic() - start) * 1000)
        return ServiceStatus(ok=True, message="Connected to deployment database", latency_ms=latency_ms)

    async def list_active(self, limit: int) -> list[DeploymentRecord]:
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {_TABLE} "
            "WHERE status IN ('queued', 'in_progress') "
            "ORDER BY created_at DESC LIMIT :limit",
            {"limit": limit},
        )
        return _to_records(rows)

    async def list_recent(self, since: datetime, limit: int) -> list[DeploymentRecord]:
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {_TABLE} "
            f"WHERE updated_at > :since AND {_NOT_ACTIVE} "
            "ORDER BY updated_at DESC LIMIT :limit",
            {"since": _naive_utc(since), "limit": limit},
        )
        return _to_records(rows)

    async def list_page(
        self,
        before: Optional[datetime],
        limit: int,
        filters: DeploymentFilters,
    ) -> list[DeploymentRecord]:
        where, params = _history_clauses(filters, before)
        params["limit"] = limit
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM {_TABLE} WHERE {where} "
            "ORDER BY created_at DESC LIMIT :limit",
            params,
        )
        return _to_records(rows)

    async def count(self, filters: DeploymentFilters) -> int:
        where, params = _history_clauses(filters)
        rows = await self._fetch(f"SELECT COUNT(*) AS total FROM {_TABLE} WHERE {where}", params)
        return int(rows[0]._mapping["total"]) if rows else 0

    async def daily_stats(self, window_start: datetime, day_start: datetime) -> DeploymentStats:
        rows = await self._fetch(
            "SELECT "
            "COUNT(*) FILTER (WHERE status = 'queued') AS queued, "
            "COUNT(*) FILTER (WHERE status = 'in_progress') AS in_progress, "
            "COUNT(*) FILTER (WHERE status = 'finished' AND finished_at >= :day_start) AS finished_today, "
            "COUNT(*) FILTER (WHERE status = 'failed' AND updated_at >= :day_start) AS failed_today "
            f"FROM {_TABLE} "
            "WHERE updated_at > :window_start OR status IN ('queued', 'in_progress')",
            {"window_start": _naive_utc(window_start), "day_start": _naive_utc(day_start)},
        )
        if not rows:
            return DeploymentStats()
        m = rows[0]._mapping
        return DeploymentStats(
            queued=m["queued"] or 0,
            in_progress=m["in_progress"] or 0,
            finished_today=m["finished_today"] or 0,
            failed_today=m["failed_today"] or 0,
        )

    async def get_by_uuid(self, uuid: str) -> Optional[DeploymentRecord]:
        rows = await self._fetch(
            f"SELECT {_COLUMNS}, logs FROM {_TABLE} WHERE deployment_uuid = :uuid",
            {"uuid": uuid},
        )
        return _to_record(rows[0], with_logs=True) if rows else None

    async def list_applications_with_fqdn(self) -> list[ApplicationRow]:
        rows = await self._fetch(
            "SELECT uuid, name, fqdn FROM applications "
            "WHERE fqdn IS NOT NULL AND fqdn != '' ORDER BY name"
        )
        return [
            ApplicationRow(uuid=str(r._mapping["uuid"]), name=r._mapping["name"], fqdn=r._mapping["fqdn"])
            for r in rows
        ]
