"""Deployment tracker: live view (active/recent/stats), cursor-paged history and single-record detail."""

import asyncio
import base64
import binascii
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from infra_dashboard.application.ports import DeploymentSource
from infra_dashboard.domain.exceptions import DeploymentNotFoundError, InvalidCursorError
from infra_dashboard.domain.models.deployment import (
    DeploymentFilters,
    derive_duration_ms,
    detect_build_stage,
    log_preview,
)
from infra_dashboard.domain.schemas.deployment import (
    DeploymentDetail,
    DeploymentPage,
    DeploymentRecord,
    LiveDeployments,
)

ACTIVE_LIMIT = 10
RECENT_LIMIT = 20
RECENT_WINDOW = timedelta(minutes=30)
STATS_WINDOW = timedelta(hours=24)
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode_cursor(created_at: datetime) -> str:
    """Opaque cursor: url-safe base64 of the ISO timestamp, unpadded."""
    raw = created_at.isoformat().encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> datetime:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        value = datetime.fromisoformat(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidCursorError("Invalid pagination cursor") from None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def clamp_page_size(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(limit, MAX_PAGE_SIZE))


class DeploymentTracker:
    """
    Classifies deployment records by recency. `duration_ms` is always derived at read time
    from the injected clock, never taken from storage.
    """

    def __init__(
        self,
        source: DeploymentSource,
        clock: Callable[[], datetime] = utcnow,
        active_limit: int = ACTIVE_LIMIT,
        recent_limit: int = RECENT_LIMIT,
        recent_window: timedelta = RECENT_WINDOW,
    ) -> None:
        self._source = source
        self._clock = clock
        self._active_limit = active_limit
        self._recent_limit = recent_limit
        self._recent_window = recent_window

    def _with_duration(self, record: DeploymentRecord, now: datetime) -> DeploymentRecord:
        duration = derive_duration_ms(record.created_at, record.finished_at, now)
        return record.model_copy(update={"duration_ms": duration})

    def _finalize(self, records: Iterable[DeploymentRecord], now: datetime) -> tuple[DeploymentRecord, ...]:
        return tuple(self._with_duration(r, now) for r in records)

    async def live_view(self) -> LiveDeployments:
        now = self._clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        active, recent, stats = await asyncio.gather(
            self._source.list_active(self._active_limit),
            self._source.list_recent(now - self._recent_window, self._recent_limit),
            self._source.daily_stats(now - STATS_WINDOW, day_start),
        )
        active = sorted((r for r in active if r.status.is_active), key=lambda r: r.created_at, reverse=True)
        recent = sorted(
            (r for r in recent if r.status.is_terminal and r.updated_at > now - self._recent_window),
            key=lambda r: r.updated_at,
            reverse=True,
        )
        return LiveDeployments(
            active=self._finalize(active[: self._active_limit], now),
            recent=self._finalize(recent[: self._recent_limit], now),
            stats=stats,
        )

    async def page(
        self,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        filters: Optional[DeploymentFilters] = None,
    ) -> DeploymentPage:
        """History strictly older than the cursor. `total_count` covers the whole filtered set."""
        filters = filters or DeploymentFilters()
        before = decode_cursor(cursor) if cursor else None
        size = clamp_page_size(limit)
        rows, total = await asyncio.gather(
            self._source.list_page(before, size + 1, filters),
            self._source.count(filters),
        )
        records = rows[:size]
        next_cursor = encode_cursor(records[-1].created_at) if len(rows) > size and records else None
        return DeploymentPage(
            records=self._finalize(records, self._clock()),
            next_cursor=next_cursor,
            total_count=total,
        )

    async def detail(self, uuid: str) -> DeploymentDetail:
        record = await self._source.get_by_uuid(uuid)
        if record is None:
            raise DeploymentNotFoundError(f"Deployment not found: {uuid}")
        return DeploymentDetail(
            deployment=self._with_duration(record, self._clock()),
            build_stage=detect_build_stage(record.logs, record.status),
            log_preview=tuple(log_preview(record.logs)),
        )
