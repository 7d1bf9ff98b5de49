"""Worker-process roster published by an external supervisor. Read-only here; staleness derived on read."""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from infra_dashboard.application.ports import KeyValueStore
from infra_dashboard.domain.schemas.workers import WorkerSupervisorStatus

logger = logging.getLogger(__name__)

WORKER_STATUS_KEY = "infra:workers:status"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerSupervisorReader:
    def __init__(
        self,
        store: KeyValueStore,
        max_age_sec: int = 180,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._max_age = max_age_sec
        self._clock = clock

    async def read(self) -> Optional[WorkerSupervisorStatus]:
        """None when no roster was published or it cannot be parsed."""
        raw = await self._store.get(WORKER_STATUS_KEY)
        if not raw:
            return None
        try:
            status = WorkerSupervisorStatus.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("worker_status_unparseable", extra={"error": str(e)})
            return None
        if status.updated_at is None:
            return status
        updated_at = status.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        age = max(0, int((self._clock() - updated_at).total_seconds()))
        return status.model_copy(update={"age_sec": age, "stale": age > self._max_age})
