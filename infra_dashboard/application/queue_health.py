"""
Queue health aggregation: job gauges plus derived worker liveness, heartbeat freshness,
throughput rates and oldest-waiting age.

Operational state (debounce counters, rate samples) lives under its own key namespace,
apart from queue data and the heartbeat registry written by the workers themselves.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from infra_dashboard.application.ports import KeyValueStore, QueueStore
from infra_dashboard.domain.models.queue import (
    HeartbeatStats,
    RateSample,
    age_seconds,
    compute_rates,
    is_worker_active,
    parse_heartbeat_timestamp,
)
from infra_dashboard.domain.schemas.queue import QueueStats

logger = logging.getLogger(__name__)

OPS_NAMESPACE = "infra:ops:"
LIVENESS_KEY_PREFIX = OPS_NAMESPACE + "worker-fails:"
LIVENESS_TTL_SEC = 300
RATE_KEY_PREFIX = OPS_NAMESPACE + "queue-rate:"
RATE_TTL_SEC = 300
HEARTBEAT_KEY_PREFIX = "infra:worker:heartbeat:"


def now_ms() -> int:
    return int(time.time() * 1000)


class LivenessLedger:
    """
    Persisted consecutive-miss counter per queue. The counter expires on its own so it
    resets if checks stop running.
    """

    def __init__(self, store: KeyValueStore, ttl_sec: int = LIVENESS_TTL_SEC) -> None:
        self._store = store
        self._ttl = ttl_sec

    def _key(self, queue: str) -> str:
        return f"{LIVENESS_KEY_PREFIX}{queue}"

    async def failures(self, queue: str) -> int:
        raw = await self._store.get(self._key(queue))
        try:
            return max(0, int(raw)) if raw else 0
        except ValueError:
            return 0

    async def record(self, queue: str, responding: bool) -> int:
        """Reset on presence, increment on absence. Returns the new consecutive-miss count."""
        count = 0 if responding else await self.failures(queue) + 1
        if count:
            await self._store.set(self._key(queue), str(count), ttl=self._ttl)
        else:
            await self._store.delete(self._key(queue))
        return count


class RateLedger:
    """Last counter sample per queue, kept just long enough to span a few ticks."""

    def __init__(self, store: KeyValueStore, ttl_sec: int = RATE_TTL_SEC) -> None:
        self._store = store
        self._ttl = ttl_sec

    def _key(self, queue: str) -> str:
        return f"{RATE_KEY_PREFIX}{queue}"

    async def read(self, queue: str) -> Optional[RateSample]:
        raw = await self._store.get(self._key(queue))
        return RateSample.from_json(raw) if raw else None

    async def write(self, queue: str, sample: RateSample) -> None:
        await self._store.set(self._key(queue), sample.to_json(), ttl=self._ttl)


class WorkerHeartbeatRegistry:
    """Reads per-worker-instance heartbeats keyed <prefix><queue>:<instance>."""

    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = HEARTBEAT_KEY_PREFIX,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._clock = clock

    async def collect(self) -> dict[str, HeartbeatStats]:
        keys = await self._store.scan_keys(f"{self._prefix}*")
        if not keys:
            return {}
        values = await self._store.mget(keys)
        current = self._clock()
        stats: dict[str, HeartbeatStats] = {}
        for key, value in zip(keys, values):
            queue = key[len(self._prefix):].split(":", 1)[0]
            if not queue:
                continue
            stats.setdefault(queue, HeartbeatStats()).observe(parse_heartbeat_timestamp(value), current)
        return stats


class QueueHealthAggregator:
    """Computes QueueStats per queue. Each queue is isolated: one failing read never hides the others."""

    def __init__(
        self,
        queue_store: QueueStore,
        liveness: LivenessLedger,
        rates: RateLedger,
        heartbeats: WorkerHeartbeatRegistry,
        clock: Callable[[], int] = now_ms,
        metrics=None,
    ) -> None:
        self._queues = queue_store
        self._liveness = liveness
        self._rates = rates
        self._heartbeats = heartbeats
        self._clock = clock
        self._metrics = metrics

    async def _compute(self, name: str, record: bool) -> QueueStats:
        gauges = await self._queues.read_gauges(name)
        current = self._clock()

        responding = gauges.stalled_check_ttl > 0
        if record:
            failures = await self._liveness.record(name, responding)
        else:
            failures = 0 if responding else await self._liveness.failures(name)

        oldest_age: Optional[int] = None
        if gauges.oldest_waiting_job_id:
            enqueued_at = await self._queues.job_timestamp(name, gauges.oldest_waiting_job_id)
            if enqueued_at is not None:
                oldest_age = age_seconds(enqueued_at, current)

        sample = RateSample(timestamp_ms=current, completed=gauges.completed, failed=gauges.failed)
        rates = compute_rates(await self._rates.read(name), sample)
        if record:
            await self._rates.write(name, sample)

        return QueueStats(
            name=name,
            waiting=gauges.waiting,
            active=gauges.active,
            completed=gauges.completed,
            failed=gauges.failed,
            delayed=gauges.delayed,
            paused=gauges.paused,
            is_paused=gauges.is_paused,
            worker_active=is_worker_active(failures),
            worker_last_seen_sec=gauges.stalled_check_ttl if responding else None,
            oldest_waiting_age_sec=oldest_age,
            jobs_per_min=rates.jobs_per_min,
            failures_per_min=rates.failures_per_min,
        )

    @staticmethod
    def _with_heartbeat(stats: QueueStats, heartbeat: Optional[HeartbeatStats]) -> QueueStats:
        if heartbeat is None:
            return stats
        return stats.model_copy(
            update={
                "worker_active": heartbeat.count > 0,
                "worker_count": heartbeat.count,
                "worker_heartbeat_max_age_sec": heartbeat.max_age_sec,
            }
        )

    async def _collect_heartbeats(self) -> dict[str, HeartbeatStats]:
        try:
            return await self._heartbeats.collect()
        except Exception as e:
            logger.warning("heartbeat_collect_failed", extra={"error": str(e)})
            return {}

    async def stats(self, name: str, record: bool = True) -> QueueStats:
        """
        Stats for one queue. With `record` the read counts as a liveness check and a rate
        sample; ad hoc reads pass record=False so they never move the per-cycle state.
        """
        result, heartbeats = await asyncio.gather(self._compute(name, record), self._collect_heartbeats())
        return self._with_heartbeat(result, heartbeats.get(name))

    async def all_stats(self, record: bool = True) -> list[QueueStats]:
        names = await self._queues.discover_queues()
        results, heartbeats = await asyncio.gather(
            asyncio.gather(*(self._compute(n, record) for n in names), return_exceptions=True),
            self._collect_heartbeats(),
        )
        out: list[QueueStats] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("queue_stats_failed", extra={"queue": name, "error": str(result)})
                if self._metrics is not None:
                    self._metrics.increment("queue_stats_failed", queue=name)
                continue
            out.append(self._with_heartbeat(result, heartbeats.get(name)))
        return out
