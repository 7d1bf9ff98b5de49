"""BullMQ-layout job-queue store on top of the shared Redis client. Implements QueueStore protocol."""

import json
import logging
import re
from typing import Any, Callable, Optional

from bullmq import Queue

from infra_dashboard.application.exceptions import BackendUnavailableError
from infra_dashboard.application.ports import QueueGauges
from infra_dashboard.domain.schemas.queue import FailedJob, JobDetails
from infra_dashboard.domain.schemas.snapshot import ServiceStatus
from infra_dashboard.infrastructure.cache.redis_client import RedisClient, translate_redis_errors

logger = logging.getLogger(__name__)

KEY_PREFIX = "bull"
_QUEUE_KEY = re.compile(r"^bull:([^:]+):")
_DISCOVERY_SUFFIXES = ("meta", "wait", "active", "completed", "failed")
_RETRY_CLEARED_FIELDS = ("failedReason", "stacktrace", "finishedOn", "processedOn")

# Move one job from failed to the queue's target list in a single step. A paused queue
# receives it on the paused list; otherwise the marker wakes blocked workers.
_RETRY_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 0 then
  return 0
end
local target = KEYS[2]
if redis.call('HEXISTS', KEYS[4], 'paused') == 1 then
  target = KEYS[3]
end
redis.call('LPUSH', target, ARGV[1])
redis.call('HSET', KEYS[5], 'attemptsMade', 0)
redis.call('HDEL', KEYS[5], unpack(ARGV, 2))
if target == KEYS[2] then
  redis.call('ZADD', KEYS[7], 0, '0')
end
redis.call('XADD', KEYS[6], '*', 'event', 'waiting', 'jobId', ARGV[1], 'prev', 'failed')
return 1
"""

QueueFactory = Callable[[str], Queue]


def bullmq_queue_factory(redis_url: str) -> QueueFactory:
    """Queue handles for pause/resume, on their own connection to the same server."""

    def build(name: str) -> Queue:
        return Queue(name, {"connection": redis_url})

    return build


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


def _int(raw: Optional[str], default: int = 0) -> int:
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


def _optional_int(raw: Optional[str]) -> Optional[int]:
    return _int(raw) if raw else None


class BullMQStore:
    """
    Reads gauges and mutates jobs directly in the bull:<queue>:* key layout. Pausing and
    resuming go through bullmq's Queue so the library's own scripts keep queue state consistent.
    """

    def __init__(self, redis_client: RedisClient, queue_factory: Optional[QueueFactory] = None) -> None:
        self._redis = redis_client
        self._queue_factory = queue_factory
        self._queues: dict[str, Queue] = {}
        self._retry_script = None

    def _key(self, queue: str, suffix: str) -> str:
        return f"{KEY_PREFIX}:{queue}:{suffix}"

    async def ping(self) -> ServiceStatus:
        return await self._redis.ping()

    async def discover_queues(self) -> list[str]:
        """Queue names found by scanning meta and common list/set keys. Sorted."""
        queues: set[str] = set()
        for suffix in _DISCOVERY_SUFFIXES:
            for key in await self._redis.scan_keys(f"{KEY_PREFIX}:*:{suffix}"):
                match = _QUEUE_KEY.match(key)
                if match:
                    queues.add(match.group(1))
        return sorted(queues)

    @translate_redis_errors
    async def read_gauges(self, queue: str) -> QueueGauges:
        async with self._redis.client.pipeline(transaction=False) as pipe:
            pipe.llen(self._key(queue, "wait"))
            pipe.llen(self._key(queue, "active"))
            pipe.zcard(self._key(queue, "completed"))
            pipe.zcard(self._key(queue, "failed"))
            pipe.zcard(self._key(queue, "delayed"))
            pipe.llen(self._key(queue, "paused"))
            pipe.hexists(self._key(queue, "meta"), "paused")
            pipe.ttl(self._key(queue, "stalled-check"))
            # Tail of the wait list is the oldest insertion.
            pipe.lindex(self._key(queue, "wait"), -1)
            (
                waiting,
                active,
                completed,
                failed,
                delayed,
                paused,
                paused_flag,
                stalled_ttl,
                oldest_id,
            ) = await pipe.execute()
        return QueueGauges(
            waiting=waiting,
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
            paused=paused,
            is_paused=bool(paused_flag),
            stalled_check_ttl=stalled_ttl,
            oldest_waiting_job_id=oldest_id,
        )

    @translate_redis_errors
    async def job_timestamp(self, queue: str, job_id: str) -> Optional[int]:
        raw = await self._redis.client.hget(self._key(queue, job_id), "timestamp")
        timestamp = _int(raw, default=-1)
        return timestamp if timestamp > 0 else None

    @translate_redis_errors
    async def list_failed(self, queue: str, limit: int) -> list[FailedJob]:
        """Most recently failed first."""
        if limit <= 0:
            return []
        job_ids = await self._redis.client.zrevrange(self._key(queue, "failed"), 0, limit - 1)
        if not job_ids:
            return []
        async with self._redis.client.pipeline(transaction=False) as pipe:
            for job_id in job_ids:
                pipe.hgetall(self._key(queue, job_id))
            hashes = await pipe.execute()
        jobs = []
        for job_id, data in zip(job_ids, hashes):
            if not data:
                continue
            jobs.append(
                FailedJob(
                    id=job_id,
                    queue=queue,
                    name=data.get("name") or "unknown",
                    data=_loads(data.get("data"), {}),
                    failed_reason=data.get("failedReason") or "Unknown error",
                    stacktrace=tuple(_loads(data.get("stacktrace"), [])),
                    attempts_made=_int(data.get("attemptsMade")),
                    timestamp=_int(data.get("timestamp")),
                    processed_on=_optional_int(data.get("processedOn")),
                    finished_on=_optional_int(data.get("finishedOn")),
                )
            )
        return jobs

    @translate_redis_errors
    async def job_details(self, queue: str, job_id: str) -> Optional[JobDetails]:
        data = await self._redis.client.hgetall(self._key(queue, job_id))
        if not data:
            return None
        return JobDetails(
            id=job_id,
            queue=queue,
            name=data.get("name") or "unknown",
            data=_loads(data.get("data"), {}),
            opts=_loads(data.get("opts"), {}),
            progress=_loads(data.get("progress"), 0),
            delay=_int(data.get("delay")),
            timestamp=_int(data.get("timestamp")),
            attempts_made=_int(data.get("attemptsMade")),
            stacktrace=tuple(_loads(data.get("stacktrace"), [])),
            returnvalue=_loads(data.get("returnvalue"), None),
            failed_reason=data.get("failedReason"),
            processed_on=_optional_int(data.get("processedOn")),
            finished_on=_optional_int(data.get("finishedOn")),
        )

    async def _retry(self, queue: str, job_id: str) -> bool:
        if self._retry_script is None:
            self._retry_script = self._redis.client.register_script(_RETRY_SCRIPT)
        moved = await self._retry_script(
            keys=[
                self._key(queue, "failed"),
                self._key(queue, "wait"),
                self._key(queue, "paused"),
                self._key(queue, "meta"),
                self._key(queue, job_id),
                self._key(queue, "events"),
                self._key(queue, "marker"),
            ],
            args=[job_id, *_RETRY_CLEARED_FIELDS],
        )
        return bool(moved)

    @translate_redis_errors
    async def retry_job(self, queue: str, job_id: str) -> bool:
        """Move a failed job back to wait with attempts reset. False if it was not failed."""
        return await self._retry(queue, job_id)

    def _queue_delete(self, pipe, queue: str, job_id: str) -> None:
        for suffix in ("wait", "active", "paused"):
            pipe.lrem(self._key(queue, suffix), 0, job_id)
        for suffix in ("completed", "failed", "delayed"):
            pipe.zrem(self._key(queue, suffix), job_id)
        pipe.delete(self._key(queue, job_id))

    @translate_redis_errors
    async def delete_job(self, queue: str, job_id: str) -> bool:
        """Remove a job from every list/set and delete its hash. True if the hash existed."""
        async with self._redis.client.pipeline(transaction=True) as pipe:
            self._queue_delete(pipe, queue, job_id)
            results = await pipe.execute()
        return results[-1] > 0

    async def _failed_ids(self, queue: str, limit: Optional[int]) -> list[str]:
        end = limit - 1 if limit and limit > 0 else -1
        return await self._redis.client.zrevrange(self._key(queue, "failed"), 0, end)

    @translate_redis_errors
    async def retry_all_failed(self, queue: str, limit: Optional[int] = None) -> int:
        """Each job moves on its own; jobs another client took in between are not counted."""
        retried = 0
        for job_id in await self._failed_ids(queue, limit):
            if await self._retry(queue, job_id):
                retried += 1
        return retried

    @translate_redis_errors
    async def delete_all_failed(self, queue: str, limit: Optional[int] = None) -> int:
        job_ids = await self._failed_ids(queue, limit)
        if not job_ids:
            return 0
        async with self._redis.client.pipeline(transaction=True) as pipe:
            for job_id in job_ids:
                self._queue_delete(pipe, queue, job_id)
            await pipe.execute()
        return len(job_ids)

    def _queue(self, name: str) -> Queue:
        if self._queue_factory is None:
            raise BackendUnavailableError("REDIS_URL is not configured")
        queue = self._queues.get(name)
        if queue is None:
            queue = self._queues[name] = self._queue_factory(name)
        return queue

    @translate_redis_errors
    async def pause(self, queue: str) -> None:
        await self._queue(queue).pause()
        logger.info("queue_paused", extra={"queue": queue})

    @translate_redis_errors
    async def resume(self, queue: str) -> None:
        await self._queue(queue).resume()
        logger.info("queue_resumed", extra={"queue": queue})

    async def aclose(self) -> None:
        queues, self._queues = list(self._queues.values()), {}
        for queue in queues:
            await queue.close()
