# scripts/queue_stats.py

import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from infra_dashboard.application.queue_health import (
    LivenessLedger,
    QueueHealthAggregator,
    RateLedger,
    WorkerHeartbeatRegistry,
)
from infra_dashboard.config.settings import get_settings
from infra_dashboard.infrastructure.cache.redis_client import RedisClient
from infra_dashboard.infrastructure.queue.bullmq_store import BullMQStore


async def main():
    r = RedisClient(get_settings().redis_url)
    print("Ping:", (await r.ping()).message)

    store = BullMQStore(r)
    queues = QueueHealthAggregator(store, LivenessLedger(r), RateLedger(r), WorkerHeartbeatRegistry(r))
    try:
        for stats in await queues.all_stats():
            print(
                f"{stats.name}: waiting={stats.waiting} active={stats.active} failed={stats.failed} "
                f"worker_active={stats.worker_active} oldest_waiting={stats.oldest_waiting_age_sec}"
            )
    finally:
        await r.aclose()

asyncio.run(main())
