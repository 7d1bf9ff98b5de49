"""QueueHealthAggregator: debounce, rates, oldest-waiting age, heartbeat override, per-queue isolation."""

import json

import pytest

from infra_dashboard.application.queue_health import (
    HEARTBEAT_KEY_PREFIX,
    LIVENESS_KEY_PREFIX,
    LIVENESS_TTL_SEC,
    LivenessLedger,
    QueueHealthAggregator,
    RateLedger,
    WorkerHeartbeatRegistry,
)
from infra_dashboard.observability.metrics import MetricsCollector
from tests.fakes import FakeKV, FakeQueueStore, gauges


class Clock:
    def __init__(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def _aggregator(store: FakeQueueStore, kv: FakeKV, clock: Clock, metrics=None) -> QueueHealthAggregator:
    return QueueHealthAggregator(
        store,
        LivenessLedger(kv),
        RateLedger(kv),
        WorkerHeartbeatRegistry(kv, clock=clock),
        clock=clock,
        metrics=metrics,
    )


@pytest.mark.asyncio
async def test_worker_down_only_after_five_consecutive_misses():
    kv = FakeKV()
    store = FakeQueueStore({"emails": gauges(stalled_check_ttl=-2)})
    aggregator = _aggregator(store, kv, Clock(1_700_000_000_000))

    for _ in range(4):
        assert (await aggregator.stats("emails")).worker_active is True
    assert (await aggregator.stats("emails")).worker_active is False
    assert kv.data[f"{LIVENESS_KEY_PREFIX}emails"] == "5"
    assert kv.ttls[f"{LIVENESS_KEY_PREFIX}emails"] == LIVENESS_TTL_SEC


@pytest.mark.asyncio
async def test_single_presence_resets_debounce():
    kv = FakeKV()
    store = FakeQueueStore({"emails": gauges(stalled_check_ttl=-2)})
    aggregator = _aggregator(store, kv, Clock(1_700_000_000_000))
    for _ in range(4):
        await aggregator.stats("emails")

    store.queues["emails"] = gauges(stalled_check_ttl=20)
    stats = await aggregator.stats("emails")
    assert stats.worker_active is True
    assert stats.worker_last_seen_sec == 20
    assert f"{LIVENESS_KEY_PREFIX}emails" not in kv.data

    store.queues["emails"] = gauges(stalled_check_ttl=-2)
    assert (await aggregator.stats("emails")).worker_active is True


@pytest.mark.asyncio
async def test_rates_derived_across_ticks_and_never_negative():
    kv = FakeKV()
    clock = Clock(1_700_000_000_000)
    store = FakeQueueStore({"emails": gauges(completed=100, failed=10)})
    aggregator = _aggregator(store, kv, clock)

    first = await aggregator.stats("emails")
    assert first.jobs_per_min is None

    clock.now_ms += 60_000
    store.queues["emails"] = gauges(completed=160, failed=12)
    second = await aggregator.stats("emails")
    assert second.jobs_per_min == 60.0
    assert second.failures_per_min == 2.0

    clock.now_ms += 60_000
    store.queues["emails"] = gauges(completed=0, failed=0)
    reset = await aggregator.stats("emails")
    assert reset.jobs_per_min == 0
    assert reset.failures_per_min == 0


@pytest.mark.asyncio
async def test_oldest_waiting_age_from_tail_job():
    kv = FakeKV()
    clock = Clock(1_700_000_100_000)
    store = FakeQueueStore({"emails": gauges(waiting=3, oldest_waiting_job_id="42")})
    store.timestamps[("emails", "42")] = 1_700_000_000_000
    stats = await _aggregator(store, kv, clock).stats("emails")
    assert stats.oldest_waiting_age_sec == 100


@pytest.mark.asyncio
async def test_oldest_waiting_age_unknown_without_timestamp():
    store = FakeQueueStore({"emails": gauges(waiting=1, oldest_waiting_job_id="gone")})
    stats = await _aggregator(store, FakeKV(), Clock(1)).stats("emails")
    assert stats.oldest_waiting_age_sec is None


@pytest.mark.asyncio
async def test_heartbeats_override_liveness_only_for_reporting_queues():
    kv = FakeKV()
    now = 1_700_000_000_000
    clock = Clock(now)
    store = FakeQueueStore(
        {
            "A": gauges(waiting=5, stalled_check_ttl=-2),
            "B": gauges(waiting=0, stalled_check_ttl=30),
            "C": gauges(waiting=2, stalled_check_ttl=-2),
        }
    )
    kv.data[f"{HEARTBEAT_KEY_PREFIX}A:worker-1"] = json.dumps({"ts": now - 10_000})

    stats = {s.name: s for s in await _aggregator(store, kv, clock).all_stats()}

    assert [stats[n].waiting for n in ("A", "B", "C")] == [5, 0, 2]
    assert stats["A"].worker_count == 1
    assert stats["A"].worker_heartbeat_max_age_sec == 10
    assert stats["A"].worker_active is True
    assert stats["B"].worker_count is None
    assert stats["B"].worker_active is True
    assert stats["C"].worker_count is None
    assert stats["C"].worker_heartbeat_max_age_sec is None


@pytest.mark.asyncio
async def test_failing_queue_omitted_others_reported():
    metrics = MetricsCollector()
    store = FakeQueueStore({"A": gauges(), "B": gauges(), "C": gauges()})
    store.broken.add("B")

    result = await _aggregator(store, FakeKV(), Clock(1), metrics=metrics).all_stats()

    assert [s.name for s in result] == ["A", "C"]
    assert metrics.counter("queue_stats_failed", queue="B") == 1


@pytest.mark.asyncio
async def test_heartbeat_key_without_queue_segment_ignored():
    kv = FakeKV()
    kv.data[HEARTBEAT_KEY_PREFIX] = "123"
    kv.data[f"{HEARTBEAT_KEY_PREFIX}A:w1"] = "not a timestamp"
    stats = await WorkerHeartbeatRegistry(kv, clock=Clock(1)).collect()
    assert list(stats) == ["A"]
    assert stats["A"].count == 1
    assert stats["A"].max_age_sec is None


@pytest.mark.asyncio
async def test_unrecorded_reads_leave_debounce_and_rates_alone():
    kv = FakeKV()
    now = 1_700_000_000_000
    clock = Clock(now)
    store = FakeQueueStore({"emails": gauges(completed=10, stalled_check_ttl=-2)})
    kv.data[f"{HEARTBEAT_KEY_PREFIX}emails:worker-1"] = json.dumps({"ts": now - 5_000})
    aggregator = _aggregator(store, kv, clock)

    [cycle] = await aggregator.all_stats()
    assert cycle.worker_active is True
    assert cycle.worker_count == 1
    ledger = dict(kv.data)

    for _ in range(6):
        clock.now_ms += 1_000
        view = await aggregator.stats("emails", record=False)
        assert view.worker_active is True
        assert view.worker_count == 1
        assert view.worker_heartbeat_max_age_sec is not None
    assert kv.data == ledger
    assert kv.data[f"{LIVENESS_KEY_PREFIX}emails"] == "1"


@pytest.mark.asyncio
async def test_unrecorded_read_reports_rate_against_last_cycle():
    kv = FakeKV()
    clock = Clock(1_700_000_000_000)
    store = FakeQueueStore({"emails": gauges(completed=100)})
    aggregator = _aggregator(store, kv, clock)
    await aggregator.all_stats()

    clock.now_ms += 30_000
    store.queues["emails"] = gauges(completed=130)
    for _ in range(3):
        assert (await aggregator.stats("emails", record=False)).jobs_per_min == 60.0

    clock.now_ms += 30_000
    store.queues["emails"] = gauges(completed=160)
    [cycle] = await aggregator.all_stats()
    assert cycle.jobs_per_min == 60.0


@pytest.mark.asyncio
async def test_unrecorded_read_keeps_absent_worker_count():
    kv = FakeKV()
    store = FakeQueueStore({"emails": gauges(stalled_check_ttl=-2)})
    aggregator = _aggregator(store, kv, Clock(1))
    for _ in range(5):
        await aggregator.all_stats()
    assert (await aggregator.stats("emails", record=False)).worker_active is False
    assert kv.data[f"{LIVENESS_KEY_PREFIX}emails"] == "5"


@pytest.mark.asyncio
async def test_single_queue_stats_include_heartbeats():
    kv = FakeKV()
    now = 1_700_000_000_000
    kv.data[f"{HEARTBEAT_KEY_PREFIX}emails:worker-1"] = json.dumps({"ts": now - 10_000})
    kv.data[f"{HEARTBEAT_KEY_PREFIX}emails:worker-2"] = json.dumps({"ts": now - 30_000})
    store = FakeQueueStore({"emails": gauges(stalled_check_ttl=-2)})
    stats = await _aggregator(store, kv, Clock(now)).stats("emails")
    assert stats.worker_count == 2
    assert stats.worker_heartbeat_max_age_sec == 30
    assert stats.worker_active is True
