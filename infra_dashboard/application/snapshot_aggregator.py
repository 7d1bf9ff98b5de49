"""
Polling loop that assembles one Snapshot per tick from every backend and hands it to the hub.

Sources are queried concurrently, each under its own timeout. A source that fails or times out
contributes its fallback value and is named in `degraded_sources`; the snapshot itself is never
partial and a tick never publishes before all sources have settled.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from infra_dashboard.application.broadcast_hub import BroadcastHub
from infra_dashboard.domain.schemas.deployment import LiveDeployments
from infra_dashboard.domain.schemas.metrics import DatabaseHealth, HostMetrics
from infra_dashboard.domain.schemas.queue import QueueStats
from infra_dashboard.domain.schemas.site import SiteHealthSummary
from infra_dashboard.domain.schemas.snapshot import ServiceHealth, Snapshot
from infra_dashboard.domain.schemas.workers import WorkerSupervisorStatus

logger = logging.getLogger(__name__)

SourceCall = Callable[[], Awaitable[Any]]


@dataclass
class SnapshotSources:
    service_health: Callable[[], Awaitable[ServiceHealth]]
    deployments: Callable[[], Awaitable[LiveDeployments]]
    database_health: Callable[[], Awaitable[DatabaseHealth]]
    queues: Callable[[], Awaitable[list[QueueStats]]]
    host_metrics: Callable[[], Awaitable[list[HostMetrics]]]
    site_health: Callable[[], Awaitable[SiteHealthSummary]]
    worker_supervisor: Callable[[], Awaitable[Optional[WorkerSupervisorStatus]]]


class SnapshotAggregator:
    def __init__(
        self,
        sources: SnapshotSources,
        hub: BroadcastHub,
        poll_interval_sec: float = 15.0,
        backend_timeout_sec: float = 3.0,
        site_check_timeout_sec: float = 8.0,
        metrics=None,
    ) -> None:
        self._sources = sources
        self._hub = hub
        self._interval = poll_interval_sec
        self._backend_timeout = backend_timeout_sec
        self._site_timeout = site_check_timeout_sec
        self._metrics = metrics
        self._version = 0
        self._latest: Optional[Snapshot] = None
        self._tick = asyncio.Event()
        self._running = False

    @property
    def latest(self) -> Optional[Snapshot]:
        return self._latest

    @property
    def running(self) -> bool:
        return self._running

    async def _guard(
        self,
        name: str,
        call: SourceCall,
        timeout: float,
        fallback: Any,
    ) -> tuple[Any, bool]:
        """(value, degraded). Cancellation of the tick itself still propagates."""
        started = time.perf_counter()
        try:
            value = await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("backend_timeout", extra={"source": name, "timeout_sec": timeout})
            self._record_fallback(name, "timeout")
            return fallback, True
        except Exception as e:
            logger.warning("source_failed", extra={"source": name, "error": str(e)})
            self._record_fallback(name, "error")
            return fallback, True
        if self._metrics is not None:
            self._metrics.observe_latency(
                "source_latency", (time.perf_counter() - started) * 1000, source=name
            )
        return value, False

    def _record_fallback(self, name: str, reason: str) -> None:
        if self._metrics is not None:
            self._metrics.increment("source_fallbacks", source=name, reason=reason)

    async def poll(self) -> Snapshot:
        """Run one aggregation cycle and return the complete snapshot. Does not publish."""
        s = self._sources
        t = self._backend_timeout
        started = time.perf_counter()
        results = await asyncio.gather(
            self._guard("service_health", s.service_health, t, ServiceHealth.unavailable()),
            self._guard("deployments", s.deployments, t, LiveDeployments.empty()),
            self._guard("database_health", s.database_health, t, DatabaseHealth.unavailable()),
            self._guard("queues", s.queues, t, []),
            self._guard("host_metrics", s.host_metrics, t, []),
            self._guard("site_health", s.site_health, self._site_timeout, SiteHealthSummary.unavailable()),
            self._guard("worker_supervisor", s.worker_supervisor, t, None),
        )
        names = (
            "service_health",
            "deployments",
            "database_health",
            "queues",
            "host_metrics",
            "site_health",
            "worker_supervisor",
        )
        values = {name: value for name, (value, _) in zip(names, results)}
        degraded = tuple(name for name, (_, failed) in zip(names, results) if failed)

        self._version += 1
        snapshot = Snapshot(
            version=self._version,
            timestamp=datetime.now(timezone.utc),
            service_health=values["service_health"],
            deployments=values["deployments"],
            database_health=values["database_health"],
            queues=tuple(values["queues"]),
            host_metrics=tuple(values["host_metrics"]),
            site_health=values["site_health"],
            worker_supervisor=values["worker_supervisor"],
            degraded_sources=degraded,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        if self._metrics is not None:
            self._metrics.increment("poll_cycles")
            self._metrics.observe_latency("poll_cycle", elapsed_ms)
        logger.info(
            "poll_completed",
            extra={"version": snapshot.version, "degraded": list(degraded), "elapsed_ms": round(elapsed_ms, 1)},
        )
        return snapshot

    def _store(self, snapshot: Snapshot) -> None:
        self._latest = snapshot
        previous, self._tick = self._tick, asyncio.Event()
        previous.set()

    async def tick(self) -> Snapshot:
        snapshot = await self.poll()
        self._store(snapshot)
        self._hub.publish(snapshot)
        return snapshot

    async def run(self) -> None:
        """Poll forever on a fixed cadence. Ends only by cancellation."""
        loop = asyncio.get_running_loop()
        self._running = True
        logger.info("aggregator_started", extra={"interval_sec": self._interval})
        try:
            while True:
                started = loop.time()
                try:
                    await self.tick()
                except Exception as e:
                    logger.exception("poll_cycle_failed")
                    self._hub.publish_error(f"Snapshot update failed: {e}")
                await asyncio.sleep(max(0.0, self._interval - (loop.time() - started)))
        finally:
            self._running = False
            logger.info("aggregator_stopped")

    async def next_snapshot(self, timeout: Optional[float] = None) -> Snapshot:
        """Wait for the next tick to publish. Raises asyncio.TimeoutError after `timeout`."""
        event = self._tick
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return self._latest

    async def current(self, wait: bool = False) -> Snapshot:
        """
        Latest snapshot, or the next one when `wait` is set. Without a running loop the
        snapshot is polled on demand.
        """
        if not wait and self._latest is not None:
            return self._latest
        if self._running:
            return await self.next_snapshot(timeout=self._interval * 2)
        snapshot = await self.poll()
        self._store(snapshot)
        return snapshot
