"""Database, connection-pooler and host resource views built from metric queries."""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from infra_dashboard.application.exceptions import ApplicationError
from infra_dashboard.application.ports import MetricSample, MetricsSource
from infra_dashboard.domain.schemas.metrics import (
    DEFAULT_MAX_CONNECTIONS,
    CapacityStats,
    ConnectionCounts,
    ConnectionSample,
    CpuStats,
    DatabaseHealth,
    DatabaseStats,
    DiskStats,
    HostMetrics,
    LoadStats,
    PoolerHealth,
    PoolStats,
    PostgresHealth,
)

logger = logging.getLogger(__name__)

_TEMPLATE_DATABASES = frozenset({"template0", "template1"})


def _used_percent(total: Optional[float], available: Optional[float]) -> Optional[float]:
    if total is None or available is None or total <= 0:
        return None
    return round((1 - available / total) * 100, 1)


def _pool_key(sample: MetricSample) -> tuple[str, str]:
    return sample.labels.get("database", "unknown"), sample.labels.get("user", "unknown")


class DatabaseHealthReader:
    """Postgres and pooler exporter metrics. Each half degrades independently to its fallback."""

    def __init__(self, metrics: MetricsSource) -> None:
        self._metrics = metrics

    async def _connection_counts(self) -> tuple[float, float]:
        # Apps connect through the pooler; its counts are preferred when it reports any.
        try:
            active, idle = await asyncio.gather(
                self._metrics.query_scalar("sum(pgbouncer_pools_client_active_connections)"),
                self._metrics.query_scalar("sum(pgbouncer_pools_server_idle_connections)"),
            )
            if (active or 0) > 0 or (idle or 0) > 0:
                return active or 0, idle or 0
        except ApplicationError as e:
            logger.info("pooler_counts_unavailable", extra={"error": e.message})
        active, idle = await asyncio.gather(
            self._metrics.query_scalar('pg_stat_activity_count{state="active"}'),
            self._metrics.query_scalar('pg_stat_activity_count{state="idle"}'),
        )
        return active or 0, idle or 0

    async def postgres(self) -> PostgresHealth:
        up, (active, idle), max_conns, sizes, backends = await asyncio.gather(
            self._metrics.query_scalar("pg_up"),
            self._connection_counts(),
            self._metrics.query_scalar("pg_settings_max_connections"),
            self._metrics.query_vector("pg_database_size_bytes"),
            self._metrics.query_vector("pg_stat_database_numbackends"),
        )
        connections_by_db = {s.labels.get("datname"): s.value for s in backends}
        databases: dict[str, DatabaseStats] = {}
        for sample in sizes:
            name = sample.labels.get("datname")
            if not name or name in _TEMPLATE_DATABASES or name in databases:
                continue
            databases[name] = DatabaseStats(
                name=name,
                size_bytes=sample.value,
                connections=connections_by_db.get(name, 0),
            )
        return PostgresHealth(
            up=up == 1,
            connections=ConnectionCounts(
                active=active,
                idle=idle,
                max=max_conns if max_conns else DEFAULT_MAX_CONNECTIONS,
            ),
            databases=tuple(databases.values()),
        )

    async def pooler(self) -> Optional[PoolerHealth]:
        """None when no pooler exporter reports at all."""
        up, active, waiting, server_active, server_idle = await asyncio.gather(
            self._metrics.query_scalar("pgbouncer_up"),
            self._metrics.query_vector("pgbouncer_pools_client_active_connections"),
            self._metrics.query_vector("pgbouncer_pools_client_waiting_connections"),
            self._metrics.query_vector("pgbouncer_pools_server_active_connections"),
            self._metrics.query_vector("pgbouncer_pools_server_idle_connections"),
        )
        if up is None and not active:
            return None
        waiting_by = {_pool_key(s): s.value for s in waiting}
        server_active_by = {_pool_key(s): s.value for s in server_active}
        server_idle_by = {_pool_key(s): s.value for s in server_idle}
        pools = []
        for sample in active:
            key = _pool_key(sample)
            pools.append(
                PoolStats(
                    database=key[0],
                    user=key[1],
                    active=sample.value,
                    waiting=waiting_by.get(key, 0),
                    server_active=server_active_by.get(key, 0),
                    server_idle=server_idle_by.get(key, 0),
                )
            )
        return PoolerHealth(
            up=up == 1,
            pools=tuple(pools),
            total_active=sum(p.active for p in pools),
            total_waiting=sum(p.waiting for p in pools),
            total_server_active=sum(p.server_active for p in pools),
            total_server_idle=sum(p.server_idle for p in pools),
        )

    async def read(self) -> DatabaseHealth:
        async def postgres_or_down() -> PostgresHealth:
            try:
                return await self.postgres()
            except ApplicationError as e:
                logger.warning("postgres_health_unavailable", extra={"error": e.message})
                return PostgresHealth.down()

        async def pooler_or_none() -> Optional[PoolerHealth]:
            try:
                return await self.pooler()
            except ApplicationError as e:
                logger.warning("pooler_health_unavailable", extra={"error": e.message})
                return None

        postgres, pooler = await asyncio.gather(postgres_or_down(), pooler_or_none())
        return DatabaseHealth(postgres=postgres, pooler=pooler)

    async def connection_history(self, hours: int = 1) -> list[ConnectionSample]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=hours)
        step = "1m" if hours <= 1 else "5m"
        series = await self._metrics.query_range("sum(pg_stat_activity_count)", start, end, step)
        if not series:
            return []
        return [
            ConnectionSample(time=datetime.fromtimestamp(ts, timezone.utc), connections=value)
            for ts, value in series[0].points
        ]


class HostMetricsReader:
    """node_exporter resource snapshot per configured host. Missing series stay None, never zero."""

    def __init__(self, metrics: MetricsSource, hosts: dict[str, str]) -> None:
        self._metrics = metrics
        self._hosts = hosts

    async def host(self, name: str, instance: str) -> HostMetrics:
        sel = f'instance="{instance}"'
        root_fs = f'{sel},mountpoint="/",fstype!="rootfs"'
        q = self._metrics.query_scalar
        (
            cpu_usage,
            cores,
            mem_total,
            mem_available,
            disk_total,
            disk_available,
            load1,
            load5,
            load15,
            boot_time,
        ) = await asyncio.gather(
            q(f'100 - (avg by(instance) (rate(node_cpu_seconds_total{{mode="idle",{sel}}}[5m])) * 100)'),
            q(f'count(node_cpu_seconds_total{{mode="idle",{sel}}}) by (instance)'),
            q(f"node_memory_MemTotal_bytes{{{sel}}}"),
            q(f"node_memory_MemAvailable_bytes{{{sel}}}"),
            q(f"node_filesystem_size_bytes{{{root_fs}}}"),
            q(f"node_filesystem_avail_bytes{{{root_fs}}}"),
            q(f"node_load1{{{sel}}}"),
            q(f"node_load5{{{sel}}}"),
            q(f"node_load15{{{sel}}}"),
            q(f"node_boot_time_seconds{{{sel}}}"),
        )
        return HostMetrics(
            name=name,
            hostname=instance.split(":")[0],
            cpu=CpuStats(
                usage_percent=round(cpu_usage, 1) if cpu_usage is not None else None,
                cores=int(cores) if cores is not None else None,
            ),
            memory=CapacityStats(
                total_bytes=mem_total,
                available_bytes=mem_available,
                used_percent=_used_percent(mem_total, mem_available),
            ),
            disk=DiskStats(
                total_bytes=disk_total,
                available_bytes=disk_available,
                used_percent=_used_percent(disk_total, disk_available),
            ),
            load=LoadStats(load1=load1, load5=load5, load15=load15),
            uptime_sec=time.time() - boot_time if boot_time else None,
        )

    async def read_all(self) -> list[HostMetrics]:
        """One entry per host that answered; a failing host is left out."""
        names = list(self._hosts)
        results = await asyncio.gather(
            *(self.host(n, self._hosts[n]) for n in names), return_exceptions=True
        )
        hosts = []
        for name, result in zip(names, results):
            if isinstance(result, ApplicationError):
                logger.warning("host_metrics_unavailable", extra={"host": name, "error": result.message})
                continue
            if isinstance(result, BaseException):
                raise result
            hosts.append(result)
        return hosts
