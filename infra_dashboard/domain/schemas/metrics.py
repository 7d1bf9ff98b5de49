"""Pydantic schemas for database, connection-pooler and host resource metrics."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from infra_dashboard.domain.schemas.base import WireModel

DEFAULT_MAX_CONNECTIONS = 100


class ConnectionCounts(WireModel):
    active: float = 0
    idle: float = 0
    max: float = DEFAULT_MAX_CONNECTIONS


class DatabaseStats(WireModel):
    name: str
    size_bytes: float = 0
    connections: float = 0


class PostgresHealth(WireModel):
    up: bool
    connections: ConnectionCounts = Field(default_factory=ConnectionCounts)
    databases: tuple[DatabaseStats, ...] = ()

    @classmethod
    def down(cls) -> "PostgresHealth":
        return cls(up=False)


class PoolStats(WireModel):
    database: str
    user: str
    active: float = 0
    waiting: float = 0
    server_active: float = 0
    server_idle: float = 0


class PoolerHealth(WireModel):
    up: bool
    pools: tuple[PoolStats, ...] = ()
    total_active: float = 0
    total_waiting: float = 0
    total_server_active: float = 0
    total_server_idle: float = 0


class DatabaseHealth(WireModel):
    postgres: PostgresHealth
    pooler: Optional[PoolerHealth] = None

    @classmethod
    def unavailable(cls) -> "DatabaseHealth":
        return cls(postgres=PostgresHealth.down(), pooler=None)


class ConnectionSample(WireModel):
    time: datetime
    connections: float


class CpuStats(WireModel):
    usage_percent: Optional[float] = None
    cores: Optional[int] = None


class CapacityStats(WireModel):
    total_bytes: Optional[float] = None
    available_bytes: Optional[float] = None
    used_percent: Optional[float] = None


class DiskStats(CapacityStats):
    mount_point: str = "/"


class LoadStats(WireModel):
    load1: Optional[float] = None
    load5: Optional[float] = None
    load15: Optional[float] = None


class HostMetrics(WireModel):
    name: str
    hostname: str
    cpu: CpuStats = Field(default_factory=CpuStats)
    memory: CapacityStats = Field(default_factory=CapacityStats)
    disk: DiskStats = Field(default_factory=DiskStats)
    load: LoadStats = Field(default_factory=LoadStats)
    uptime_sec: Optional[float] = None


class PostgresHealthView(WireModel):
    """Response of GET /postgres/health."""

    status: str
    message: str
    database_health: DatabaseHealth
    history: Optional[tuple[ConnectionSample, ...]] = None
