"""
Process-lifetime wiring. Every backend client is constructed here once and injected into the
services that need it; nothing else in the package opens connections.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from infra_dashboard.application.actions import ActionService
from infra_dashboard.application.autoheal_store import AutohealPolicyStore
from infra_dashboard.application.broadcast_hub import BroadcastHub
from infra_dashboard.application.deployment_tracker import DeploymentTracker
from infra_dashboard.application.exceptions import BackendUnavailableError, StartupError
from infra_dashboard.application.infra_metrics import DatabaseHealthReader, HostMetricsReader
from infra_dashboard.application.ports import (
    DeploymentControl,
    DeploymentSource,
    KeyValueStore,
    MetricsSource,
    QueueStore,
)
from infra_dashboard.application.queue_health import (
    LivenessLedger,
    QueueHealthAggregator,
    RateLedger,
    WorkerHeartbeatRegistry,
)
from infra_dashboard.application.site_prober import SiteHealthProber, SiteTargetProvider
from infra_dashboard.application.snapshot_aggregator import SnapshotAggregator, SnapshotSources
from infra_dashboard.application.worker_supervisor import WorkerSupervisorReader
from infra_dashboard.config.settings import DashboardSettings
from infra_dashboard.domain.schemas.site import SiteHealthSummary
from infra_dashboard.domain.schemas.snapshot import ServiceStatus
from infra_dashboard.infrastructure.cache.redis_client import RedisClient
from infra_dashboard.infrastructure.database.deployment_repository import DbDeploymentRepository
from infra_dashboard.infrastructure.database.session import build_engine, build_session_factory
from infra_dashboard.infrastructure.http.coolify_client import CoolifyClient
from infra_dashboard.infrastructure.http.prometheus_client import PrometheusClient
from infra_dashboard.infrastructure.queue.bullmq_store import BullMQStore, bullmq_queue_factory
from infra_dashboard.observability.metrics import MetricsCollector
from infra_dashboard.scalability.circuit_breaker import CircuitBreaker
from infra_dashboard.scalability.health_monitor import HealthMonitor
from infra_dashboard.security.session import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: DashboardSettings
    metrics: MetricsCollector
    kv: KeyValueStore
    queue_store: QueueStore
    deployment_source: DeploymentSource
    deployment_control: DeploymentControl
    metrics_source: MetricsSource
    prober: SiteHealthProber
    site_targets: SiteTargetProvider
    queue_health: QueueHealthAggregator
    deployments: DeploymentTracker
    database_health: DatabaseHealthReader
    host_metrics: HostMetricsReader
    workers: WorkerSupervisorReader
    autoheal: AutohealPolicyStore
    actions: ActionService
    health: HealthMonitor
    sessions: SessionManager
    hub: BroadcastHub
    aggregator: SnapshotAggregator
    engine: Optional[AsyncEngine] = None
    closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    def circuit_breaker_states(self) -> dict[str, str]:
        return _breaker_states(self.metrics_source)

    async def aclose(self) -> None:
        self.hub.close_all()
        for close in self.closers:
            try:
                await close()
            except Exception as e:
                logger.warning("container_close_failed", extra={"error": str(e)})
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("container_closed")


def _breaker_states(source: Any) -> dict[str, str]:
    breaker = getattr(source, "breaker", None)
    if breaker is None:
        return {}
    return {breaker.name: breaker.state.value}


def _any_backend(settings: DashboardSettings) -> bool:
    return any(
        (
            settings.coolify_db_url,
            settings.coolify_api_url and settings.coolify_api_token,
            settings.prometheus_url,
            settings.redis_url,
        )
    )


def build_container(
    settings: DashboardSettings,
    *,
    kv: Optional[KeyValueStore] = None,
    queue_store: Optional[QueueStore] = None,
    deployment_source: Optional[DeploymentSource] = None,
    deployment_control: Optional[DeploymentControl] = None,
    metrics_source: Optional[MetricsSource] = None,
    probe_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    """
    Build every client and service from settings. Keyword arguments replace individual
    backend adapters (tests pass in-memory fakes). Raises StartupError when no backend is
    configured and none was supplied.
    """
    overrides = (kv, queue_store, deployment_source, deployment_control, metrics_source)
    if not _any_backend(settings) and all(o is None for o in overrides):
        raise StartupError(
            "No backend configured: set at least one of COOLIFY_DB_URL, COOLIFY_API_URL, "
            "PROMETHEUS_URL, REDIS_URL"
        )

    metrics = MetricsCollector()
    closers: list[Callable[[], Awaitable[Any]]] = []
    engine: Optional[AsyncEngine] = None

    if kv is None or queue_store is None:
        redis_client = RedisClient(settings.redis_url)
        closers.append(redis_client.aclose)
        kv = kv or redis_client
        if queue_store is None:
            bullmq_store = BullMQStore(
                redis_client,
                queue_factory=bullmq_queue_factory(settings.redis_url) if settings.redis_url else None,
            )
            closers.append(bullmq_store.aclose)
            queue_store = bullmq_store

    if deployment_source is None:
        session_factory = None
        if settings.coolify_db_url:
            engine = build_engine(settings.coolify_db_url)
            session_factory = build_session_factory(engine)
        deployment_source = DbDeploymentRepository(session_factory)

    api_configured = deployment_control is not None
    if deployment_control is None:
        coolify = CoolifyClient(settings.coolify_api_url, settings.coolify_api_token)
        closers.append(coolify.aclose)
        api_configured = coolify.configured
        deployment_control = coolify

    if metrics_source is None:
        prometheus = PrometheusClient(
            settings.prometheus_url,
            breaker=CircuitBreaker(
                "prometheus",
                failure_threshold=5,
                recovery_timeout_seconds=30.0,
                counted=(BackendUnavailableError,),
                metrics=metrics,
            ),
        )
        closers.append(prometheus.aclose)
        metrics_source = prometheus

    prober = SiteHealthProber(
        request_timeout_sec=settings.probe_request_timeout_sec,
        concurrency=settings.probe_concurrency,
        transport=probe_transport,
    )
    closers.append(prober.aclose)
    site_targets = SiteTargetProvider(deployment_source, settings.exclusions)

    queue_health = QueueHealthAggregator(
        queue_store,
        LivenessLedger(kv),
        RateLedger(kv),
        WorkerHeartbeatRegistry(kv),
        metrics=metrics,
    )
    deployments = DeploymentTracker(deployment_source)
    database_health = DatabaseHealthReader(metrics_source)
    host_metrics = HostMetricsReader(metrics_source, settings.host_instances)
    workers = WorkerSupervisorReader(kv, max_age_sec=settings.worker_status_max_age_sec)
    autoheal = AutohealPolicyStore(kv, site_targets.list_targets, settings.autoheal_site_patterns)
    actions = ActionService(queue_store, deployment_control, metrics=metrics)
    sessions = SessionManager(
        settings.dashboard_password,
        settings.session_secret,
        settings.session_max_age_sec,
    )
    hub = BroadcastHub(keepalive_interval_sec=settings.keepalive_interval_sec, metrics=metrics)

    # The platform API answers for the deployment platform when configured, its database otherwise.
    platform_ping: Callable[[], Awaitable[ServiceStatus]] = (
        deployment_control.ping if api_configured else deployment_source.ping
    )
    health = HealthMonitor(
        deployment_platform=platform_ping,
        metrics_backend=metrics_source.ping,
        queue_store=queue_store.ping,
        timeout_sec=settings.health_check_timeout_sec,
        circuit_breaker_states=lambda: _breaker_states(metrics_source),
    )

    async def quick_site_health() -> SiteHealthSummary:
        started = time.monotonic()
        targets = await site_targets.list_targets()
        budget = round(max(0.0, settings.site_probe_budget_sec - (time.monotonic() - started)), 2)
        return await prober.probe_quick(targets, limit=settings.quick_probe_limit, budget_sec=budget)

    aggregator = SnapshotAggregator(
        SnapshotSources(
            service_health=health.service_health,
            deployments=deployments.live_view,
            database_health=database_health.read,
            queues=queue_health.all_stats,
            host_metrics=host_metrics.read_all,
            site_health=quick_site_health,
            worker_supervisor=workers.read,
        ),
        hub,
        poll_interval_sec=settings.poll_interval_sec,
        backend_timeout_sec=settings.backend_timeout_sec,
        site_check_timeout_sec=settings.site_check_timeout_sec,
        metrics=metrics,
    )
    logger.info(
        "container_built",
        extra={
            "environment": settings.environment,
            "auth_enabled": sessions.enabled,
            "hosts": list(settings.host_instances),
        },
    )
    return ServiceContainer(
        settings=settings,
        metrics=metrics,
        kv=kv,
        queue_store=queue_store,
        deployment_source=deployment_source,
        deployment_control=deployment_control,
        metrics_source=metrics_source,
        prober=prober,
        site_targets=site_targets,
        queue_health=queue_health,
        deployments=deployments,
        database_health=database_health,
        host_metrics=host_metrics,
        workers=workers,
        autoheal=autoheal,
        actions=actions,
        health=health,
        sessions=sessions,
        hub=hub,
        aggregator=aggregator,
        engine=engine,
        closers=closers,
    )
