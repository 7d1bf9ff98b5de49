"""Aggregate backend connectivity: deployment platform, metrics backend, job-queue store, circuit breaker states."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from infra_dashboard.domain.schemas.snapshot import ServiceHealth, ServiceStatus

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[ServiceStatus]]


class HealthMonitor:
    """
    Runs the injected connectivity checks concurrently, each under its own timeout.
    A missing check reports not-configured; a raising or slow check reports ok=False.
    """

    def __init__(
        self,
        deployment_platform: HealthCheck | None = None,
        metrics_backend: HealthCheck | None = None,
        queue_store: HealthCheck | None = None,
        timeout_sec: float = 3.0,
        circuit_breaker_states: Callable[[], dict[str, str]] | None = None,
    ) -> None:
        self._checks = {
            "deployment_platform": deployment_platform,
            "metrics_backend": metrics_backend,
            "queue_store": queue_store,
        }
        self._timeout = timeout_sec
        self._circuit_states = circuit_breaker_states

    async def _run(self, name: str, check: HealthCheck | None) -> ServiceStatus:
        if check is None:
            return ServiceStatus.failed("Not configured")
        try:
            return await asyncio.wait_for(check(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("health_check_timeout", extra={"component": name})
            return ServiceStatus.failed(f"Timed out after {self._timeout:g}s")
        except Exception as e:
            logger.warning("health_check_failed", extra={"component": name, "error": str(e)})
            return ServiceStatus.failed(str(e) or "Failed to check")

    async def service_health(self) -> ServiceHealth:
        names = list(self._checks)
        results = await asyncio.gather(*(self._run(n, self._checks[n]) for n in names))
        return ServiceHealth(**dict(zip(names, results)))

    async def system_health(self) -> dict[str, Any]:
        """Return {"status", "services", "circuit_breakers"}; status is "ok" only when every service is."""
        health = await self.service_health()
        states: dict[str, str] = {}
        if self._circuit_states:
            try:
                states = self._circuit_states()
            except Exception:
                states = {}
        return {
            "status": "ok" if health.all_ok else "degraded",
            "services": health.to_wire(),
            "circuit_breakers": states,
        }
