"""Metrics backend client over the Prometheus HTTP API. Implements MetricsSource protocol."""

import logging
import math
import time
from datetime import datetime
from typing import Any, Optional

import httpx

from infra_dashboard.application.exceptions import ApplicationError, BackendUnavailableError
from infra_dashboard.application.ports import MetricSample, MetricSeries
from infra_dashboard.domain.schemas.snapshot import ServiceStatus
from infra_dashboard.scalability.circuit_breaker import CircuitBreaker
from infra_dashboard.scalability.retry import retry_once

logger = logging.getLogger(__name__)


class MetricsQueryError(ApplicationError):
    """The backend answered but rejected the expression. Does not trip the breaker."""


def _number(raw: Any) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class PrometheusClient:
    """
    Instant and range queries. Every call goes through a circuit breaker; transport failures
    are retried once inside it.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout_sec: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client: Optional[httpx.AsyncClient] = None
        if base_url:
            self._client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                timeout=timeout_sec,
                transport=transport,
            )
        self._breaker = breaker or CircuitBreaker(
            name="prometheus",
            failure_threshold=5,
            recovery_timeout_seconds=30.0,
            counted=(BackendUnavailableError,),
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _fetch(self, path: str, params: dict[str, str]) -> Any:
        if self._client is None:
            raise BackendUnavailableError("PROMETHEUS_URL is not configured")
        try:
            response = await self._client.get(path, params=params)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Metrics backend unreachable: {e}") from e
        if response.status_code >= 500:
            raise BackendUnavailableError(f"Prometheus query failed: {response.status_code}")
        try:
            payload = response.json()
        except ValueError:
            raise MetricsQueryError(f"Prometheus returned non-JSON ({response.status_code})") from None
        if response.is_error or payload.get("status") != "success":
            raise MetricsQueryError(payload.get("error") or f"Prometheus query failed: {response.status_code}")
        return payload["data"]["result"]

    async def _query(self, path: str, params: dict[str, str]) -> Any:
        return await self._breaker.call(
            retry_once,
            lambda: self._fetch(path, params),
            retry_on=(BackendUnavailableError,),
            operation=f"prometheus {path}",
        )

    async def ping(self) -> ServiceStatus:
        if self._client is None:
            return ServiceStatus.failed("PROMETHEUS_URL is not configured")
        start = time.monotonic()
        try:
            await self._query("/api/v1/query", {"query": "up"})
        except ApplicationError as e:
            return ServiceStatus.failed(e.message)
        latency_ms = int((time.monotonic() - start) * 1000)
        return ServiceStatus(ok=True, message="Connected to Prometheus", latency_ms=latency_ms)

    async def query_vector(self, expression: str) -> list[MetricSample]:
        result = await self._query("/api/v1/query", {"query": expression})
        samples = []
        for item in result or []:
            value = _number((item.get("value") or [None, None])[1])
            if value is not None:
                samples.append(MetricSample(labels=item.get("metric") or {}, value=value))
        return samples

    async def query_scalar(self, expression: str) -> Optional[float]:
        """First sample's value, or None when the expression matched nothing."""
        samples = await self.query_vector(expression)
        return samples[0].value if samples else None

    async def query_range(
        self,
        expression: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> list[MetricSeries]:
        result = await self._query(
            "/api/v1/query_range",
            {
                "query": expression,
                "start": f"{start.timestamp():.3f}",
                "end": f"{end.timestamp():.3f}",
                "step": step,
            },
        )
        series = []
        for item in result or []:
            points = []
            for ts, raw in item.get("values") or []:
                value = _number(raw)
                if value is not None:
                    points.append((float(ts), value))
            series.append(MetricSeries(labels=item.get("metric") or {}, points=points))
        return series

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
