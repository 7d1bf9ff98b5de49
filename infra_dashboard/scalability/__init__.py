"""Scalability layer: circuit breaker, bounded retry, backend health. No FastAPI."""

from infra_dashboard.scalability.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from infra_dashboard.scalability.health_monitor import HealthMonitor
from infra_dashboard.scalability.retry import retry_once

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "HealthMonitor",
    "retry_once",
]
