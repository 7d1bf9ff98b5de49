"""Observability layer: in-process metrics. No external SaaS."""

from infra_dashboard.observability.metrics import MetricsCollector

__all__ = ["MetricsCollector"]
