"""Shared fixtures: in-memory backends and a fixed clock."""

import pytest

from tests.fakes import (
    FakeDeploymentControl,
    FakeDeploymentSource,
    FakeKV,
    FakeMetricsSource,
    FakeQueueStore,
)


@pytest.fixture
def fake_kv():
    return FakeKV()


@pytest.fixture
def fake_queue_store():
    return FakeQueueStore()


@pytest.fixture
def fake_deployments():
    return FakeDeploymentSource()


@pytest.fixture
def fake_control():
    return FakeDeploymentControl()


@pytest.fixture
def fake_metrics_source():
    return FakeMetricsSource()
