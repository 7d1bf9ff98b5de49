"""AutohealPolicyStore: default seeding, persistence, normalization on save."""

import json

import pytest

from infra_dashboard.application.autoheal_store import AUTOHEAL_CONFIG_KEY, AutohealPolicyStore
from infra_dashboard.domain.schemas.autoheal import AutohealConfigUpdate
from infra_dashboard.domain.schemas.site import SiteTarget
from tests.fakes import FakeKV, utc

PATTERNS = [r"hg[-\s]?websites", r"agency\s?commander"]


def _targets():
    return [
        SiteTarget(id="s1", name="HG Websites", fqdn="https://sites.example.com"),
        SiteTarget(id="s2", name="blog", fqdn="https://blog.example.com"),
        SiteTarget(id="s3", name="ops", fqdn="https://agencycommander.example.com"),
    ]


def _store(kv: FakeKV, list_targets=None) -> AutohealPolicyStore:
    async def default_targets():
        return _targets()

    return AutohealPolicyStore(
        kv,
        list_targets or default_targets,
        PATTERNS,
        clock=lambda: utc(2026, 3, 1, 12),
    )


@pytest.mark.asyncio
async def test_defaults_seeded_from_patterns_and_persisted():
    kv = FakeKV()
    store = _store(kv)

    config = await store.get_config()

    assert config.enabled is True
    assert config.failure_threshold == 2
    assert config.enabled_sites == ("s1", "s3")
    stored = json.loads(kv.data[AUTOHEAL_CONFIG_KEY])
    assert stored["enabledSites"] == ["s1", "s3"]
    assert stored["failureWindowSec"] == 120


@pytest.mark.asyncio
async def test_second_read_returns_persisted_document_without_reseeding():
    kv = FakeKV()
    calls = 0

    async def counting_targets():
        nonlocal calls
        calls += 1
        return _targets()

    store = _store(kv, counting_targets)
    first = await store.get_config()
    second = await store.get_config()
    assert first == second
    assert calls == 1


@pytest.mark.asyncio
async def test_seeding_failure_yields_empty_site_list():
    async def broken_targets():
        raise RuntimeError("platform database down")

    config = await _store(FakeKV(), broken_targets).get_config()
    assert config.enabled_sites == ()


@pytest.mark.asyncio
async def test_unreadable_document_replaced_by_defaults():
    kv = FakeKV()
    kv.data[AUTOHEAL_CONFIG_KEY] = "{not json"
    config = await _store(kv).get_config()
    assert config.enabled_sites == ("s1", "s3")
    assert json.loads(kv.data[AUTOHEAL_CONFIG_KEY])["enabled"] is True


@pytest.mark.asyncio
async def test_save_replaces_whole_document_with_clamping():
    kv = FakeKV()
    store = _store(kv)
    await store.get_config()

    saved = await store.save_config(
        AutohealConfigUpdate(failure_threshold=0, failure_window_sec=5, enabled_sites=["a", "a", "", "b"])
    )

    assert saved.failure_threshold == 1
    assert saved.failure_window_sec == 30
    assert saved.cooldown_sec == 600
    assert saved.enabled_sites == ("a", "b")
    assert saved.updated_at == utc(2026, 3, 1, 12)
    assert await store.get_config() == saved
