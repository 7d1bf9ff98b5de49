"""DeploymentTracker: live view classification, cursor pagination, detail."""

import base64
from datetime import timedelta

import pytest

from infra_dashboard.application.deployment_tracker import (
    MAX_PAGE_SIZE,
    DeploymentTracker,
    clamp_page_size,
    decode_cursor,
    encode_cursor,
)
from infra_dashboard.domain.exceptions import DeploymentNotFoundError, InvalidCursorError
from infra_dashboard.domain.models.deployment import BuildStage, DeploymentFilters, DeploymentStatus
from tests.fakes import FakeDeploymentSource, record, utc

NOW = utc(2026, 3, 1, 12, 0, 0)


def _tracker(records) -> DeploymentTracker:
    return DeploymentTracker(FakeDeploymentSource(records), clock=lambda: NOW)


@pytest.mark.asyncio
async def test_running_deployment_duration_derived_at_read_time():
    d1 = record("d1", "in_progress", created_at=NOW - timedelta(milliseconds=90000))
    view = await _tracker([d1]).live_view()
    assert [r.uuid for r in view.active] == ["d1"]
    assert view.active[0].duration_ms == 90000


@pytest.mark.asyncio
async def test_live_view_partitions_active_and_recent():
    records = [
        record("q1", "queued", created_at=NOW - timedelta(minutes=1)),
        record("r1", "in_progress", created_at=NOW - timedelta(minutes=3)),
        record(
            "f1",
            "finished",
            created_at=NOW - timedelta(minutes=10),
            updated_at=NOW - timedelta(minutes=5),
            finished_at=NOW - timedelta(minutes=5),
        ),
        record(
            "x1",
            "failed",
            created_at=NOW - timedelta(minutes=20),
            updated_at=NOW - timedelta(minutes=2),
        ),
        record(
            "old",
            "finished",
            created_at=NOW - timedelta(hours=2),
            updated_at=NOW - timedelta(minutes=45),
            finished_at=NOW - timedelta(minutes=45),
        ),
    ]
    view = await _tracker(records).live_view()

    assert [r.uuid for r in view.active] == ["q1", "r1"]
    assert [r.uuid for r in view.recent] == ["x1", "f1"]
    assert all(r.status.is_active for r in view.active)
    assert all(r.status.is_terminal for r in view.recent)
    assert view.recent[1].duration_ms == 5 * 60 * 1000
    assert view.stats.queued == 1
    assert view.stats.in_progress == 1
    assert view.stats.finished_today == 2
    assert view.stats.failed_today == 1


def _history(count: int):
    return [
        record(f"h{i:02d}", "finished", created_at=NOW - timedelta(minutes=i), finished_at=NOW - timedelta(minutes=i))
        for i in range(1, count + 1)
    ]


@pytest.mark.asyncio
async def test_pages_are_disjoint_and_ordered():
    tracker = _tracker(_history(7))
    seen = []
    cursor = None
    while True:
        page = await tracker.page(cursor=cursor, limit=3)
        assert page.total_count == 7
        seen.extend(r.uuid for r in page.records)
        cursor = page.next_cursor
        if cursor is None:
            break
    assert seen == [f"h{i:02d}" for i in range(1, 8)]
    assert len(set(seen)) == len(seen)


@pytest.mark.asyncio
async def test_no_next_cursor_on_exact_final_page():
    page = await _tracker(_history(3)).page(limit=3)
    assert len(page.records) == 3
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_history_excludes_active_and_applies_filters():
    records = _history(3) + [
        record("live", "in_progress", created_at=NOW),
        record("bad", "failed", created_at=NOW - timedelta(minutes=30), application_name="api"),
    ]
    tracker = _tracker(records)

    everything = await tracker.page()
    assert "live" not in {r.uuid for r in everything.records}

    failed = await tracker.page(filters=DeploymentFilters(statuses=frozenset({DeploymentStatus.FAILED})))
    assert [r.uuid for r in failed.records] == ["bad"]
    assert failed.total_count == 1

    by_app = await tracker.page(filters=DeploymentFilters(application_name="api"))
    assert [r.uuid for r in by_app.records] == ["bad"]


def test_cursor_round_trip_and_rejection():
    created = utc(2026, 3, 1, 11, 59, 0)
    assert decode_cursor(encode_cursor(created)) == created
    with pytest.raises(InvalidCursorError):
        decode_cursor(base64.urlsafe_b64encode(b"yesterday").decode("ascii"))


def test_page_size_clamped():
    assert clamp_page_size(None) == 50
    assert clamp_page_size(0) == 1
    assert clamp_page_size(10_000) == MAX_PAGE_SIZE


@pytest.mark.asyncio
async def test_detail_includes_stage_and_preview():
    d = record(
        "d1",
        "in_progress",
        created_at=NOW - timedelta(minutes=2),
        logs="Cloning repository\nnpm ci\nnext build",
    )
    detail = await _tracker([d]).detail("d1")
    assert detail.deployment.duration_ms == 120000
    assert detail.build_stage == BuildStage.BUILDING
    assert detail.log_preview[-1] == "next build"


@pytest.mark.asyncio
async def test_detail_unknown_uuid():
    with pytest.raises(DeploymentNotFoundError):
        await _tracker([]).detail("missing")
