"""Queue health domain rules: liveness debounce, throughput rates, heartbeat timestamps."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

# A worker is reported down only after this many consecutive missed liveness checks.
CONSECUTIVE_FAILURES_REQUIRED = 5
MIN_RATE_SAMPLE_SECONDS = 15

# Epoch values below this are seconds, at or above are milliseconds.
_EPOCH_MILLIS_THRESHOLD = 1e12

HEARTBEAT_TIMESTAMP_FIELDS = ("ts", "timestamp", "lastSeen", "last_seen", "updatedAt", "updated_at")


def is_worker_active(consecutive_failures: int) -> bool:
    return consecutive_failures < CONSECUTIVE_FAILURES_REQUIRED


@dataclass(frozen=True)
class RateSample:
    """Counter reading persisted between ticks to derive per-minute rates."""

    timestamp_ms: int
    completed: int
    failed: int

    def to_json(self) -> str:
        return json.dumps({"ts": self.timestamp_ms, "completed": self.completed, "failed": self.failed})

    @classmethod
    def from_json(cls, raw: str) -> Optional["RateSample"]:
        try:
            data = json.loads(raw)
            return cls(
                timestamp_ms=int(data["ts"]),
                completed=int(data["completed"]),
                failed=int(data["failed"]),
            )
        except (ValueError, TypeError, KeyError):
            return None


@dataclass(frozen=True)
class Rates:
    jobs_per_min: Optional[float] = None
    failures_per_min: Optional[float] = None


def compute_rates(previous: Optional[RateSample], current: RateSample) -> Rates:
    """
    Per-minute completed/failed rates between two samples. Unknown until at least
    MIN_RATE_SAMPLE_SECONDS have elapsed. Counter resets clamp to zero, never negative.
    """
    if previous is None:
        return Rates()
    elapsed_sec = (current.timestamp_ms - previous.timestamp_ms) / 1000
    if elapsed_sec <= 0 or elapsed_sec < MIN_RATE_SAMPLE_SECONDS:
        return Rates()
    completed_delta = max(0, current.completed - previous.completed)
    failed_delta = max(0, current.failed - previous.failed)
    return Rates(
        jobs_per_min=round(completed_delta / elapsed_sec * 60, 1),
        failures_per_min=round(failed_delta / elapsed_sec * 60, 1),
    )


def _epoch_to_millis(value: float) -> Optional[int]:
    if value <= 0:
        return None
    return int(value * 1000) if value < _EPOCH_MILLIS_THRESHOLD else int(value)


def _coerce_timestamp(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _epoch_to_millis(float(raw))
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def parse_heartbeat_timestamp(value: Optional[str]) -> Optional[int]:
    """
    Last-seen time of a heartbeat entry in epoch milliseconds, or None if unknown.
    Accepts a JSON object with one of HEARTBEAT_TIMESTAMP_FIELDS (epoch seconds,
    epoch millis or ISO-8601 string) or a bare epoch number.
    """
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        text = value.strip()
        if text.isdigit():
            return _epoch_to_millis(float(text))
        return _coerce_timestamp(text)
    if isinstance(parsed, dict):
        for key in HEARTBEAT_TIMESTAMP_FIELDS:
            if parsed.get(key) is not None:
                return _coerce_timestamp(parsed[key])
        return None
    return _coerce_timestamp(parsed)


def age_seconds(timestamp_ms: int, now_ms: int) -> int:
    return max(0, (now_ms - timestamp_ms) // 1000)


@dataclass
class HeartbeatStats:
    """Per-queue heartbeat aggregate. Staleness is governed by the oldest reporter."""

    count: int = 0
    max_age_sec: Optional[int] = None

    def observe(self, timestamp_ms: Optional[int], now_ms: int) -> None:
        self.count += 1
        if timestamp_ms is None:
            return
        age = age_seconds(timestamp_ms, now_ms)
        self.max_age_sec = age if self.max_age_sec is None else max(self.max_age_sec, age)
