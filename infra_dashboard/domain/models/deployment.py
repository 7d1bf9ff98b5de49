"""Domain model for deployments. Pure business semantics, no ORM or infrastructure."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional

from infra_dashboard.domain.exceptions import DomainValidationError


class DeploymentStatus(str, Enum):
    """Lifecycle status owned by the deployment platform. Read-only here."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"
    CANCELLED_BY_USER = "cancelled-by-user"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES: FrozenSet[DeploymentStatus] = frozenset(
    {DeploymentStatus.QUEUED, DeploymentStatus.IN_PROGRESS}
)
TERMINAL_STATUSES: FrozenSet[DeploymentStatus] = frozenset(
    {
        DeploymentStatus.FINISHED,
        DeploymentStatus.FAILED,
        DeploymentStatus.CANCELLED,
        DeploymentStatus.CANCELLED_BY_USER,
    }
)


def derive_duration_ms(
    created_at: datetime,
    finished_at: Optional[datetime],
    now: datetime,
) -> int:
    """Elapsed time from creation to finish, or to `now` while still running. Never negative."""
    end = finished_at or now
    return max(0, int((end - created_at).total_seconds() * 1000))


@dataclass(frozen=True)
class DeploymentFilters:
    """History filters. Dimensions combine with AND; statuses combine with OR."""

    statuses: FrozenSet[DeploymentStatus] = field(default_factory=frozenset)
    application_name: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def __post_init__(self) -> None:
        active = self.statuses & ACTIVE_STATUSES
        if active:
            names = ", ".join(sorted(s.value for s in active))
            raise DomainValidationError(f"History cannot be filtered by active status: {names}")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise DomainValidationError("start_date must not be after end_date")

    @classmethod
    def from_raw(
        cls,
        statuses: Optional[list[str]] = None,
        application_name: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> "DeploymentFilters":
        parsed = set()
        for raw in statuses or []:
            for value in raw.split(","):
                value = value.strip()
                if not value:
                    continue
                try:
                    parsed.add(DeploymentStatus(value))
                except ValueError:
                    raise DomainValidationError(f"Unknown deployment status: {value}") from None
        name = application_name.strip() if application_name else None
        return cls(
            statuses=frozenset(parsed),
            application_name=name or None,
            start_date=start_date,
            end_date=end_date,
        )


class BuildStage(str, Enum):
    QUEUED = "queued"
    CLONING = "cloning"
    INSTALLING = "installing"
    BUILDING = "building"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"


# Checked latest-stage first; the last stage reached wins.
_STAGE_PATTERNS: list[tuple[BuildStage, list[re.Pattern]]] = [
    (
        BuildStage.DEPLOYING,
        [
            re.compile(p, re.I)
            for p in (
                r"deploying",
                r"starting container",
                r"container started",
                r"pushing image",
                r"health check",
                r"application is running",
            )
        ],
    ),
    (
        BuildStage.BUILDING,
        [
            re.compile(p, re.I)
            for p in (
                r"building",
                r"compiling",
                r"next build",
                r"vite build",
                r"docker build",
                r"creating.*build",
                r"webpack",
                r"bundling",
            )
        ],
    ),
    (
        BuildStage.INSTALLING,
        [
            re.compile(p, re.I)
            for p in (
                r"npm install",
                r"npm ci",
                r"yarn install",
                r"pnpm install",
                r"bun install",
                r"pip install",
                r"installing dependencies",
                r"added \d+ packages",
            )
        ],
    ),
    (
        BuildStage.CLONING,
        [
            re.compile(p, re.I)
            for p in (r"cloning", r"git clone", r"fetching repository", r"checking out")
        ],
    ),
]

_OSC_SEQUENCE = re.compile(r"\x1b\][^\x07]*(\x07|\x1b\\)")
_CSI_SEQUENCE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_LINE_BREAK = re.compile(r"\r\n|\r(?!\n)|\n")


def detect_build_stage(logs: Optional[str], status: DeploymentStatus) -> BuildStage:
    """Infer the current build stage from status and, while running, from log content."""
    if status == DeploymentStatus.QUEUED:
        return BuildStage.QUEUED
    if status == DeploymentStatus.FINISHED:
        return BuildStage.COMPLETED
    if status.is_terminal:
        return BuildStage.FAILED
    if not logs:
        return BuildStage.CLONING
    for stage, patterns in _STAGE_PATTERNS:
        if any(p.search(logs) for p in patterns):
            return stage
    return BuildStage.CLONING


def log_preview(logs: Optional[str], line_count: int = 6) -> list[str]:
    """Last non-blank log lines, with cursor-control escapes removed (colour codes kept)."""
    if not logs:
        return []
    cleaned = _OSC_SEQUENCE.sub("", logs)
    cleaned = _CSI_SEQUENCE.sub(lambda m: m.group(0) if m.group(0).endswith("m") else "", cleaned)
    lines = [line for line in _LINE_BREAK.split(cleaned) if line.strip()]
    return lines[-line_count:]
