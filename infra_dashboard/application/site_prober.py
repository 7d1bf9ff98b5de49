"""Site health: probe target selection from the deployment platform, and batched HTTP reachability checks."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import httpx

from infra_dashboard.application.ports import ApplicationRow, DeploymentSource
from infra_dashboard.domain.schemas.site import (
    SiteHealthReport,
    SiteHealthSummary,
    SiteProbe,
    SiteStatus,
    SiteTarget,
)

logger = logging.getLogger(__name__)

_SCHEMES = ("https://", "http://")


def _strip_scheme(url: str) -> str:
    for scheme in _SCHEMES:
        if url.startswith(scheme):
            return url[len(scheme):]
    return url


def _primary_fqdn(raw: str) -> Optional[str]:
    """First https entry of a comma-separated FQDN list, else the first entry."""
    entries = [e.strip() for e in raw.split(",") if e.strip()]
    if not entries:
        return None
    return next((e for e in entries if e.startswith("https://")), entries[0])


def _is_malformed(fqdn: str) -> bool:
    if not fqdn.startswith(_SCHEMES):
        return True
    domain = _strip_scheme(fqdn)
    return not domain or domain.startswith("://") or "*" in domain


def select_targets(apps: Iterable[ApplicationRow], exclusions: list[str]) -> list[SiteTarget]:
    """
    Probe targets from platform applications. An exclusion matches an app name exactly or
    any substring of the domain. Malformed entries are skipped, never probed.
    """
    targets = []
    for app in apps:
        if app.name in exclusions:
            continue
        fqdn = _primary_fqdn(app.fqdn or "")
        if fqdn is None:
            continue
        domain = _strip_scheme(fqdn)
        if any(excluded in domain for excluded in exclusions):
            continue
        if _is_malformed(fqdn):
            logger.debug("site_target_skipped", extra={"application": app.name, "fqdn": fqdn})
            continue
        targets.append(SiteTarget(id=app.uuid, name=app.name, fqdn=fqdn))
    return targets


class SiteTargetProvider:
    def __init__(self, source: DeploymentSource, exclusions: list[str]) -> None:
        self._source = source
        self._exclusions = exclusions

    async def list_targets(self) -> list[SiteTarget]:
        return select_targets(await self._source.list_applications_with_fqdn(), self._exclusions)


def classify(status_code: int) -> SiteStatus:
    if 200 <= status_code < 400:
        return SiteStatus.HEALTHY
    if 400 <= status_code < 500:
        return SiteStatus.DEGRADED
    return SiteStatus.DOWN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SiteHealthProber:
    """
    HEAD each target with redirects followed. Certificate validity is inferred from whether
    the HTTPS request completed; expiry is not inspected.
    """

    def __init__(
        self,
        request_timeout_sec: float = 10.0,
        concurrency: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._concurrency = max(1, concurrency)
        self._clock = clock
        self._client = httpx.AsyncClient(
            timeout=request_timeout_sec,
            follow_redirects=True,
            transport=transport,
        )

    async def check(self, target: SiteTarget) -> SiteProbe:
        checked_at = self._clock()
        start = time.monotonic()
        https = target.fqdn.startswith("https://")
        try:
            response = await self._client.head(target.fqdn)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            message = str(e) or type(e).__name__
            return SiteProbe(
                id=target.id,
                name=target.name,
                fqdn=target.fqdn,
                status=SiteStatus.DOWN,
                last_checked=checked_at,
                ssl_valid=False if "certificate" in message.lower() else None,
                error=message,
            )
        return SiteProbe(
            id=target.id,
            name=target.name,
            fqdn=target.fqdn,
            status=classify(response.status_code),
            http_status=response.status_code,
            response_time_ms=int((time.monotonic() - start) * 1000),
            ssl_valid=True if https else None,
            last_checked=checked_at,
        )

    async def probe_all(self, targets: list[SiteTarget]) -> list[SiteProbe]:
        """Fixed-size batches; each batch completes before the next starts. Order is preserved."""
        probes: list[SiteProbe] = []
        for i in range(0, len(targets), self._concurrency):
            batch = targets[i : i + self._concurrency]
            probes.extend(await asyncio.gather(*(self.check(t) for t in batch)))
        return probes

    def _timed_out(self, target: SiteTarget, budget_sec: float) -> SiteProbe:
        return SiteProbe(
            id=target.id,
            name=target.name,
            fqdn=target.fqdn,
            status=SiteStatus.DOWN,
            last_checked=self._clock(),
            error=f"Timed out after {budget_sec:g}s",
        )

    async def _check_within(self, target: SiteTarget, budget_sec: Optional[float]) -> SiteProbe:
        if budget_sec is None:
            return await self.check(target)
        try:
            return await asyncio.wait_for(self.check(target), timeout=budget_sec)
        except asyncio.TimeoutError:
            return self._timed_out(target, budget_sec)

    async def probe_quick(
        self,
        targets: list[SiteTarget],
        limit: int = 10,
        budget_sec: Optional[float] = None,
    ) -> SiteHealthSummary:
        """
        First `limit` targets, checked at once. A target still pending when `budget_sec`
        runs out is reported down; results from the others are kept.
        """
        probes = await asyncio.gather(*(self._check_within(t, budget_sec) for t in targets[:limit]))
        down = sum(1 for p in probes if p.status == SiteStatus.DOWN)
        return SiteHealthSummary(all_healthy=down == 0, down_count=down, sites=tuple(probes))

    @staticmethod
    def report(probes: list[SiteProbe]) -> SiteHealthReport:
        return SiteHealthReport(
            sites=tuple(probes),
            total=len(probes),
            healthy=sum(1 for p in probes if p.status == SiteStatus.HEALTHY),
            degraded=sum(1 for p in probes if p.status == SiteStatus.DEGRADED),
            down=sum(1 for p in probes if p.status == SiteStatus.DOWN),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
