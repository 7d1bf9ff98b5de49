"""Autoheal policy: one JSON document read by external remediation automation, seeded with defaults on first read."""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from infra_dashboard.application.ports import KeyValueStore
from infra_dashboard.domain.schemas.autoheal import (
    MIN_FAILURE_THRESHOLD,
    MIN_FAILURE_WINDOW_SEC,
    AutohealConfig,
    AutohealConfigUpdate,
)
from infra_dashboard.domain.schemas.site import SiteTarget

logger = logging.getLogger(__name__)

AUTOHEAL_CONFIG_KEY = "infra:autoheal:config"


def _dedupe(sites: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(s for s in sites if s))


def normalize(update: AutohealConfigUpdate) -> AutohealConfig:
    """Fill omitted fields from defaults and clamp numbers to their lower bounds."""
    defaults = AutohealConfig()

    def pick(name: str) -> Any:
        value = getattr(update, name)
        return getattr(defaults, name) if value is None else value

    return AutohealConfig(
        enabled=pick("enabled"),
        failure_threshold=max(MIN_FAILURE_THRESHOLD, pick("failure_threshold")),
        failure_window_sec=max(MIN_FAILURE_WINDOW_SEC, pick("failure_window_sec")),
        skip_when_deploying=pick("skip_when_deploying"),
        cooldown_sec=max(0, pick("cooldown_sec")),
        redeploy_delay_sec=max(0, pick("redeploy_delay_sec")),
        redeploy_after_restart=pick("redeploy_after_restart"),
        enabled_sites=_dedupe(list(update.enabled_sites or ())),
        updated_at=update.updated_at,
    )


def _parse_stored(raw: str) -> Optional[AutohealConfig]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    sites = data.get("enabledSites")
    if isinstance(sites, list):
        data["enabledSites"] = [s for s in sites if isinstance(s, str)]
    try:
        return normalize(AutohealConfigUpdate.model_validate(data))
    except ValidationError:
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutohealPolicyStore:
    """
    Source of truth is the key/value store. A missing or unreadable document is replaced by
    defaults whose enabled sites are seeded from name patterns over the current site targets.
    """

    def __init__(
        self,
        store: KeyValueStore,
        list_targets: Optional[Callable[[], Awaitable[list[SiteTarget]]]],
        site_patterns: list[str],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._list_targets = list_targets
        self._patterns = [re.compile(p, re.IGNORECASE) for p in site_patterns]
        self._clock = clock

    async def _seed_sites(self) -> tuple[str, ...]:
        if self._list_targets is None:
            return ()
        try:
            targets = await self._list_targets()
        except Exception as e:
            logger.warning("autoheal_seed_failed", extra={"error": str(e)})
            return ()
        matched = [
            t.id
            for t in targets
            if any(p.search(f"{t.name} {t.fqdn}".lower()) for p in self._patterns)
        ]
        return _dedupe(matched)

    async def _write(self, config: AutohealConfig) -> None:
        await self._store.set(AUTOHEAL_CONFIG_KEY, json.dumps(config.to_wire()))

    async def get_config(self) -> AutohealConfig:
        raw = await self._store.get(AUTOHEAL_CONFIG_KEY)
        if raw:
            stored = _parse_stored(raw)
            if stored is not None:
                return stored
            logger.warning("autoheal_config_unreadable", extra={"key": AUTOHEAL_CONFIG_KEY})

        defaults = AutohealConfig(enabled_sites=await self._seed_sites(), updated_at=self._clock())
        await self._write(defaults)
        logger.info("autoheal_defaults_seeded", extra={"enabled_sites": len(defaults.enabled_sites)})
        return defaults

    async def save_config(self, update: AutohealConfigUpdate) -> AutohealConfig:
        """Replace the whole document. Omitted fields reset to defaults."""
        config = normalize(update).model_copy(update={"updated_at": self._clock()})
        await self._write(config)
        logger.info("autoheal_config_saved", extra={"enabled": config.enabled})
        return config
