# infra_dashboard/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Inner deadlines (per-backend pings, site probes) settle within this share of their source timeout.
INNER_TIMEOUT_FRACTION = 0.8

DEFAULT_AUTOHEAL_SITE_PATTERNS = [
    r"hg[-\s]?market\s?report",
    r"hg[-\s]?websites",
    r"hg[-\s]?seo\s?commander",
    r"agency\s?commander",
]


class DashboardSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "infra-dashboard"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"

    # --- Security ---
    dashboard_password: Optional[str] = None
    session_secret: str = Field("change-me-infra-dashboard-session", min_length=16)
    session_cookie_name: str = "infra-dashboard-session"
    session_max_age_sec: int = 60 * 60 * 24 * 7

    # --- Deployment platform ---
    coolify_db_url: Optional[str] = None
    coolify_api_url: Optional[str] = None
    coolify_api_token: Optional[str] = None

    # --- Metrics backend ---
    prometheus_url: Optional[str] = None
    vps_primary_instance: Optional[str] = None
    vps_database_instance: Optional[str] = None

    # --- Job-queue store ---
    redis_url: Optional[str] = None

    # --- Aggregation cadence ---
    poll_interval_sec: float = Field(15.0, gt=0)
    backend_timeout_sec: float = Field(3.0, gt=0)
    site_check_timeout_sec: float = Field(8.0, gt=0)
    keepalive_interval_sec: float = Field(5.0, gt=0)

    # --- Site prober ---
    probe_request_timeout_sec: float = Field(10.0, gt=0)
    probe_concurrency: int = Field(5, ge=1)
    quick_probe_limit: int = Field(10, ge=1)
    site_health_exclusions: str = ""

    # --- Workers / autoheal ---
    worker_status_max_age_sec: int = Field(180, gt=0)
    autoheal_site_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_AUTOHEAL_SITE_PATTERNS)
    )

    # --- Observability ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @model_validator(mode="after")
    def timeouts_fit_in_poll_interval(self) -> "DashboardSettings":
        """A tick must always settle before the next one starts."""
        for name in ("backend_timeout_sec", "site_check_timeout_sec"):
            if getattr(self, name) >= self.poll_interval_sec:
                raise ValueError(f"{name} must be lower than poll_interval_sec")
        return self

    @property
    def health_check_timeout_sec(self) -> float:
        return self.backend_timeout_sec * INNER_TIMEOUT_FRACTION

    @property
    def site_probe_budget_sec(self) -> float:
        return self.site_check_timeout_sec * INNER_TIMEOUT_FRACTION

    @property
    def exclusions(self) -> list[str]:
        return [s.strip() for s in self.site_health_exclusions.split(",") if s.strip()]

    @property
    def host_instances(self) -> dict[str, str]:
        """Display name -> node exporter instance for each configured host."""
        hosts: dict[str, str] = {}
        if self.vps_primary_instance:
            hosts["apps"] = self.vps_primary_instance
        if self.vps_database_instance:
            hosts["database"] = self.vps_database_instance
        return hosts


@lru_cache
def get_settings() -> DashboardSettings:
    return DashboardSettings()
