"""Application configuration loaded from the environment."""

from __future__ import annotations

import enum
import warnings
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from geoshield.shared.resilience.types import HealthPolicy, RateLimit


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class DurableStoreKind(str, enum.Enum):
    MEMORY = "memory"
    REDIS = "redis"
    SQL = "sql"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "geoshield"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Durable store ────────────────────────────────────────
    durable_store: DurableStoreKind = DurableStoreKind.SQL
    redis_url: str = ""
    redis_max_connections: int = 50
    redis_prefix: str = "geoshield"
    database_url: str = "sqlite+aiosqlite:///./geoshield_cache.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ── Cache ────────────────────────────────────────────────
    cache_geocode_ttl_seconds: float = 24 * 3600.0
    cache_route_ttl_seconds: float = 6 * 3600.0
    cache_tile_ttl_seconds: float = 24 * 3600.0
    cache_hot_entries: int = Field(100, ge=0)
    cache_purge_on_startup: bool = True

    # ── Health policy ────────────────────────────────────────
    health_recovery_window_seconds: float = 300.0
    health_failure_ceiling: int = 5
    health_min_success_rate: float = Field(0.5, ge=0.0, le=1.0)
    health_failure_streak: int = 5
    health_sample_size: int = 100

    # ── Per-provider rate limits ─────────────────────────────
    nominatim_rps: int = 1
    photon_rps: int = 1
    openrouteservice_rpm: int = 40
    openrouteservice_daily_limit: int = 2000
    osrm_rps: int = 1
    osm_tiles_rps: int = 2
    tile_mirror_rps: int = 2

    # ── Providers ────────────────────────────────────────────
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    photon_url: str = "https://photon.komoot.io"
    openrouteservice_url: str = "https://api.openrouteservice.org"
    openrouteservice_api_key: str = ""
    osrm_url: str = "https://router.project-osrm.org"
    tile_url_template: str = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
    tile_mirror_url_template: str = "https://tile.openstreetmap.de/{z}/{x}/{y}.png"
    http_user_agent: str = "GeoShield/1.0 (+https://github.com/geoshield)"
    provider_timeout_seconds: float = Field(10.0, gt=0)
    provider_max_retries: int = Field(2, ge=0)
    provider_backoff_base: float = 0.5
    provider_backoff_max: float = 4.0
    fallback_enabled: bool = True
    geocode_result_limit: int = Field(10, ge=1, le=50)

    # ── Monitoring ───────────────────────────────────────────
    monitor_enabled: bool = True
    monitor_report_interval_seconds: float = 900.0
    monitor_alert_interval_seconds: float = 60.0
    monitor_health_check_interval_seconds: float = 300.0
    monitor_cache_purge_interval_seconds: float = 3600.0
    monitor_report_history: int = Field(10, ge=1)
    alert_error_rate_threshold: float = 0.10
    alert_response_time_threshold_seconds: float = 5.0
    alert_health_score_threshold: float = 70.0

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @property
    def health_policy(self) -> HealthPolicy:
        return HealthPolicy(
            recovery_window_s=self.health_recovery_window_seconds,
            failure_ceiling=self.health_failure_ceiling,
            min_success_rate=self.health_min_success_rate,
            failure_streak=self.health_failure_streak,
            sample_size=self.health_sample_size,
        )

    @property
    def rate_limits(self) -> dict[str, RateLimit]:
        return {
            "nominatim": RateLimit.per_second(self.nominatim_rps),
            "photon": RateLimit.per_second(self.photon_rps),
            "openrouteservice": RateLimit.per_minute(self.openrouteservice_rpm),
            "openrouteservice_daily": RateLimit.per_day(self.openrouteservice_daily_limit),
            "osrm": RateLimit.per_second(self.osrm_rps),
            "osm_tiles": RateLimit.per_second(self.osm_tiles_rps),
            "tile_mirror": RateLimit.per_second(self.tile_mirror_rps),
        }

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, v: str) -> str:
        if not v.startswith(("postgresql", "sqlite")):
            raise ValueError("database_url must start with 'postgresql' or 'sqlite'")
        return v

    @field_validator("tile_url_template", "tile_mirror_url_template")
    @classmethod
    def _validate_tile_template(cls, v: str) -> str:
        for placeholder in ("{z}", "{x}", "{y}"):
            if placeholder not in v:
                raise ValueError(f"tile URL template must contain {placeholder}")
        return v

    @model_validator(mode="after")
    def _guard_store_config(self) -> Settings:
        if self.durable_store == DurableStoreKind.REDIS and not self.redis_url:
            raise ValueError("redis_url must be set when durable_store is 'redis'")
        if self.is_production and self.durable_store == DurableStoreKind.MEMORY:
            warnings.warn(
                "durable_store is 'memory' in production; cached data will not survive restarts",
                UserWarning,
                stacklevel=2,
            )
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
