"""Typed configuration models using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

try:
    from pydantic_settings import TomlConfigSettingsSource

    _HAS_TOML = True
except ImportError:
    _HAS_TOML = False


class PolygonSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POLYGON_")

    api_key: SecretStr = Field(default=SecretStr(""), description="Polygon.io API key")
    base_url: str = Field(default="https://api.polygon.io")
    request_timeout: float = Field(default=10.0, description="Per-request HTTP timeout (s)")
    max_retries: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=0.5, description="Exponential backoff base delay (s)")
    max_retry_after: float = Field(default=5.0, description="Upper bound on honored Retry-After (s)")
    calls_per_minute: int = Field(default=300, description="Self-imposed rate limit")


class IntradaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INTRADAY_")

    namespace: str = Field(default="intraday:snap", description="Snapshot key namespace")
    freshness_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Age under which a cached snapshot is served without refetching",
    )
    store_ttl_seconds: int = Field(
        default=4 * 24 * 3600,
        description="Store-side expiry for snapshot keys (covers a long weekend)",
    )
    fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    max_workers: int = Field(default=8, ge=1)
    market_timezone: str = Field(default="America/New_York")
    fallback_lookback_days: int = Field(default=5, ge=0)
    store_backend: Literal["memory", "redis"] = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")


class AuditSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUDIT_")

    completeness_weight: float = Field(default=0.7, ge=0, le=1)
    freshness_weight: float = Field(default=0.3, ge=0, le=1)
    critical_tables: list[str] = Field(default=["ticker_price_histories"])
    critical_weight: float = Field(default=2.0, gt=0)
    freshness_decay_days: int = Field(
        default=10,
        ge=1,
        description="Trading days past cadence over which freshness decays to zero",
    )
    max_workers: int = Field(default=4, ge=1)
    detail_limit: int = Field(default=25, ge=1)
    export_dir: Path = Field(default=Path("storage/logs/audit"))

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> AuditSettings:
        if abs(self.completeness_weight + self.freshness_weight - 1.0) > 1e-9:
            raise ValueError("completeness_weight and freshness_weight must sum to 1")
        return self


class StorageSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    data_root: Path = Field(default=Path("data"), description="Root directory for all data")
    duckdb_filename: str = Field(default="tickerwolf.duckdb")

    @property
    def duckdb_path(self) -> Path:
        return self.data_root / self.duckdb_filename


class AppSettings(BaseSettings):
    """Top-level settings composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        toml_file="config.toml",
    )

    polygon: PolygonSettings = Field(default_factory=PolygonSettings)
    intraday: IntradaySettings = Field(default_factory=IntradaySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    @classmethod
    def settings_customise_sources(cls, settings_cls, **kwargs):  # type: ignore[override]
        sources = (
            kwargs["env_settings"],
            kwargs["dotenv_settings"],
        )
        if _HAS_TOML:
            sources += (TomlConfigSettingsSource(settings_cls),)
        sources += (kwargs["init_settings"],)
        return sources
