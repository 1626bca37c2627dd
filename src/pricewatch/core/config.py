"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from pricewatch.core.exceptions import ConfigError
from pricewatch.core.models import CacheBackendType, StorageBackend

DEFAULT_CONFIG_FILE = "pricewatch.yml"


class SourceConfig(BaseModel):
    """Price source (Kraken public API) configuration."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.kraken.com"
    quote_currency: str = "USD"
    request_timeout: float = 10.0
    rate_limit: int = 10

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_in_range(cls, v: int) -> int:
        if v < 1 or v > 20:
            raise ValueError("rate_limit must be between 1 and 20 requests/second")
        return v

    @field_validator("quote_currency")
    @classmethod
    def quote_upper(cls, v: str) -> str:
        return v.strip().upper()


class TrackingConfig(BaseModel):
    """Collector scheduling configuration."""

    model_config = ConfigDict(frozen=True)

    poll_interval: float = 5.0

    @field_validator("poll_interval")
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("poll_interval must be > 0")
        return v


class StorageConfig(BaseModel):
    """Durable store configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str = "./data/pricewatch.db"
    connect_attempts: int = 5
    connect_delay: float = 1.0

    @field_validator("connect_attempts")
    @classmethod
    def attempts_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("connect_attempts must be >= 1")
        return v


class CacheConfig(BaseModel):
    """Recency cache policy and engine configuration."""

    model_config = ConfigDict(frozen=True)

    backend: CacheBackendType = CacheBackendType.REDIS
    redis_url: str | None = "redis://localhost:6379/0"
    key_prefix: str = "token"
    entry_ttl: int = 600
    retention: int = 4 * 60 * 60
    max_assets: int = 100
    hit_window: int = 300
    connect_attempts: int = 5
    connect_delay: float = 1.0

    @field_validator("entry_ttl", "retention", "max_assets")
    @classmethod
    def strictly_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("hit_window")
    @classmethod
    def window_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("hit_window must be >= 0")
        return v

    @model_validator(mode="after")
    def redis_url_required_for_redis(self) -> CacheConfig:
        if self.backend == CacheBackendType.REDIS and not self.redis_url:
            raise ValueError("redis_url is required when backend is 'redis'")
        return self


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8080
    api_key: str | None = None


class PricewatchConfig(BaseModel):
    """Root configuration for the whole pricewatch service."""

    model_config = ConfigDict(frozen=True)

    source: SourceConfig = SourceConfig()
    tracking: TrackingConfig = TrackingConfig()
    storage: StorageConfig = StorageConfig()
    cache: CacheConfig = CacheConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "PRICEWATCH_",
) -> PricewatchConfig:
    """Build the service configuration.

    Environment variables win over the YAML file, which wins over defaults.
    The file is `config_path`, else ``<prefix>CONFIG``, else ``pricewatch.yml``
    in the working directory if present. A field is set from the environment
    as ``<prefix><SECTION>__<FIELD>``, e.g. ``PRICEWATCH_CACHE__MAX_ASSETS=50``;
    pydantic coerces the string.

    Raises:
        ConfigError: the file is missing or malformed, or a value is invalid.
    """
    settings = _read_yaml(_config_file(config_path, env_prefix))
    for (section, field), value in _env_settings(env_prefix).items():
        target = settings.setdefault(section, {})
        if isinstance(target, dict):
            target[field] = value

    try:
        return PricewatchConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", context={"source": "load_config"}) from e


def _config_file(explicit: str | None, env_prefix: str) -> Path | None:
    variable = f"{env_prefix}CONFIG"
    candidate = explicit or os.environ.get(variable) or None
    if candidate is None:
        default = Path(DEFAULT_CONFIG_FILE)
        return default if default.exists() else None

    path = Path(candidate)
    if not path.exists():
        origin = "config_path" if explicit else variable
        raise ConfigError(
            f"Config file not found: {candidate}",
            context={"field": origin, "value": candidate},
        )
    return path


def _read_yaml(path: Path | None) -> dict:
    """Top-level mapping of a YAML file; empty for no file or an empty one."""
    if path is None:
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to read YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"YAML config must be a mapping, got {type(data).__name__}",
            context={"field": "config_file", "value": str(path)},
        )
    return data


def _env_settings(prefix: str) -> dict[tuple[str, str], str]:
    """``(section, field) -> raw value`` for every ``<prefix><SECTION>__<FIELD>`` variable."""
    found = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        section, sep, field = key[len(prefix):].lower().partition("__")
        if sep and section and field and "__" not in field:
            found[(section, field)] = value
    return found
