"""Configuration loading, validation, and access."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from quota_sentinel.core.exceptions import ConfigError
from quota_sentinel.core.models import AccountRecord, PredictionMethod

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "quota-sentinel.yml"


class PredictionConfig(BaseModel):
    """History retention and depletion estimator settings."""

    model_config = ConfigDict(frozen=True)

    max_history_days: int = 7
    method: PredictionMethod = PredictionMethod.ENDPOINTS
    min_elapsed_minutes: int = 60

    @field_validator("max_history_days")
    @classmethod
    def retention_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_history_days must be >= 1")
        return v

    @field_validator("min_elapsed_minutes")
    @classmethod
    def min_elapsed_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_elapsed_minutes must be >= 1")
        return v


class AlertsConfig(BaseModel):
    """Presentation thresholds. Not consumed by the monitoring core."""

    model_config = ConfigDict(frozen=True)

    low_usage_threshold: float = 20.0

    @field_validator("low_usage_threshold")
    @classmethod
    def threshold_is_percentage(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError("low_usage_threshold must be between 0 and 100")
        return v


class StorageConfig(BaseModel):
    """Local history persistence."""

    model_config = ConfigDict(frozen=True)

    history_path: str = "~/.quota-sentinel/history.json"

    @property
    def resolved_history_path(self) -> Path:
        return Path(self.history_path).expanduser()


class MonitorConfig(BaseModel):
    """Refresh fan-out and HTTP settings."""

    model_config = ConfigDict(frozen=True)

    max_concurrent: int = 4
    request_timeout: float = 30.0

    @field_validator("max_concurrent")
    @classmethod
    def max_concurrent_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be >= 1")
        return v

    @field_validator("request_timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be > 0")
        return v


class QuotaSentinelConfig(BaseModel):
    """Root configuration for quota-sentinel."""

    model_config = ConfigDict(frozen=True)

    refresh_interval: int = 300
    prediction: PredictionConfig = PredictionConfig()
    alerts: AlertsConfig = AlertsConfig()
    storage: StorageConfig = StorageConfig()
    monitor: MonitorConfig = MonitorConfig()
    accounts: list[AccountRecord] = []

    @model_validator(mode="after")
    def account_ids_unique(self) -> QuotaSentinelConfig:
        seen: set[str] = set()
        for account in self.accounts:
            if account.id in seen:
                raise ValueError(f"duplicate account id: {account.id!r}")
            seen.add(account.id)
        return self


def load_config(
    config_path: str | None = None,
    env_prefix: str = "QUOTA_SENTINEL_",
) -> QuotaSentinelConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (QUOTA_SENTINEL_REFRESH_INTERVAL, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        QUOTA_SENTINEL_PREDICTION__MAX_HISTORY_DAYS=14  ->  prediction.max_history_days = 14
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return QuotaSentinelConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit).expanduser()
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("QUOTA_SENTINEL_CONFIG")
    if env_path:
        p = Path(env_path).expanduser()
        if not p.exists():
            raise ConfigError(
                f"Config file from QUOTA_SENTINEL_CONFIG not found: {env_path}",
                context={"field": "QUOTA_SENTINEL_CONFIG", "value": env_path},
            )
        return p

    default = Path(DEFAULT_CONFIG_FILENAME)
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # The config path variable is not a setting
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


class ConfigSource:
    """Read-fresh view over a configuration file.

    ``current()`` re-validates the YAML file whenever its modification stamp
    changes, so settings such as the refresh interval or the retention window
    take effect on the next read without an explicit restart. ``revision``
    increments on every successful reload. If a reload fails the last good
    configuration is kept and the error is logged.

    The file is resolved once, the same way ``load_config`` resolves it.
    """

    def __init__(
        self,
        config_path: str | None = None,
        env_prefix: str = "QUOTA_SENTINEL_",
        *,
        initial: QuotaSentinelConfig | None = None,
    ) -> None:
        self._env_prefix = env_prefix
        self._path: Path | None = None
        self._stamp: tuple[int, int] | None = None
        self._revision = 0
        if initial is not None:
            self._config = initial
        else:
            self._path = _resolve_config_path(config_path)
            self._config = load_config(
                str(self._path) if self._path is not None else None, env_prefix
            )
            self._stamp = self._file_stamp()

    @classmethod
    def from_config(cls, config: QuotaSentinelConfig) -> ConfigSource:
        """Wrap a fixed, in-memory configuration (no file watching)."""
        return cls(initial=config)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def revision(self) -> int:
        return self._revision

    def current(self) -> QuotaSentinelConfig:
        stamp = self._file_stamp()
        if stamp is not None and stamp != self._stamp:
            try:
                self._config = load_config(str(self._path), self._env_prefix)
                self._revision += 1
                logger.info("Configuration reloaded (revision %d)", self._revision)
            except ConfigError as e:
                logger.error("Keeping previous configuration, reload failed: %s", e)
            self._stamp = stamp
        return self._config

    def list_accounts(self) -> list[AccountRecord]:
        return list(self.current().accounts)

    def replace(self, config: QuotaSentinelConfig) -> None:
        """Swap in a new configuration object (used by embedders and tests)."""
        self._config = config
        self._revision += 1

    def _file_stamp(self) -> tuple[int, int] | None:
        if self._path is None:
            return None
        try:
            st = self._path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)
