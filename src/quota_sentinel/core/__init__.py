"""quota_sentinel.core: Foundation types, config, and exceptions."""

from quota_sentinel.core.accounts import AccountRepository
from quota_sentinel.core.config import (
    AlertsConfig,
    ConfigSource,
    MonitorConfig,
    PredictionConfig,
    QuotaSentinelConfig,
    StorageConfig,
    load_config,
)
from quota_sentinel.core.exceptions import (
    AccountError,
    AdapterConfigError,
    AdapterError,
    ConfigError,
    FetchError,
    QuotaSentinelError,
    SchedulerError,
    StorageError,
    UnknownPlatformError,
)
from quota_sentinel.core.models import (
    BALANCE_ONLY,
    MAX_POINTS_PER_ACCOUNT,
    AccountId,
    AccountRecord,
    AccountUsage,
    ConfigField,
    FetchResult,
    FieldType,
    PlatformTypeId,
    PredictionMethod,
    PredictionResult,
    SchedulerState,
    UsageDataPoint,
    UsageSnapshot,
)

__all__ = [
    # Type aliases
    "AccountId",
    "PlatformTypeId",
    # Constants
    "BALANCE_ONLY",
    "MAX_POINTS_PER_ACCOUNT",
    # Enums
    "FieldType",
    "PredictionMethod",
    "SchedulerState",
    # Models
    "AccountRecord",
    "AccountUsage",
    "ConfigField",
    "FetchResult",
    "PredictionResult",
    "UsageDataPoint",
    "UsageSnapshot",
    # Config
    "QuotaSentinelConfig",
    "PredictionConfig",
    "AlertsConfig",
    "StorageConfig",
    "MonitorConfig",
    "ConfigSource",
    "AccountRepository",
    "load_config",
    # Exceptions
    "QuotaSentinelError",
    "ConfigError",
    "AdapterError",
    "FetchError",
    "AdapterConfigError",
    "UnknownPlatformError",
    "StorageError",
    "SchedulerError",
    "AccountError",
]
