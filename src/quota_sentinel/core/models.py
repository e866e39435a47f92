"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# --- Type Aliases ---

AccountId = str
PlatformTypeId = str

# --- Constants ---

BALANCE_ONLY = -1.0
"""Percentage sentinel: the snapshot is an absolute balance, not a share of a known total."""

MAX_POINTS_PER_ACCOUNT = 1000

# --- Enumerations ---


class FieldType(StrEnum):
    """Input types for platform configuration fields."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"


class PredictionMethod(StrEnum):
    """Depletion rate estimators."""

    ENDPOINTS = "endpoints"
    LEAST_SQUARES = "least_squares"


class SchedulerState(StrEnum):
    """Refresh scheduler lifecycle states."""

    IDLE = "idle"
    SCHEDULED = "scheduled"


# --- Account Models ---


class AccountRecord(BaseModel):
    """A persisted, user-configured connection to one platform."""

    model_config = ConfigDict(frozen=True)

    id: AccountId
    platform_type: PlatformTypeId
    display_name: str
    enabled: bool = True
    config: dict[str, Any] = {}

    @field_validator("id", "platform_type")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class ConfigField(BaseModel):
    """Declarative description of one platform configuration field.

    Consumed only by configuration front-ends (the CLI ``platforms`` command
    and ``accounts add`` prompts); adapters validate through their own
    settings model.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    type: FieldType = FieldType.STRING
    label: str
    default: Any = None
    secret: bool = False
    choices: list[str] = []
    description: str = ""


# --- Usage Models ---


class UsageSnapshot(BaseModel):
    """One remaining-quota reading reported by an adapter."""

    model_config = ConfigDict(frozen=True)

    remaining: float
    total: float
    unit: str = ""
    percentage: float
    label: str = ""
    timestamp: datetime

    @field_validator("percentage")
    @classmethod
    def percentage_in_range(cls, v: float) -> float:
        if v == BALANCE_ONLY:
            return v
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"percentage must be in [0, 100] or -1, got {v}")
        return v

    @property
    def is_balance_only(self) -> bool:
        return self.percentage == BALANCE_ONLY


class AccountUsage(BaseModel):
    """All snapshots fetched for one account in one refresh."""

    model_config = ConfigDict(frozen=True)

    account_id: AccountId
    platform_type: PlatformTypeId
    display_name: str
    snapshots: list[UsageSnapshot]
    fetched_at: datetime
    enabled: bool = True

    @property
    def primary(self) -> UsageSnapshot | None:
        """The snapshot that feeds history and prediction."""
        return self.snapshots[0] if self.snapshots else None


class FetchResult(BaseModel):
    """Outcome of one adapter fetch. Failures live in ``error``, never raised."""

    model_config = ConfigDict(frozen=True)

    configured: bool
    usage: AccountUsage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.configured and self.usage is not None and self.error is None


# --- History Models ---


class UsageDataPoint(BaseModel):
    """A single history sample for one account."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    remaining: float
    total: float

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_json(self) -> dict[str, Any]:
        """Serialize with an epoch-millisecond timestamp."""
        return {
            "timestamp": int(round(self.timestamp.timestamp() * 1000)),
            "remaining": self.remaining,
            "total": self.total,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> UsageDataPoint:
        raw_ts = data["timestamp"]
        if isinstance(raw_ts, (int, float)):
            ts = datetime.fromtimestamp(raw_ts / 1000, tz=timezone.utc)
        else:
            ts = datetime.fromisoformat(str(raw_ts))
        return cls(
            timestamp=ts,
            remaining=float(data["remaining"]),
            total=float(data["total"]),
        )


# --- Prediction Models ---


class PredictionResult(BaseModel):
    """Linear depletion forecast derived from one account's history."""

    model_config = ConfigDict(frozen=True)

    available: bool
    daily_usage_rate: float = 0.0
    days_until_depletion: float | None = None
    estimated_depletion_date: datetime | None = None
    method: PredictionMethod = PredictionMethod.ENDPOINTS
    reason: str | None = None

    @classmethod
    def unavailable(
        cls,
        reason: str,
        method: PredictionMethod = PredictionMethod.ENDPOINTS,
    ) -> PredictionResult:
        return cls(available=False, method=method, reason=reason)
