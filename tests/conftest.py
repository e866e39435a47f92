"""Shared pytest fixtures for quota-sentinel."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from quota_sentinel.core.models import (
    AccountRecord,
    AccountUsage,
    FetchResult,
    UsageDataPoint,
    UsageSnapshot,
)

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable "now" for history and prediction tests."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now += delta
        return self.now


class FakeAdapter:
    """In-memory adapter satisfying the UsageAdapter protocol."""

    def __init__(
        self,
        account_id: str,
        display_name: str | None = None,
        *,
        platform_type: str = "fake",
        configured: bool = True,
        enabled: bool = True,
        remaining: float = 80.0,
        total: float = 100.0,
        error: str | None = None,
        raises: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._account_id = account_id
        self._display_name = display_name or account_id
        self._platform_type = platform_type
        self._configured = configured
        self._enabled = enabled
        self.remaining = remaining
        self.total = total
        self.error = error
        self.raises = raises
        self.delay = delay
        self.calls = 0

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def display_name(self) -> str:
        return self._display_name

    @property
    def platform_type(self) -> str:
        return self._platform_type

    def is_configured(self) -> bool:
        return self._configured

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def get_config(self) -> dict:
        return {}

    async def fetch_usage(self) -> FetchResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        if not self._configured:
            return FetchResult(configured=False, error="fake not configured")
        if self.error is not None:
            return FetchResult(configured=True, error=self.error)
        now = datetime.now(timezone.utc)
        snapshot = UsageSnapshot(
            remaining=self.remaining,
            total=self.total,
            percentage=self.remaining / self.total * 100 if self.total else 0.0,
            unit="USD",
            label="Balance",
            timestamp=now,
        )
        return FetchResult(
            configured=True,
            usage=AccountUsage(
                account_id=self._account_id,
                platform_type=self._platform_type,
                display_name=self._display_name,
                snapshots=[snapshot],
                fetched_at=now,
                enabled=self._enabled,
            ),
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deepseek_record() -> AccountRecord:
    return AccountRecord(
        id="deepseek-1700000000000",
        platform_type="deepseek",
        display_name="DeepSeek Main",
        config={"api_key": "sk-test", "balance_limit": 50},
    )


@pytest.fixture
def newapi_record() -> AccountRecord:
    return AccountRecord(
        id="newapi-1700000000001",
        platform_type="newapi",
        display_name="Gateway",
        config={
            "api_url": "https://gateway.example.com",
            "api_key": "token-abc",
            "user_id": "42",
        },
    )


@pytest.fixture
def sample_series() -> list[UsageDataPoint]:
    """Two points one day apart: 100 -> 80."""
    return [
        UsageDataPoint(timestamp=T0, remaining=100.0, total=100.0),
        UsageDataPoint(timestamp=T0 + timedelta(days=1), remaining=80.0, total=100.0),
    ]


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a quota-sentinel.yml under tmp_path and return its path."""

    def _write(data: dict | None = None, name: str = "quota-sentinel.yml") -> Path:
        payload = {"storage": {"history_path": str(tmp_path / "history.json")}}
        payload.update(data or {})
        path = tmp_path / name
        path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path: Path):
    """Keep host QUOTA_SENTINEL_* variables and ./quota-sentinel.yml out of tests."""
    for key in list(os.environ):
        if key.startswith("QUOTA_SENTINEL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def make_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter
