"""Adapter protocol and the shared base class for platform adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from quota_sentinel.core import (
    AccountRecord,
    AccountUsage,
    AdapterConfigError,
    ConfigField,
    FetchError,
    FetchResult,
    UsageSnapshot,
)

logger = logging.getLogger("quota_sentinel.adapters")

DEFAULT_TIMEOUT = 30.0


@runtime_checkable
class UsageAdapter(Protocol):
    """Protocol for anything that can report one account's remaining quota."""

    @property
    def account_id(self) -> str: ...

    @property
    def display_name(self) -> str: ...

    @property
    def platform_type(self) -> str: ...

    def is_configured(self) -> bool: ...

    def is_enabled(self) -> bool: ...

    def set_enabled(self, enabled: bool) -> None: ...

    def get_config(self) -> dict[str, Any]: ...

    async def fetch_usage(self) -> FetchResult: ...


class AdapterSettings(BaseModel):
    """Base for per-platform settings models.

    Unknown keys are rejected. Numbers given for string fields (a YAML
    ``user_id: 42``, say) are kept as their string form.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", coerce_numbers_to_str=True)


class BaseAdapter(ABC):
    """Common adapter behavior: validated settings, error capture, JSON GETs.

    Subclasses declare ``platform_type``, ``platform_name``,
    ``settings_model`` and ``config_schema``, and implement
    ``is_configured()`` plus ``_fetch()``. ``fetch_usage()`` never raises:
    anything ``_fetch()`` throws is reported through ``FetchResult.error``.
    """

    platform_type: ClassVar[str]
    platform_name: ClassVar[str]
    settings_model: ClassVar[type[AdapterSettings]] = AdapterSettings
    config_schema: ClassVar[tuple[ConfigField, ...]] = ()
    console_url: ClassVar[str | None] = None

    def __init__(
        self,
        account_id: str,
        display_name: str,
        config: dict[str, Any] | None = None,
        *,
        enabled: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        try:
            self._settings = self.settings_model.model_validate(config or {})
        except ValidationError as e:
            raise AdapterConfigError(
                f"Invalid {self.platform_type} config for {account_id}: {e}",
                context={"account_id": account_id, "platform_type": self.platform_type},
            ) from e
        self._account_id = account_id
        self._display_name = display_name
        self._enabled = enabled
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_record(cls, record: AccountRecord, **kwargs: Any) -> BaseAdapter:
        return cls(
            record.id,
            record.display_name,
            record.config,
            enabled=record.enabled,
            **kwargs,
        )

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def display_name(self) -> str:
        return self._display_name

    @property
    def settings(self) -> AdapterSettings:
        return self._settings

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def get_config(self) -> dict[str, Any]:
        return self._settings.model_dump()

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether required credentials are present. Must not touch the network."""

    @abstractmethod
    async def _fetch(self) -> list[UsageSnapshot]:
        """Query the platform and map its response to snapshots."""

    async def fetch_usage(self) -> FetchResult:
        if not self.is_configured():
            return FetchResult(
                configured=False,
                error=f"{self.platform_name} not configured",
            )

        logger.debug("Fetching %s usage for %s", self.platform_type, self._account_id)
        try:
            snapshots = await self._fetch()
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                "Failed to fetch %s usage for %s: %s",
                self.platform_type, self._account_id, message,
            )
            return FetchResult(configured=True, error=message)

        usage = AccountUsage(
            account_id=self._account_id,
            platform_type=self.platform_type,
            display_name=self._display_name,
            snapshots=snapshots,
            fetched_at=datetime.now(timezone.utc),
            enabled=self._enabled,
        )
        logger.info(
            "Fetched %s usage for %s: %d metric(s)",
            self.platform_type, self._account_id, len(snapshots),
        )
        return FetchResult(configured=True, usage=usage)

    # --- Helpers for subclasses ---

    @staticmethod
    def _snapshot(
        remaining: float,
        total: float,
        percentage: float,
        unit: str = "",
        label: str = "",
    ) -> UsageSnapshot:
        return UsageSnapshot(
            remaining=remaining,
            total=total,
            percentage=percentage,
            unit=unit,
            label=label,
            timestamp=datetime.now(timezone.utc),
        )

    @staticmethod
    def _remaining_percentage(remaining: float, total: float) -> float:
        """Remaining share of total, clamped to [0, 100]; 0 when total is unknown."""
        if total <= 0:
            return 0.0
        return max(0.0, min(remaining / total * 100.0, 100.0))

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """GET a JSON document, mapping transport and HTTP failures to FetchError."""
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=request_headers, params=params)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                    response = await client.get(url, headers=request_headers, params=params)
        except httpx.TimeoutException as e:
            raise FetchError(
                f"Request timed out: {url}",
                context={"url": url, "status_code": None},
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                f"HTTP request failed: {e}",
                context={"url": url, "status_code": None},
            ) from e

        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code} from {url}",
                context={"url": url, "status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                f"Invalid JSON from {url}",
                context={"url": url, "status_code": response.status_code},
            ) from e
