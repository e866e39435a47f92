"""Builds adapter instances from persisted account records."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from quota_sentinel.adapters.base import UsageAdapter
from quota_sentinel.adapters.platforms import PlatformTypeRegistry
from quota_sentinel.core import AccountRecord, UnknownPlatformError

logger = logging.getLogger("quota_sentinel.adapters")


@runtime_checkable
class AccountSource(Protocol):
    """Anything that can list the persisted account records."""

    def list_accounts(self) -> list[AccountRecord]: ...


class AdapterFactory:
    """Maps AccountRecords to adapters through a PlatformTypeRegistry.

    Extra keyword ``options`` (e.g. ``timeout``, ``client``) are forwarded to
    every adapter constructor.
    """

    def __init__(
        self,
        platform_types: PlatformTypeRegistry,
        account_source: AccountSource | None = None,
        **options: Any,
    ) -> None:
        self._platform_types = platform_types
        self._account_source = account_source
        self._options = options

    @property
    def platform_types(self) -> PlatformTypeRegistry:
        return self._platform_types

    def create_adapter(self, record: AccountRecord) -> UsageAdapter | None:
        """Build one adapter, or return None (logged) if the record is unusable."""
        try:
            platform = self._platform_types.require(record.platform_type)
        except UnknownPlatformError:
            logger.error(
                "Unknown platform type %r for account %s; skipping",
                record.platform_type, record.id,
            )
            return None

        try:
            return platform.create(record, **self._options)
        except Exception as e:
            logger.error("Failed to create adapter for %s: %s", record.id, e)
            return None

    def create_adapters_from_config(self) -> list[UsageAdapter]:
        """Build adapters for every persisted account, skipping unusable records."""
        if self._account_source is None:
            return []

        adapters: list[UsageAdapter] = []
        for record in self._account_source.list_accounts():
            adapter = self.create_adapter(record)
            if adapter is not None:
                adapters.append(adapter)

        logger.info("Created %d adapters from configuration", len(adapters))
        return adapters
