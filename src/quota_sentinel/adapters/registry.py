"""In-memory registry of adapter instances keyed by account id."""

from __future__ import annotations

import logging
from typing import Iterator

from quota_sentinel.adapters.base import UsageAdapter

logger = logging.getLogger("quota_sentinel.adapters")


class AdapterRegistry:
    """Adapter instances in registration order.

    Bulk configuration changes are applied with ``clear()`` followed by
    re-registration; there is no incremental diffing.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, UsageAdapter] = {}

    def register(self, adapter: UsageAdapter) -> None:
        """Add an adapter. An existing adapter with the same id is replaced in place."""
        self._adapters[adapter.account_id] = adapter
        logger.debug("Registered adapter: %s (%s)", adapter.account_id, adapter.display_name)

    def unregister(self, account_id: str) -> UsageAdapter | None:
        adapter = self._adapters.pop(account_id, None)
        if adapter is not None:
            logger.debug("Unregistered adapter: %s", account_id)
        return adapter

    def get(self, account_id: str) -> UsageAdapter | None:
        return self._adapters.get(account_id)

    def get_all(self) -> list[UsageAdapter]:
        return list(self._adapters.values())

    def get_configured(self) -> list[UsageAdapter]:
        return [a for a in self._adapters.values() if a.is_configured()]

    def get_enabled(self) -> list[UsageAdapter]:
        return [a for a in self._adapters.values() if a.is_enabled()]

    def get_active(self) -> list[UsageAdapter]:
        """Adapters that are both configured and enabled."""
        return [a for a in self._adapters.values() if a.is_configured() and a.is_enabled()]

    def has(self, account_id: str) -> bool:
        return account_id in self._adapters

    def clear(self) -> None:
        self._adapters.clear()
        logger.debug("Cleared all adapters")

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._adapters

    def __iter__(self) -> Iterator[UsageAdapter]:
        return iter(list(self._adapters.values()))
