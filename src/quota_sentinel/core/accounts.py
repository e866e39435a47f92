"""YAML-backed account records: add, rename, duplicate, toggle, remove."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from quota_sentinel.core.config import _load_yaml
from quota_sentinel.core.exceptions import AccountError, ConfigError
from quota_sentinel.core.models import AccountRecord

logger = logging.getLogger(__name__)


class AccountRepository:
    """Reads and edits the ``accounts:`` list of a quota-sentinel config file.

    Every mutation rewrites the file atomically and leaves every other top
    level key untouched, so a ConfigSource watching the same file picks the
    change up on its next read.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    # --- Queries ---

    def list_accounts(self) -> list[AccountRecord]:
        data = self._read()
        raw_accounts = data.get("accounts") or []
        if not isinstance(raw_accounts, list):
            raise ConfigError(
                "'accounts' must be a list",
                context={"field": "accounts", "value": str(self._path)},
            )
        try:
            return [AccountRecord.model_validate(item) for item in raw_accounts]
        except ValidationError as e:
            raise ConfigError(
                f"Invalid account record in {self._path}: {e}",
                context={"field": "accounts", "value": str(self._path)},
            ) from e

    def get(self, account_id: str) -> AccountRecord:
        for account in self.list_accounts():
            if account.id == account_id:
                return account
        raise AccountError(
            f"Account not found: {account_id!r}",
            context={"account_id": account_id},
        )

    # --- Mutations ---

    def add(
        self,
        platform_type: str,
        display_name: str,
        config: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> AccountRecord:
        """Append a new account with id ``<platform_type>-<epoch millis>``."""
        if not display_name.strip():
            raise AccountError("Account name must not be empty")
        accounts = self.list_accounts()
        record = AccountRecord(
            id=self._new_id(platform_type, accounts),
            platform_type=platform_type,
            display_name=display_name.strip(),
            enabled=enabled,
            config=dict(config or {}),
        )
        accounts.append(record)
        self._write_accounts(accounts)
        logger.info("Added account %s (%s)", record.id, record.display_name)
        return record

    def rename(self, account_id: str, display_name: str) -> AccountRecord:
        if not display_name.strip():
            raise AccountError(
                "Account name must not be empty",
                context={"account_id": account_id},
            )
        return self._update(account_id, display_name=display_name.strip())

    def set_enabled(self, account_id: str, enabled: bool) -> AccountRecord:
        return self._update(account_id, enabled=enabled)

    def update_config(self, account_id: str, config: dict[str, Any]) -> AccountRecord:
        return self._update(account_id, config=dict(config))

    def duplicate(self, account_id: str, display_name: str | None = None) -> AccountRecord:
        """Copy an account's type and config under a fresh id."""
        accounts = self.list_accounts()
        original = self._find(accounts, account_id)
        copy = original.model_copy(
            update={
                "id": self._new_id(original.platform_type, accounts),
                "display_name": (display_name or f"{original.display_name} (copy)").strip(),
            }
        )
        accounts.append(copy)
        self._write_accounts(accounts)
        logger.info("Duplicated account %s as %s", account_id, copy.id)
        return copy

    def remove(self, account_id: str) -> AccountRecord:
        accounts = self.list_accounts()
        removed = self._find(accounts, account_id)
        self._write_accounts([a for a in accounts if a.id != account_id])
        logger.info("Removed account %s", account_id)
        return removed

    # --- Internals ---

    def _update(self, account_id: str, **changes: Any) -> AccountRecord:
        accounts = self.list_accounts()
        current = self._find(accounts, account_id)
        updated = AccountRecord.model_validate({**current.model_dump(), **changes})
        self._write_accounts([updated if a.id == account_id else a for a in accounts])
        return updated

    @staticmethod
    def _find(accounts: list[AccountRecord], account_id: str) -> AccountRecord:
        for account in accounts:
            if account.id == account_id:
                return account
        raise AccountError(
            f"Account not found: {account_id!r}",
            context={"account_id": account_id},
        )

    @staticmethod
    def _new_id(platform_type: str, existing: list[AccountRecord]) -> str:
        taken = {a.id for a in existing}
        stamp = int(time.time() * 1000)
        candidate = f"{platform_type}-{stamp}"
        while candidate in taken:
            stamp += 1
            candidate = f"{platform_type}-{stamp}"
        return candidate

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        return _load_yaml(self._path)

    def _write_accounts(self, accounts: list[AccountRecord]) -> None:
        data = self._read()
        data["accounts"] = [a.model_dump(mode="json") for a in accounts]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp_path, self._path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ConfigError(
                f"Failed to write accounts to {self._path}: {e}",
                context={"field": "accounts", "value": str(self._path)},
            ) from e
