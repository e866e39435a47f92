"""Platform type table: type id -> adapter constructor + config schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from quota_sentinel.core import (
    AccountRecord,
    AdapterConfigError,
    ConfigField,
    UnknownPlatformError,
)

if TYPE_CHECKING:
    from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter, UsageAdapter

AdapterConstructor = Callable[..., "UsageAdapter"]
"""Called as ``constructor(record, **options)``; returns an adapter for the record."""


@dataclass(frozen=True)
class PlatformType:
    """A platform that accounts can be created for."""

    id: str
    display_name: str
    constructor: AdapterConstructor
    config_schema: tuple[ConfigField, ...] = field(default_factory=tuple)
    console_url: str | None = None
    settings_model: type[AdapterSettings] | None = None

    @classmethod
    def for_adapter(cls, adapter_class: type[BaseAdapter]) -> PlatformType:
        """Describe a BaseAdapter subclass using its class-level metadata."""
        return cls(
            id=adapter_class.platform_type,
            display_name=adapter_class.platform_name,
            constructor=adapter_class.from_record,
            config_schema=tuple(adapter_class.config_schema),
            console_url=adapter_class.console_url,
            settings_model=adapter_class.settings_model,
        )

    def create(self, record: AccountRecord, **options: Any) -> UsageAdapter:
        return self.constructor(record, **options)

    def default_config(self) -> dict[str, Any]:
        return {f.key: f.default for f in self.config_schema}

    def validate_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Check account settings before they are stored.

        Returns the normalized settings (numbers coerced, defaults filled).
        Platforms registered without a settings model pass ``config`` through.
        """
        if self.settings_model is None:
            return dict(config)
        try:
            return self.settings_model.model_validate(config).model_dump()
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise AdapterConfigError(
                f"Invalid {self.id} settings: {problems}",
                context={"platform_type": self.id},
            ) from e


class PlatformTypeRegistry:
    """Registry of available platform types.

    Populated by an explicit startup call (see
    ``quota_sentinel.adapters.register_builtin_platforms``), never by
    import side effects.
    """

    def __init__(self) -> None:
        self._types: dict[str, PlatformType] = {}

    def register(self, platform: PlatformType) -> None:
        if platform.id in self._types:
            raise ValueError(
                f"Platform type '{platform.id}' is already registered. Use replace() to override."
            )
        self._types[platform.id] = platform

    def replace(self, platform: PlatformType) -> None:
        if platform.id not in self._types:
            raise KeyError(f"Platform type '{platform.id}' is not registered.")
        self._types[platform.id] = platform

    def get(self, type_id: str) -> PlatformType | None:
        return self._types.get(type_id)

    def require(self, type_id: str) -> PlatformType:
        platform = self._types.get(type_id)
        if platform is None:
            raise UnknownPlatformError(
                f"Unknown platform type: {type_id}",
                context={"platform_type": type_id},
            )
        return platform

    def get_all(self) -> list[PlatformType]:
        return list(self._types.values())

    def list_ids(self) -> list[str]:
        return list(self._types.keys())

    def has(self, type_id: str) -> bool:
        return type_id in self._types

    def __len__(self) -> int:
        return len(self._types)
