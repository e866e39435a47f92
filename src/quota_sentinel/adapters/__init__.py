"""quota_sentinel.adapters: Platform adapters, registry, and factory."""

from quota_sentinel.adapters.base import (
    AdapterSettings,
    BaseAdapter,
    UsageAdapter,
)
from quota_sentinel.adapters.claude import ClaudeAdapter
from quota_sentinel.adapters.deepseek import DeepSeekAdapter
from quota_sentinel.adapters.factory import AccountSource, AdapterFactory
from quota_sentinel.adapters.newapi import NewAPIAdapter
from quota_sentinel.adapters.openai import OpenAIAdapter
from quota_sentinel.adapters.openrouter import OpenRouterAdapter
from quota_sentinel.adapters.platforms import (
    AdapterConstructor,
    PlatformType,
    PlatformTypeRegistry,
)
from quota_sentinel.adapters.registry import AdapterRegistry
from quota_sentinel.adapters.zhipu import ZhipuAdapter

BUILTIN_ADAPTERS: tuple[type[BaseAdapter], ...] = (
    ZhipuAdapter,
    ClaudeAdapter,
    DeepSeekAdapter,
    OpenAIAdapter,
    OpenRouterAdapter,
    NewAPIAdapter,
)


def register_builtin_platforms(types: PlatformTypeRegistry) -> PlatformTypeRegistry:
    """Register every built-in platform. Call once at startup."""
    for adapter_class in BUILTIN_ADAPTERS:
        types.register(PlatformType.for_adapter(adapter_class))
    return types


def default_platform_types() -> PlatformTypeRegistry:
    """A fresh platform table holding the built-in platforms."""
    return register_builtin_platforms(PlatformTypeRegistry())


__all__ = [
    "AccountSource",
    "AdapterConstructor",
    "AdapterFactory",
    "AdapterRegistry",
    "AdapterSettings",
    "BaseAdapter",
    "BUILTIN_ADAPTERS",
    "ClaudeAdapter",
    "DeepSeekAdapter",
    "NewAPIAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "PlatformType",
    "PlatformTypeRegistry",
    "UsageAdapter",
    "ZhipuAdapter",
    "default_platform_types",
    "register_builtin_platforms",
]
