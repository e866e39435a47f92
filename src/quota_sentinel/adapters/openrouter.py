"""OpenRouter credits adapter."""

from __future__ import annotations

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import ConfigField, FetchError, UsageSnapshot

_CREDITS_URL = "https://openrouter.ai/api/v1/credits"


class OpenRouterSettings(AdapterSettings):
    api_key: str = ""


class OpenRouterAdapter(BaseAdapter):
    """Remaining credits = purchased credits minus lifetime usage."""

    platform_type = "openrouter"
    platform_name = "OpenRouter"
    settings_model = OpenRouterSettings
    console_url = "https://openrouter.ai/credits"
    config_schema = (
        ConfigField(
            key="api_key",
            label="API Key",
            default="",
            secret=True,
            description="Your OpenRouter API key",
        ),
    )

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    async def _fetch(self) -> list[UsageSnapshot]:
        payload = await self._get_json(
            _CREDITS_URL,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise FetchError("No data returned from OpenRouter", context={"url": _CREDITS_URL})

        total_credits = float(data.get("total_credits", 0) or 0)
        total_usage = float(data.get("total_usage", 0) or 0)
        remaining = total_credits - total_usage
        return [
            self._snapshot(
                remaining=remaining,
                total=total_credits,
                percentage=self._remaining_percentage(remaining, total_credits),
                unit="USD",
                label="Credits",
            )
        ]
