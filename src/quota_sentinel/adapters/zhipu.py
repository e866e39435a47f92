"""Zhipu AI (BigModel) coding-plan quota adapter."""

from __future__ import annotations

from typing import Any, Literal

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import ConfigField, FetchError, FieldType, UsageSnapshot

_ENDPOINTS = {
    "production": "https://open.bigmodel.cn/api/monitor/usage/quota/limit",
    "development": "https://dev.bigmodel.cn/api/monitor/usage/quota/limit",
}

_LIMIT_LABELS = {
    "TOKENS_LIMIT": "Token (5h)",
    "TIME_LIMIT": "MCP (monthly)",
}


class ZhipuSettings(AdapterSettings):
    token: str = ""
    environment: Literal["production", "development"] = "production"


class ZhipuAdapter(BaseAdapter):
    """One snapshot per quota limit reported by the platform.

    Zhipu reports the *used* percentage of each limit; remaining is expressed
    as ``100 - percentage`` out of a total of 100.
    """

    platform_type = "zhipu"
    platform_name = "Zhipu AI"
    settings_model = ZhipuSettings
    console_url = "https://open.bigmodel.cn/usercenter/billing"
    config_schema = (
        ConfigField(
            key="token",
            label="Authorization Token",
            default="",
            secret=True,
            description="Your Zhipu AI authorization token",
        ),
        ConfigField(
            key="environment",
            type=FieldType.ENUM,
            label="Environment",
            default="production",
            choices=["production", "development"],
            description="API environment to use",
        ),
    )

    def is_configured(self) -> bool:
        return bool(self._settings.token)

    @property
    def endpoint(self) -> str:
        return _ENDPOINTS[self._settings.environment]

    async def _fetch(self) -> list[UsageSnapshot]:
        url = self.endpoint
        payload = await self._get_json(
            url,
            headers={
                "Authorization": self._settings.token,
                "Accept-Language": "en-US,en",
            },
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        limits = data.get("limits") if isinstance(data, dict) else None
        if not isinstance(limits, list):
            msg = payload.get("msg") if isinstance(payload, dict) else None
            raise FetchError(
                f"Zhipu AI API error: {msg or 'No data returned'}",
                context={"url": url},
            )
        return [self._limit_snapshot(limit) for limit in limits if isinstance(limit, dict)]

    def _limit_snapshot(self, limit: dict[str, Any]) -> UsageSnapshot:
        used_pct = max(0.0, min(float(limit.get("percentage", 0) or 0), 100.0))
        remaining_pct = 100.0 - used_pct
        limit_type = str(limit.get("type", "UNKNOWN"))
        return self._snapshot(
            remaining=remaining_pct,
            total=100.0,
            percentage=remaining_pct,
            unit="%",
            label=_LIMIT_LABELS.get(limit_type, limit_type),
        )
