"""Adapter for self-hosted "New API" gateways and their mirrors."""

from __future__ import annotations

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import BALANCE_ONLY, ConfigField, FetchError, UsageSnapshot

_SELF_PATH = "/api/user/self"


class NewAPISettings(AdapterSettings):
    api_url: str = ""
    api_key: str = ""
    user_id: str = ""


class NewAPIAdapter(BaseAdapter):
    """Reads ``quota``/``used_quota`` from ``{api_url}/api/user/self``.

    The gateway reports an absolute quota in its own units, so snapshots are
    balance-only (percentage -1).
    """

    platform_type = "newapi"
    platform_name = "New API"
    settings_model = NewAPISettings
    config_schema = (
        ConfigField(
            key="api_url",
            label="API URL",
            default="",
            description="Base URL of the gateway, e.g. https://gateway.example.com",
        ),
        ConfigField(
            key="api_key",
            label="API Key",
            default="",
            secret=True,
            description="Access token sent as a Bearer token",
        ),
        ConfigField(
            key="user_id",
            label="User ID",
            default="",
            description="Sent in the New-Api-User header",
        ),
    )

    def is_configured(self) -> bool:
        s = self._settings
        return bool(s.api_url and s.api_key and s.user_id)

    @property
    def endpoint(self) -> str:
        url = self._settings.api_url
        if url.endswith(_SELF_PATH):
            return url
        return url.rstrip("/") + _SELF_PATH

    async def _fetch(self) -> list[UsageSnapshot]:
        url = self.endpoint
        payload = await self._get_json(
            url,
            headers={
                "Authorization": f"Bearer {self._settings.api_key}",
                "New-Api-User": self._settings.user_id,
            },
        )
        if not isinstance(payload, dict) or not payload.get("success"):
            message = payload.get("message") if isinstance(payload, dict) else None
            raise FetchError(message or "API request failed", context={"url": url})

        data = payload.get("data")
        if not isinstance(data, dict):
            raise FetchError("No data returned from API", context={"url": url})

        quota = float(data.get("quota", 0) or 0)
        used = float(data.get("used_quota", 0) or 0)
        return [
            self._snapshot(
                remaining=quota - used,
                total=quota,
                percentage=BALANCE_ONLY,
                label="Remaining quota",
            )
        ]
