"""DeepSeek account balance adapter."""

from __future__ import annotations

from typing import Any

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import ConfigField, FetchError, FieldType, UsageSnapshot

_BALANCE_URL = "https://api.deepseek.com/user/balance"


class DeepSeekSettings(AdapterSettings):
    api_key: str = ""
    balance_limit: float = 100.0


class DeepSeekAdapter(BaseAdapter):
    """Reports the prepaid balance against a user-chosen ``balance_limit``.

    DeepSeek exposes no quota ceiling, so the percentage is computed against
    the configured limit and capped at 100.
    """

    platform_type = "deepseek"
    platform_name = "DeepSeek"
    settings_model = DeepSeekSettings
    console_url = "https://platform.deepseek.com/usage"
    config_schema = (
        ConfigField(
            key="api_key",
            label="API Key",
            default="",
            secret=True,
            description="Your DeepSeek API key",
        ),
        ConfigField(
            key="balance_limit",
            type=FieldType.NUMBER,
            label="Balance Limit",
            default=100.0,
            description="Expected balance ceiling used for the percentage",
        ),
    )

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    async def _fetch(self) -> list[UsageSnapshot]:
        data = await self._get_json(
            _BALANCE_URL,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
        )
        if not isinstance(data, dict):
            raise FetchError("Unexpected DeepSeek response", context={"url": _BALANCE_URL})
        if data.get("error"):
            raise FetchError(
                f"DeepSeek API error: {data['error']}",
                context={"url": _BALANCE_URL},
            )

        balance, currency = _parse_balance(data)
        limit = self._settings.balance_limit
        return [
            self._snapshot(
                remaining=balance,
                total=limit,
                percentage=self._remaining_percentage(balance, limit),
                unit=currency,
                label="Balance",
            )
        ]


def _parse_balance(data: dict[str, Any]) -> tuple[float, str]:
    """Extract (balance, currency) from either response shape DeepSeek has used."""
    infos = data.get("balance_infos")
    if isinstance(infos, list) and infos:
        first = infos[0]
        return float(first.get("total_balance", 0) or 0), str(first.get("currency") or "CNY")
    return float(data.get("balance", 0) or 0), str(data.get("currency") or "CNY")
