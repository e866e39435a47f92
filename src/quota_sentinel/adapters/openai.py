"""OpenAI monthly spend adapter."""

from __future__ import annotations

import calendar
from datetime import date

from pydantic import field_validator

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import ConfigField, FetchError, FieldType, UsageSnapshot

_USAGE_URL = "https://api.openai.com/v1/usage"


class OpenAISettings(AdapterSettings):
    api_key: str = ""
    monthly_limit: float = 20.0

    @field_validator("monthly_limit")
    @classmethod
    def limit_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("monthly_limit must be > 0")
        return v


class OpenAIAdapter(BaseAdapter):
    """Budget remaining this month: ``monthly_limit`` minus spend so far.

    The usage endpoint reports ``total_usage`` in cents.
    """

    platform_type = "openai"
    platform_name = "OpenAI"
    settings_model = OpenAISettings
    console_url = "https://platform.openai.com/usage"
    config_schema = (
        ConfigField(
            key="api_key",
            label="API Key",
            default="",
            secret=True,
            description="Your OpenAI API key",
        ),
        ConfigField(
            key="monthly_limit",
            type=FieldType.NUMBER,
            label="Monthly Limit (USD)",
            default=20.0,
            description="Expected monthly spending limit",
        ),
    )

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    async def _fetch(self) -> list[UsageSnapshot]:
        start, end = _current_month(date.today())
        data = await self._get_json(
            _USAGE_URL,
            headers={"Authorization": f"Bearer {self._settings.api_key}"},
            params={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
        if not isinstance(data, dict):
            raise FetchError("Unexpected OpenAI response", context={"url": _USAGE_URL})

        spent = float(data.get("total_usage", 0) or 0) / 100.0
        limit = self._settings.monthly_limit
        remaining = max(limit - spent, 0.0)
        return [
            self._snapshot(
                remaining=remaining,
                total=limit,
                percentage=self._remaining_percentage(remaining, limit),
                unit="USD",
                label="Monthly budget",
            )
        ]


def _current_month(today: date) -> tuple[date, date]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)
