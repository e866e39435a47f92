"""Anthropic (Claude) organization usage-report adapter."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal

from pydantic import field_validator

from quota_sentinel.adapters.base import AdapterSettings, BaseAdapter
from quota_sentinel.core import ConfigField, FetchError, FieldType, UsageSnapshot

_MESSAGES_URL = "https://api.anthropic.com/v1/organizations/usage_report/messages"
_CLAUDE_CODE_URL = "https://api.anthropic.com/v1/organizations/usage_report/claude_code"
_API_VERSION = "2023-06-01"
_MAX_PAGES = 20

# Approximate list prices, USD per million tokens.
_INPUT_PRICE_PER_MTOK = 3.0
_OUTPUT_PRICE_PER_MTOK = 15.0


class ClaudeSettings(AdapterSettings):
    api_key: str = ""
    report_type: Literal["messages", "claude_code"] = "messages"
    monthly_limit: float = 20.0
    daily_session_limit: float = 50.0
    daily_cost_limit: float = 5.0

    @field_validator("monthly_limit", "daily_session_limit", "daily_cost_limit")
    @classmethod
    def limit_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("limits must be > 0")
        return v


class ClaudeAdapter(BaseAdapter):
    """Budget left against the Admin API usage reports.

    ``messages`` estimates this month's spend from token counts and compares
    it with ``monthly_limit``. ``claude_code`` sums today's estimated cost and
    session count against the daily limits.
    """

    platform_type = "claude"
    platform_name = "Claude"
    settings_model = ClaudeSettings
    console_url = "https://console.anthropic.com/settings/usage"
    config_schema = (
        ConfigField(
            key="api_key",
            label="Admin API Key",
            default="",
            secret=True,
            description="Anthropic Admin API key (Settings > Organization > API Keys)",
        ),
        ConfigField(
            key="report_type",
            type=FieldType.ENUM,
            label="Report Type",
            default="messages",
            choices=["messages", "claude_code"],
            description="Which usage report to read",
        ),
        ConfigField(
            key="monthly_limit",
            type=FieldType.NUMBER,
            label="Monthly Limit (USD)",
            default=20.0,
            description="Spending limit for the messages report",
        ),
        ConfigField(
            key="daily_session_limit",
            type=FieldType.NUMBER,
            label="Daily Session Limit",
            default=50.0,
            description="Session limit for the claude_code report",
        ),
        ConfigField(
            key="daily_cost_limit",
            type=FieldType.NUMBER,
            label="Daily Cost Limit (USD)",
            default=5.0,
            description="Spending limit for the claude_code report",
        ),
    )

    def is_configured(self) -> bool:
        return bool(self._settings.api_key)

    async def _fetch(self) -> list[UsageSnapshot]:
        if self._settings.report_type == "claude_code":
            return await self._fetch_claude_code()
        return await self._fetch_messages()

    async def _fetch_messages(self) -> list[UsageSnapshot]:
        start, end = _month_bounds(datetime.now(timezone.utc))
        buckets = await self._get_report(
            _MESSAGES_URL,
            {
                "starting_at": start.isoformat().replace("+00:00", "Z"),
                "ending_at": end.isoformat().replace("+00:00", "Z"),
                "bucket_width": "1d",
            },
        )

        input_tokens = output_tokens = 0
        for bucket in buckets:
            for result in bucket.get("results") or []:
                input_tokens += int(result.get("uncached_input_tokens") or 0)
                output_tokens += int(result.get("output_tokens") or 0)

        spent = (
            input_tokens / 1_000_000 * _INPUT_PRICE_PER_MTOK
            + output_tokens / 1_000_000 * _OUTPUT_PRICE_PER_MTOK
        )
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

    async def _fetch_claude_code(self) -> list[UsageSnapshot]:
        records = await self._get_report(
            _CLAUDE_CODE_URL,
            {"starting_at": date.today().isoformat(), "limit": "100"},
        )

        sessions = 0
        cost = 0.0
        for record in records:
            sessions += int((record.get("core_metrics") or {}).get("num_sessions") or 0)
            for breakdown in record.get("model_breakdown") or []:
                amount = (breakdown.get("estimated_cost") or {}).get("amount") or 0
                cost += float(amount) / 100.0  # cents

        cost_limit = self._settings.daily_cost_limit
        session_limit = self._settings.daily_session_limit
        cost_left = max(cost_limit - cost, 0.0)
        sessions_left = max(session_limit - sessions, 0.0)
        return [
            self._snapshot(
                remaining=cost_left,
                total=cost_limit,
                percentage=self._remaining_percentage(cost_left, cost_limit),
                unit="USD",
                label="Daily budget",
            ),
            self._snapshot(
                remaining=sessions_left,
                total=session_limit,
                percentage=self._remaining_percentage(sessions_left, session_limit),
                label="Daily sessions",
            ),
        ]

    async def _get_report(self, url: str, params: dict[str, str]) -> list[dict[str, Any]]:
        """Collect ``data`` entries across pages of a usage report."""
        headers = {
            "X-Api-Key": self._settings.api_key,
            "anthropic-version": _API_VERSION,
        }
        entries: list[dict[str, Any]] = []
        page_params = dict(params)
        for _ in range(_MAX_PAGES):
            payload = await self._get_json(url, headers=headers, params=page_params)
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
                raise FetchError("Unexpected Claude usage report", context={"url": url})
            entries.extend(e for e in payload["data"] if isinstance(e, dict))
            next_page = payload.get("next_page")
            if not payload.get("has_more") or not next_page:
                break
            page_params = {**params, "page": str(next_page)}
        return entries


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
