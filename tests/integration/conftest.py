"""Integration test fixtures: real files and the real object graph, HTTP mocked with respx."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import respx

DEEPSEEK_URL = "https://api.deepseek.com/user/balance"
OPENROUTER_URL = "https://openrouter.ai/api/v1/credits"


class Balances:
    """Mutable upstream balances served by the mocked platforms."""

    def __init__(self) -> None:
        self.deepseek = 50.0
        self.deepseek_status = 200
        self.openrouter_usage = 0.0

    def deepseek_response(self, request: httpx.Request) -> httpx.Response:
        if self.deepseek_status >= 400:
            return httpx.Response(self.deepseek_status)
        return httpx.Response(
            200,
            json={
                "is_available": True,
                "balance_infos": [{"currency": "USD", "total_balance": str(self.deepseek)}],
            },
        )

    def openrouter_response(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": {"total_credits": 10, "total_usage": self.openrouter_usage}},
        )


@pytest.fixture
def balances() -> Balances:
    return Balances()


@pytest.fixture
def upstream(balances):
    """Route both platforms to the shared Balances object."""
    with respx.mock(assert_all_called=False) as mock:
        mock.get(DEEPSEEK_URL).mock(side_effect=balances.deepseek_response)
        mock.get(OPENROUTER_URL).mock(side_effect=balances.openrouter_response)
        yield mock


@pytest.fixture
def two_account_config(write_config, tmp_path: Path) -> Path:
    return write_config(
        {
            "refresh_interval": 0,
            "accounts": [
                {
                    "id": "deepseek-1",
                    "platform_type": "deepseek",
                    "display_name": "DS",
                    "config": {"api_key": "sk-ds", "balance_limit": 50},
                },
                {
                    "id": "openrouter-1",
                    "platform_type": "openrouter",
                    "display_name": "OR",
                    "config": {"api_key": "sk-or"},
                },
            ],
        }
    )
