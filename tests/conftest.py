# tests/conftest.py
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from crypto_forecast.config import Settings
from crypto_forecast.models import Bar, SentimentReading

START_TS = 1704067200  # 2024-01-01 00:00 UTC
FOUR_HOURS = 4 * 60 * 60

ENV_VARS = [
    "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "DATA_PROVIDER_API_KEY", "API_BASE_URL",
    "TELEGRAM_API_KEY", "TELEGRAM_CHAT_ID", "TRADING_SYMBOL", "TRADING_TIMEFRAME",
    "KLINE_LIMIT", "FNG_LIMIT", "PROMPT_HISTORY_BARS", "HTTP_TIMEOUT", "LLM_TIMEOUT",
    "LOG_LEVEL", "LOG_DIR",
]


def make_bars(closes, volume=10.0, spread=1.0):
    """Bars whose open is the previous close and whose range brackets open and close"""
    bars = []
    previous = closes[0]
    for i, close in enumerate(closes):
        bars.append(Bar(
            timestamp=START_TS + i * FOUR_HOURS,
            open=float(previous),
            high=float(max(previous, close) + spread),
            low=float(min(previous, close) - spread),
            close=float(close),
            volume=float(volume),
        ))
        previous = close
    return bars


def ramp_closes():
    """Constant 100 for 50 bars, then a linear ramp to 110 over 10 bars"""
    return [100.0] * 50 + [100.0 + step for step in range(1, 11)]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the tests"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    return Settings(
        anthropic_api_key="test-anthropic-key",
        telegram_api_key="123:telegram-token",
        telegram_chat_id="42",
        http_timeout=5.0,
        log_dir=None,
    )


@pytest.fixture
def ramp_bars():
    return make_bars(ramp_closes())


@pytest.fixture
def random_walk_bars():
    rng = np.random.default_rng(7)
    closes = 30000 * np.exp(np.cumsum(rng.normal(0, 0.01, 300)))
    volumes = rng.uniform(100, 1000, 300)
    bars = []
    previous = closes[0]
    for i, (close, volume) in enumerate(zip(closes, volumes)):
        wiggle = abs(rng.normal(0, 0.004))
        bars.append(Bar(
            timestamp=START_TS + i * FOUR_HOURS,
            open=float(previous),
            high=float(max(previous, close) * (1 + wiggle)),
            low=float(min(previous, close) * (1 - wiggle)),
            close=float(close),
            volume=float(volume),
        ))
        previous = close
    return bars


@pytest.fixture
def sentiment_history():
    return [
        SentimentReading(value=40, classification="Fear", timestamp=START_TS + 3 * 86400),
        SentimentReading(value=55, classification="Greed", timestamp=START_TS + 2 * 86400),
        SentimentReading(value=50, classification="Neutral", timestamp=START_TS + 86400),
        SentimentReading(value=20, classification="Extreme Fear", timestamp=START_TS),
    ]


class AsyncContextManagerMock:
    """Helper class to mock async context managers."""
    def __init__(self, return_value=None):
        self.return_value = return_value or MagicMock()

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, *args):
        return None


@pytest.fixture
def mock_http_session():
    """Factory for an aiohttp-like session whose get() yields the given response"""
    def factory(status=200, payload=None, json_error=None, get_error=None):
        response = MagicMock()
        response.status = status
        response.json = AsyncMock(return_value=payload, side_effect=json_error)

        session = MagicMock()
        if get_error is not None:
            session.get = MagicMock(side_effect=get_error)
        else:
            session.get = MagicMock(return_value=AsyncContextManagerMock(response))
        session.close = AsyncMock()
        return session
    return factory


@pytest.fixture
def bar_factory():
    return make_bars
