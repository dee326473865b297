"""Tests for the command line entry point."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from binance.exceptions import BinanceAPIException

from crypto_forecast import cli
from crypto_forecast.analysis.llm import LLMForecaster


@pytest.fixture(autouse=True)
def quiet_startup(monkeypatch):
    monkeypatch.setattr(cli, "find_and_load_dotenv", lambda env_path=None: None)
    monkeypatch.setattr(cli, "setup_logging", lambda level="INFO", log_dir=None: None)


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    monkeypatch.setenv("TELEGRAM_API_KEY", "123:telegram-token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")


def test_upstream_failure_exits_nonzero_without_model_call(credentials, capsys):
    text = json.dumps({"code": -1000, "msg": "Internal error"})
    with patch("crypto_forecast.data.binance_client.AsyncClient") as client_class, \
            patch.object(LLMForecaster, "forecast", new_callable=AsyncMock) as forecast:
        client = MagicMock()
        client.get_klines = AsyncMock(side_effect=BinanceAPIException(MagicMock(text=text), 500, text))
        client.close_connection = AsyncMock()
        client_class.return_value = client

        exit_code = cli.main(["console"])

    assert exit_code == 1
    assert "ApiError" in capsys.readouterr().err
    forecast.assert_not_awaited()
    client.close_connection.assert_awaited_once()


def test_telegram_without_token_fails_before_pipeline(monkeypatch, capsys):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    with patch.object(cli, "ForecastPipeline") as pipeline_class:
        exit_code = cli.main(["telegram"])

    assert exit_code == 1
    assert "TELEGRAM_API_KEY" in capsys.readouterr().err
    pipeline_class.assert_not_called()


def test_missing_anthropic_key_fails_before_pipeline(capsys):
    with patch.object(cli, "ForecastPipeline") as pipeline_class:
        exit_code = cli.main(["console"])

    assert exit_code == 1
    assert "AuthError" in capsys.readouterr().err
    pipeline_class.assert_not_called()


def test_only_prompt_does_not_need_anthropic_key():
    with patch.object(cli, "ForecastPipeline") as pipeline_class:
        pipeline_class.return_value.run = AsyncMock()

        exit_code = cli.main(["console", "--only-prompt"])

    assert exit_code == 0
    pipeline_class.return_value.run.assert_awaited_once_with(mode="console", only_prompt=True)


def test_invalid_config_value_exits_nonzero(credentials, monkeypatch, capsys):
    monkeypatch.setenv("KLINE_LIMIT", "5000")
    with patch.object(cli, "ForecastPipeline") as pipeline_class:
        exit_code = cli.main([])

    assert exit_code == 1
    assert "KLINE_LIMIT" in capsys.readouterr().err
    pipeline_class.assert_not_called()


def test_unknown_mode_is_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["email"])
    assert excinfo.value.code == 2


def test_default_mode_is_console():
    args = cli.setup_cli([])

    assert args.mode == "console"
    assert args.only_prompt is False
    assert args.env is None


def test_telegram_malformed_token_fails_before_pipeline(monkeypatch, capsys):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    monkeypatch.setenv("TELEGRAM_API_KEY", "no-colon-token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
    with patch.object(cli, "ForecastPipeline") as pipeline_class:
        exit_code = cli.main(["telegram"])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "AuthError" in err
    assert "Traceback" not in err
    pipeline_class.assert_not_called()
