"""
Configuration module for the Bitcoin forecast pipeline
"""
import os
import sys
import logging
import pathlib
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from crypto_forecast.exceptions import ConfigError

# Determine the project root directory
PROJECT_ROOT = pathlib.Path(__file__).parent.parent

DEFAULT_MODEL = "claude-3-7-sonnet-20250219"

logger = logging.getLogger("CryptoForecast")


def find_and_load_dotenv(env_path: Optional[str] = None) -> Optional[pathlib.Path]:
    """
    Find and load a .env file

    An explicit path wins; otherwise the working directory, the project
    root and the home directory are searched in that order. Variables
    already set in the environment are not overridden.

    Returns:
        Path of the loaded file, or None
    """
    if env_path:
        candidates = [pathlib.Path(env_path)]
    else:
        candidates = [
            pathlib.Path.cwd() / '.env',
            PROJECT_ROOT / '.env',
            pathlib.Path.home() / '.env',
        ]

    for candidate in candidates:
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            logger.debug(f"Loaded environment from: {candidate}")
            return candidate

    if env_path:
        logger.warning(f"Environment file not found: {env_path}")
    return None


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """Configure logging for the application"""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        logs_path = pathlib.Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logs_path / "crypto_forecast.log"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    return logger


@dataclass(frozen=True)
class Settings:
    """Run configuration, built once at startup and handed to each component"""

    anthropic_api_key: Optional[str] = None
    anthropic_model: str = DEFAULT_MODEL
    data_provider_api_key: Optional[str] = None
    api_base_url: Optional[str] = None
    telegram_api_key: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    symbol: str = "BTCUSDT"
    timeframe: str = "4h"
    kline_limit: int = 720
    fng_limit: int = 4
    prompt_history_bars: int = 90
    http_timeout: float = 20.0
    llm_timeout: float = 120.0
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None


def load_config() -> Settings:
    """
    Load configuration from environment variables

    Call find_and_load_dotenv() first to pick up a .env file.

    Returns:
        Settings instance
    """
    log_dir = os.getenv('LOG_DIR', 'logs')

    settings = Settings(
        anthropic_api_key=_env_str('ANTHROPIC_API_KEY'),
        anthropic_model=_env_str('ANTHROPIC_MODEL') or DEFAULT_MODEL,
        data_provider_api_key=_env_str('DATA_PROVIDER_API_KEY'),
        api_base_url=_env_str('API_BASE_URL'),
        telegram_api_key=_env_str('TELEGRAM_API_KEY'),
        telegram_chat_id=_env_str('TELEGRAM_CHAT_ID'),
        symbol=_env_str('TRADING_SYMBOL') or 'BTCUSDT',
        timeframe=_env_str('TRADING_TIMEFRAME') or '4h',
        kline_limit=_env_int('KLINE_LIMIT', 720),
        fng_limit=_env_int('FNG_LIMIT', 4),
        prompt_history_bars=_env_int('PROMPT_HISTORY_BARS', 90),
        http_timeout=_env_float('HTTP_TIMEOUT', 20.0),
        llm_timeout=_env_float('LLM_TIMEOUT', 120.0),
        log_level=_env_str('LOG_LEVEL') or 'INFO',
        log_dir=log_dir or None,
    )

    if settings.kline_limit > 1000:
        raise ConfigError(f"KLINE_LIMIT must be <= 1000, got {settings.kline_limit}")

    return settings


def log_config(settings: Settings):
    """Log configuration (excluding sensitive data)"""
    logger.info(f"Loaded configuration: symbol={settings.symbol}, timeframe={settings.timeframe}, "
                f"limit={settings.kline_limit}")
    logger.info(f"Anthropic API configured: {bool(settings.anthropic_api_key)}")
    logger.info(f"Data provider key configured: {bool(settings.data_provider_api_key)}")
    logger.info(f"Telegram configured: {bool(settings.telegram_api_key and settings.telegram_chat_id)}")
