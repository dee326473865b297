"""
Notification manager for the Bitcoin forecast pipeline
"""
import asyncio
import datetime
from typing import List, Optional, Sequence

import aiohttp
from rich.console import Console
from telebot import asyncio_helper, util
from telebot.async_telebot import AsyncTeleBot

from crypto_forecast.analysis.prompt import format_value
from crypto_forecast.config import Settings, logger
from crypto_forecast.exceptions import AuthError, ConfigError, DeliveryError, MissingFieldError
from crypto_forecast.models import Bar, IndicatorSnapshot, SentimentReading

MODE_CONSOLE = "console"
MODE_TELEGRAM = "telegram"
DELIVERY_MODES = (MODE_CONSOLE, MODE_TELEGRAM)

# Telegram rejects messages over 4096 characters
TELEGRAM_CHUNK_SIZE = 3900
# Only break on a newline that leaves a chunk at least this long
MIN_BREAK_OFFSET = 100
CHUNK_DELAY_SECONDS = 0.5

REPORT_TITLE = "=== BITCOIN TRADING RECOMMENDATIONS ==="
REPORT_FOOTER = "==============================="


def split_message(text: str, max_length: int = TELEGRAM_CHUNK_SIZE) -> List[str]:
    """
    Split text into chunks of at most max_length characters

    A chunk ends at its last newline when that newline sits past
    MIN_BREAK_OFFSET; the newline itself is dropped.
    """
    chunks = []
    position = 0
    while position < len(text):
        remaining = len(text) - position
        if remaining <= max_length:
            chunks.append(text[position:])
            break
        window = text[position:position + max_length]
        newline = window.rfind('\n')
        if newline > MIN_BREAK_OFFSET:
            chunks.append(window[:newline])
            position += newline + 1
        else:
            chunks.append(window)
            position += max_length
    return [chunk for chunk in chunks if chunk.strip()]


def summarize_snapshot(snapshot: IndicatorSnapshot) -> str:
    """One line per indicator with value, trend and interpretation"""
    lines = []
    for name, indicator in snapshot.indicators.items():
        if name == "MACD":
            value = (f"line {format_value(indicator.values['macd'])}, "
                     f"signal {format_value(indicator.values['signal'])}, "
                     f"histogram {format_value(indicator.values['histogram'])}")
        elif name == "BollingerBands":
            value = (f"{format_value(indicator.values['lower'])} / "
                     f"{format_value(indicator.values['middle'])} / "
                     f"{format_value(indicator.values['upper'])}")
        elif name == "OBV":
            value = format_value(indicator.value, 0)
        else:
            value = format_value(indicator.value)
        line = f"{name}: {value} ({indicator.trend})"
        if indicator.signal:
            line += f" - {indicator.signal}"
        lines.append(line)
    lines.extend(snapshot.notes)
    return "\n".join(lines)


def compose_report(result: str, snapshot: IndicatorSnapshot, bars: Sequence[Bar],
                   sentiment_history: Sequence[SentimentReading]) -> str:
    """Combine the model answer with the latest data points, indicator summary and sentiment"""
    last_bars = "\n".join(
        f"{bar.time:%Y-%m-%d %H:%M:%S}: O=${format_value(bar.open)} H=${format_value(bar.high)} "
        f"L=${format_value(bar.low)} C=${format_value(bar.close)} V={format_value(bar.volume)}"
        for bar in bars[-3:]
    ) or "No data points available."
    fear_greed = "\n".join(
        f"{reading.date:%Y-%m-%d}: {reading.classification} - {reading.value}"
        for reading in sentiment_history
    ) or "No Fear and Greed data available."

    return "\n\n".join([
        f"=== LAST 3 DATA POINTS ===\n{last_bars}",
        f"=== TECHNICAL ANALYSIS SUMMARY ===\n{summarize_snapshot(snapshot)}",
        f"=== FEAR AND GREED INDEX ===\n{fear_greed}",
        f"=== CLAUDE ANALYSIS ===\n{result.strip()}",
    ])


class NotificationManager:
    """Delivers the final report to the console or a Telegram chat"""

    def __init__(self, settings: Settings, console: Optional[Console] = None):
        self.settings = settings
        self.console = console or Console(soft_wrap=True)

    def check_telegram_config(self):
        """Fail before any request when Telegram credentials are missing"""
        if not self.settings.telegram_api_key:
            raise AuthError("TELEGRAM_API_KEY must be set when using telegram output format")
        try:
            util.validate_token(self.settings.telegram_api_key)
        except ValueError as e:
            raise AuthError(f"TELEGRAM_API_KEY is not a valid bot token: {e}") from e
        if not self.settings.telegram_chat_id:
            raise MissingFieldError(
                "TELEGRAM_CHAT_ID", "TELEGRAM_CHAT_ID must be set when using telegram output format"
            )

    async def present(self, text: str, mode: str = MODE_CONSOLE):
        """
        Deliver the report

        Args:
            text: Report text
            mode: 'console' or 'telegram'
        """
        if mode == MODE_CONSOLE:
            self.console_output(text)
        elif mode == MODE_TELEGRAM:
            await self.telegram_output(text)
        else:
            raise ConfigError(f"Unknown delivery mode: {mode}. Use one of {', '.join(DELIVERY_MODES)}")

    def console_output(self, text: str):
        self.console.print(f"\n[bold green]{REPORT_TITLE}[/bold green]\n")
        self.console.print(text, markup=False, highlight=False, emoji=False)
        self.console.print(f"\n[bold green]{REPORT_FOOTER}[/bold green]")

    async def telegram_output(self, text: str):
        """Send a header message followed by the report in chunks"""
        self.check_telegram_config()
        chat_id = self.settings.telegram_chat_id
        try:
            bot = AsyncTeleBot(self.settings.telegram_api_key)
        except ValueError as e:
            raise DeliveryError(f"Could not create Telegram bot: {e}") from e

        date = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        header = f"📊 *Bitcoin Trading Analysis - {date}*"
        chunks = split_message(text)
        timeout = int(self.settings.http_timeout)

        try:
            await bot.send_message(chat_id, header, parse_mode="Markdown", timeout=timeout)
            for index, chunk in enumerate(chunks):
                # Model output is not guaranteed to be valid Markdown, send it as plain text
                await bot.send_message(chat_id, chunk, timeout=timeout)
                if index < len(chunks) - 1:
                    await asyncio.sleep(CHUNK_DELAY_SECONDS)
        except asyncio_helper.ApiTelegramException as e:
            logger.error(f"Telegram rejected the message: {e}")
            raise DeliveryError(f"Telegram API error {e.error_code}: {e.description}") from e
        except (asyncio_helper.ApiException, asyncio_helper.RequestTimeout,
                aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to send Telegram message: {e!r}")
            raise DeliveryError(f"Failed to send Telegram message: {e!r}") from e
        finally:
            await bot.close_session()

        logger.info(f"Analysis sent to Telegram in {len(chunks)} message(s)")
        self.console.print("[green]Analysis sent to Telegram successfully![/green]")
