"""
Binance data fetcher for the Bitcoin forecast pipeline
"""
import asyncio
from typing import List, Optional

import aiohttp
from binance import AsyncClient
from binance.exceptions import BinanceAPIException, BinanceRequestException

from crypto_forecast.config import Settings, logger
from crypto_forecast.exceptions import ApiError, AuthError, NetworkError, RateLimitError
from crypto_forecast.models import Bar

# Binance page size for /api/v3/klines
MAX_KLINES_LIMIT = 1000

# Binance error codes for a malformed or rejected API key
AUTH_ERROR_CODES = {-2014, -2015}


class BinanceDataFetcher:
    """Class to fetch candle data from the Binance REST API"""

    def __init__(self, settings: Settings):
        """Initialize with settings, the client is created on first use"""
        self.settings = settings
        self.client: Optional[AsyncClient] = None

    def _get_client(self) -> AsyncClient:
        if self.client is None:
            # Public market data works without credentials
            self.client = AsyncClient(
                api_key=self.settings.data_provider_api_key,
                requests_params={'timeout': self.settings.http_timeout},
            )
            if self.settings.api_base_url:
                self.client.API_URL = self.settings.api_base_url.rstrip('/') + '/api'
                logger.info(f"Using Binance base URL override: {self.settings.api_base_url}")
            logger.info("Initialized Binance client for public data access")
        return self.client

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[Bar]:
        """
        Fetch the most recent klines/candlesticks

        Args:
            symbol: Trading pair (e.g., 'BTCUSDT')
            interval: Kline interval (e.g., '1h', '4h', '1d')
            limit: Number of candles, at most one Binance page

        Returns:
            Bars ordered oldest first
        """
        if not 1 <= limit <= MAX_KLINES_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_KLINES_LIMIT}, got {limit}")

        client = self._get_client()
        try:
            klines = await client.get_klines(symbol=symbol, interval=interval, limit=limit)
        except BinanceAPIException as e:
            logger.error(f"Binance API error: {e}")
            if e.status_code in (401, 403) or e.code in AUTH_ERROR_CODES:
                raise AuthError(f"Binance rejected the API key: {e.message}") from e
            if e.status_code in (418, 429):
                raise RateLimitError(f"Binance rate limit hit: {e.message}", e.status_code) from e
            raise ApiError(f"Binance API request failed with status {e.status_code}: {e.message}",
                           e.status_code) from e
        except BinanceRequestException as e:
            logger.error(f"Invalid response from Binance: {e}")
            raise ApiError(f"Invalid response from Binance: {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching klines: {e!r}")
            raise NetworkError(f"Could not reach Binance: {e!r}") from e

        bars = parse_klines(klines)
        if bars:
            logger.info(f"Successfully fetched {len(bars)} klines for {symbol} at {interval} interval "
                        f"({bars[0].time:%Y-%m-%d %H:%M} to {bars[-1].time:%Y-%m-%d %H:%M} UTC)")
        return bars

    async def close(self):
        if self.client is not None:
            await self.client.close_connection()
            self.client = None


def parse_klines(klines) -> List[Bar]:
    """
    Convert raw kline rows into bars

    Binance rows are [open_time_ms, open, high, low, close, volume, close_time, ...]
    with prices and volumes as strings.
    """
    if not isinstance(klines, list):
        raise ApiError(f"Expected a list of klines, got {type(klines).__name__}")

    bars = []
    for row in klines:
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            raise ApiError(f"Malformed kline row: {row!r}")
        try:
            bars.append(Bar(
                timestamp=int(row[0]) // 1000,
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            ))
        except (TypeError, ValueError) as e:
            raise ApiError(f"Malformed kline row {row!r}: {e}") from e

    bars.sort(key=lambda bar: bar.timestamp)
    return bars
