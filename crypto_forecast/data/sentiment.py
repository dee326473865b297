"""
Fear & Greed index fetcher for the Bitcoin forecast pipeline
"""
import asyncio
from typing import List, Optional

import aiohttp

from crypto_forecast.config import Settings, logger
from crypto_forecast.exceptions import ApiError, NetworkError, RateLimitError
from crypto_forecast.models import SentimentReading

FNG_URL = "https://api.alternative.me/fng/"


class SentimentFetcher:
    """Class to fetch the crypto Fear & Greed index from alternative.me"""

    def __init__(self, settings: Settings, url: str = FNG_URL):
        self.settings = settings
        self.url = url
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout)
            )
        return self.session

    async def fetch_sentiment_history(self, limit: int) -> List[SentimentReading]:
        """
        Fetch the latest Fear & Greed readings

        Args:
            limit: Number of daily readings

        Returns:
            Readings ordered newest first
        """
        session = self._get_session()
        try:
            async with session.get(self.url, params={'limit': str(limit)}) as response:
                if response.status == 429:
                    raise RateLimitError("Fear & Greed API rate limit hit", response.status)
                if response.status != 200:
                    raise ApiError(f"Fear & Greed API request failed with status: {response.status}",
                                   response.status)
                try:
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    raise ApiError(f"Invalid JSON from Fear & Greed API: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error fetching Fear & Greed index: {e!r}")
            raise NetworkError(f"Could not reach Fear & Greed API: {e!r}") from e

        readings = parse_fear_greed(payload)
        if readings:
            logger.info(f"Fear & Greed index: {readings[0].value} ({readings[0].classification})")
        return readings

    async def fetch_sentiment(self) -> SentimentReading:
        """Fetch the current Fear & Greed reading"""
        return (await self.fetch_sentiment_history(1))[0]

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None


def parse_fear_greed(payload) -> List[SentimentReading]:
    """
    Convert an alternative.me response into readings

    The payload looks like
    {"data": [{"value": "40", "value_classification": "Fear", "timestamp": "1551157200"}],
     "metadata": {"error": null}}
    """
    if not isinstance(payload, dict):
        raise ApiError("Unexpected Fear & Greed response shape")

    error = (payload.get('metadata') or {}).get('error')
    if error:
        raise ApiError(f"Error fetching Fear & Greed Index: {error}")

    entries = payload.get('data')
    if not isinstance(entries, list) or not entries:
        raise ApiError("Fear & Greed response contains no data")

    readings = []
    for entry in entries:
        try:
            readings.append(SentimentReading(
                value=int(entry['value']),
                classification=entry['value_classification'],
                timestamp=int(entry['timestamp']),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Malformed Fear & Greed entry {entry!r}: {e}") from e

    readings.sort(key=lambda reading: reading.timestamp, reverse=True)
    return readings
