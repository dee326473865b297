"""
LLM forecast client for the Bitcoin forecast pipeline
"""
import re
from typing import Optional

import anthropic

from crypto_forecast.config import Settings, logger
from crypto_forecast.exceptions import ApiError, AuthError, NetworkError, RateLimitError

SYSTEM_PROMPT = (
    "You are a cryptocurrency market analyst. Write clear, structured trading "
    "recommendations in plain text with short headed sections. Quote concrete "
    "price levels and keep the tone factual and free of hype."
)

MAX_TOKENS = 4096

_ANALYSIS_TAG = re.compile(r"<bitcoin_market_analysis>(.*?)(?:</bitcoin_market_analysis>|$)", re.DOTALL)


def extract_analysis(text: str) -> str:
    """Return the tagged analysis section, or the whole reply when it is untagged"""
    match = _ANALYSIS_TAG.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text.strip()


class LLMForecaster:
    """Class to request the trading recommendation from the Anthropic Messages API"""

    def __init__(self, settings: Settings):
        """
        Initialize the forecaster

        The SDK client is created on first use so that a missing key only
        fails when a forecast is actually requested.
        """
        self.settings = settings
        self.model_name = settings.anthropic_model
        self.client: Optional[anthropic.AsyncAnthropic] = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if not self.settings.anthropic_api_key:
            raise AuthError("ANTHROPIC_API_KEY is not set")
        if self.client is None:
            self.client = anthropic.AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.llm_timeout,
                max_retries=0,
            )
            logger.info(f"Initialized LLM forecaster with model: {self.model_name}")
        return self.client

    async def forecast(self, prompt: str) -> str:
        """
        Send the prompt and return the model's answer

        Args:
            prompt: Forecast prompt

        Returns:
            Answer text
        """
        client = self._get_client()
        logger.info(f"Requesting forecast ({len(prompt)} prompt characters)")
        try:
            response = await client.messages.create(
                model=self.model_name,
                max_tokens=MAX_TOKENS,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            logger.error(f"Anthropic rejected the API key: {e}")
            raise AuthError(f"Anthropic rejected the API key: {e.message}") from e
        except anthropic.RateLimitError as e:
            logger.error(f"Anthropic rate limit hit: {e}")
            raise RateLimitError(f"Anthropic rate limit hit: {e.message}", e.status_code) from e
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ApiError(f"Anthropic API request failed with status {e.status_code}: {e.message}",
                           e.status_code) from e
        except anthropic.APIConnectionError as e:
            logger.error(f"Error reaching Anthropic API: {e}")
            raise NetworkError(f"Could not reach Anthropic API: {e}") from e

        text = "".join(
            block.text for block in (response.content or []) if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ApiError("No text content in the model response")

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(f"Forecast received: {usage.input_tokens} input / {usage.output_tokens} output tokens")
        return extract_analysis(text)

    async def close(self):
        if self.client is not None:
            await self.client.close()
            self.client = None
