"""
Forecast pipeline that coordinates all components
"""
import enum
from dataclasses import dataclass, field
from typing import List, Optional

from crypto_forecast.analysis.llm import LLMForecaster
from crypto_forecast.analysis.prompt import PromptBuilder
from crypto_forecast.analysis.technical import TechnicalAnalyzer
from crypto_forecast.config import Settings, logger
from crypto_forecast.data.binance_client import BinanceDataFetcher
from crypto_forecast.data.sentiment import SentimentFetcher
from crypto_forecast.models import Bar, IndicatorSnapshot, SentimentReading
from crypto_forecast.notification.alerts import MODE_CONSOLE, NotificationManager, compose_report


class Stage(enum.Enum):
    START = "start"
    DATA_FETCHED = "data_fetched"
    INDICATORS_COMPUTED = "indicators_computed"
    PROMPT_BUILT = "prompt_built"
    FORECAST_RECEIVED = "forecast_received"
    DELIVERED = "delivered"
    FAILED = "failed"


# Legal forward moves; any stage may also move to FAILED
TRANSITIONS = {
    Stage.START: Stage.DATA_FETCHED,
    Stage.DATA_FETCHED: Stage.INDICATORS_COMPUTED,
    Stage.INDICATORS_COMPUTED: Stage.PROMPT_BUILT,
    Stage.PROMPT_BUILT: Stage.FORECAST_RECEIVED,
    Stage.FORECAST_RECEIVED: Stage.DELIVERED,
}


@dataclass
class PipelineResult:
    """Artifacts of one run"""

    bars: List[Bar] = field(default_factory=list)
    sentiment_history: List[SentimentReading] = field(default_factory=list)
    snapshot: Optional[IndicatorSnapshot] = None
    prompt: Optional[str] = None
    forecast: Optional[str] = None
    report: Optional[str] = None

    @property
    def sentiment(self) -> Optional[SentimentReading]:
        return self.sentiment_history[0] if self.sentiment_history else None


class ForecastPipeline:
    """Runs fetch -> indicators -> prompt -> forecast -> delivery once, without retries"""

    def __init__(self, settings: Settings,
                 data_fetcher: Optional[BinanceDataFetcher] = None,
                 sentiment_fetcher: Optional[SentimentFetcher] = None,
                 analyzer: Optional[TechnicalAnalyzer] = None,
                 prompt_builder: Optional[PromptBuilder] = None,
                 forecaster: Optional[LLMForecaster] = None,
                 notifier: Optional[NotificationManager] = None):
        self.settings = settings
        self.data_fetcher = data_fetcher or BinanceDataFetcher(settings)
        self.sentiment_fetcher = sentiment_fetcher or SentimentFetcher(settings)
        self.analyzer = analyzer or TechnicalAnalyzer()
        self.prompt_builder = prompt_builder or PromptBuilder(
            history_bars=settings.prompt_history_bars, timeframe=settings.timeframe
        )
        self.forecaster = forecaster or LLMForecaster(settings)
        self.notifier = notifier or NotificationManager(settings)

        self.stage = Stage.START
        self.stages: List[Stage] = [Stage.START]
        self.result = PipelineResult()

    def _advance(self, stage: Stage):
        expected = TRANSITIONS.get(self.stage)
        if stage is not expected:
            raise RuntimeError(f"Illegal pipeline transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.stages.append(stage)
        logger.info(f"Pipeline stage: {stage.value}")

    async def run(self, mode: str = MODE_CONSOLE, only_prompt: bool = False) -> PipelineResult:
        """
        Execute the pipeline once

        Args:
            mode: Delivery mode, 'console' or 'telegram'
            only_prompt: Deliver the prompt and skip the model call

        Returns:
            PipelineResult with every intermediate artifact
        """
        if self.stage is not Stage.START:
            raise RuntimeError("A pipeline instance runs only once")

        try:
            await self.fetch_data()
            self.compute_indicators()
            self.build_prompt()
            if only_prompt:
                await self.notifier.present(self.result.prompt, mode)
                logger.info("Prompt delivered, model call skipped")
                return self.result
            await self.request_forecast()
            await self.deliver(mode)
            return self.result
        except Exception as e:
            logger.error(f"Pipeline failed after stage {self.stage.value}: {e}")
            self.stage = Stage.FAILED
            self.stages.append(Stage.FAILED)
            raise
        finally:
            await self.close()

    async def fetch_data(self):
        settings = self.settings
        logger.info(f"Fetching {settings.symbol} {settings.timeframe} candles from Binance...")
        self.result.bars = await self.data_fetcher.fetch_bars(
            settings.symbol, settings.timeframe, settings.kline_limit
        )
        logger.info("Fetching Fear & Greed index...")
        self.result.sentiment_history = await self.sentiment_fetcher.fetch_sentiment_history(
            settings.fng_limit
        )
        self._advance(Stage.DATA_FETCHED)

    def compute_indicators(self):
        logger.info("Analyzing price data with SMA, EMA, RSI(14), MACD(12,26,9), BB(20,2), OBV and ATR(14)...")
        self.result.snapshot = self.analyzer.compute(self.result.bars)
        self._advance(Stage.INDICATORS_COMPUTED)

    def build_prompt(self):
        self.result.prompt = self.prompt_builder.build(
            self.result.snapshot,
            self.result.sentiment,
            self.result.bars,
            sentiment_history=self.result.sentiment_history,
        )
        self._advance(Stage.PROMPT_BUILT)

    async def request_forecast(self):
        logger.info("Generating trading recommendations...")
        self.result.forecast = await self.forecaster.forecast(self.result.prompt)
        self._advance(Stage.FORECAST_RECEIVED)

    async def deliver(self, mode: str):
        self.result.report = compose_report(
            self.result.forecast,
            self.result.snapshot,
            self.result.bars,
            self.result.sentiment_history,
        )
        await self.notifier.present(self.result.report, mode)
        self._advance(Stage.DELIVERED)

    async def close(self):
        """Release HTTP clients"""
        for component in (self.data_fetcher, self.sentiment_fetcher, self.forecaster):
            close = getattr(component, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(component).__name__}: {e!r}")
