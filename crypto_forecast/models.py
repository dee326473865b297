"""
Data model for the Bitcoin forecast pipeline
"""
import datetime
from dataclasses import dataclass, field
from typing import Dict, Tuple

SENTIMENT_CLASSIFICATIONS = (
    "Extreme Fear",
    "Fear",
    "Neutral",
    "Greed",
    "Extreme Greed",
)

TREND_RISING = "rising"
TREND_FALLING = "falling"
TREND_FLAT = "flat"


@dataclass(frozen=True)
class Bar:
    """One OHLCV candle, timestamp is the candle open time in epoch seconds"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self):
        if self.high < self.low:
            raise ValueError(f"Bar at {self.timestamp}: high {self.high} below low {self.low}")
        if self.close <= 0:
            raise ValueError(f"Bar at {self.timestamp}: close price must be positive")
        if self.volume < 0:
            raise ValueError(f"Bar at {self.timestamp}: volume cannot be negative")

    @property
    def time(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.timestamp, tz=datetime.timezone.utc)


@dataclass(frozen=True)
class SentimentReading:
    """Fear & Greed index reading"""

    value: int
    classification: str
    timestamp: int

    def __post_init__(self):
        if not 0 <= self.value <= 100:
            raise ValueError(f"Sentiment value out of range: {self.value}")
        if self.classification not in SENTIMENT_CLASSIFICATIONS:
            raise ValueError(f"Unknown sentiment classification: {self.classification}")

    @property
    def date(self) -> datetime.date:
        return datetime.datetime.fromtimestamp(self.timestamp, tz=datetime.timezone.utc).date()


@dataclass(frozen=True)
class IndicatorValue:
    """Latest value(s) of one indicator with its trend tag and interpretation"""

    name: str
    values: Dict[str, float]
    trend: str = TREND_FLAT
    signal: str = ""

    @property
    def value(self) -> float:
        """Primary value, the first field"""
        return next(iter(self.values.values()))


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicators computed from one OHLCV sequence"""

    last_close: float
    last_timestamp: int
    bar_count: int
    indicators: Dict[str, IndicatorValue]
    notes: Tuple[str, ...] = field(default_factory=tuple)

    def __getitem__(self, name: str) -> IndicatorValue:
        return self.indicators[name]

    def __contains__(self, name: str) -> bool:
        return name in self.indicators
