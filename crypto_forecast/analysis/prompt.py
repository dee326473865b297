"""
Prompt builder for the Bitcoin forecast pipeline
"""
from typing import List, Optional, Sequence

from crypto_forecast.analysis.technical import bars_to_frame
from crypto_forecast.exceptions import MissingFieldError
from crypto_forecast.models import Bar, IndicatorSnapshot, IndicatorValue, SentimentReading

OHLC_HEADER = "Bitcoin historical OHLC + Volume data from Binance"
INDICATORS_HEADER = "=== TECHNICAL INDICATORS ==="
FEAR_GREED_HEADER = "=== FEAR & GREED INDEX ==="

REQUIRED_INDICATORS = ("MACD", "BollingerBands", "OBV", "SupportLevel", "ResistanceLevel")
REQUIRED_PREFIXES = ("SMA-", "EMA-", "RSI-", "ATR-")

TEMPLATE = """You are a cryptocurrency market analyst specializing in Bitcoin. Your task is to provide an insightful summary of the Bitcoin market, including price predictions, buy and sell positions, key levels, risk assessment, and overall recommendations. Use the following data to conduct your analysis:

<historical_data>
{data}
</historical_data>

Analyze the provided data carefully, paying attention to trends, patterns, and signals from various indicators. Consider both technical and sentiment factors in your analysis.

Prepare a comprehensive summary report with the following sections:

1. Market Overview: Provide a brief overview of the current Bitcoin market situation based on the latest data points.

2. Price Prediction: Offer price predictions for short-term (1-7 days), mid-term (1-3 months), and long-term (6-12 months) horizons. Support your predictions with relevant data and indicator analysis.

3. Buy and Sell Positions: Recommend entry and exit points for short, mid, and long-term traders. Explain the rationale behind each position.

4. Key Levels: Identify and explain important support and resistance levels to watch. Provide specific price points and reasons why these levels are significant.

5. Indicator Analysis: Analyze each of the following indicators and explain their implications for Bitcoin's price action:
   - RSI (overbought/oversold conditions)
   - MACD (trend strength and momentum)
   - Bollinger Bands (volatility and potential reversals)
   - SMA and EMA crossovers (trend direction)
   - OBV (volume confirmation of trends)
   - ATR (volatility measurement)
   - Fear and Greed Index (market sentiment)

6. Risk Assessment: Evaluate the overall risk level (low, medium, or high) for Bitcoin investments at this time. Provide a detailed explanation for your assessment, considering both technical and fundamental factors.

7. Timeframe Recommendations: Offer specific recommendations for short-term, medium-term, and long-term investors. Explain how your advice differs for each timeframe and why.

8. Overall Recommendation: Conclude with an overall recommendation to Buy, Sell, or Hold Bitcoin. Justify your recommendation based on the analysis of all indicators and market factors discussed in the report.

Before providing your final output, use <scratchpad> tags to organize your thoughts and analyze the data. This will help you formulate a well-reasoned and comprehensive report.

Present your final analysis and recommendations within <bitcoin_market_analysis> tags. Ensure that your report is well-structured, easy to read, and provides clear, actionable insights for investors with different time horizons."""


def format_value(value: float, decimals: int = 2) -> str:
    """The one number formatter used for every value in the prompt"""
    return f"{value:.{decimals}f}"


def _period(name: str) -> int:
    return int(name.split("-", 1)[1])


def _find(snapshot: IndicatorSnapshot, prefix: str) -> List[IndicatorValue]:
    found = [ind for name, ind in snapshot.indicators.items() if name.startswith(prefix)]
    return sorted(found, key=lambda ind: _period(ind.name))


def _require(indicator: IndicatorValue, *fields: str):
    for field in fields:
        if field not in indicator.values:
            raise MissingFieldError(f"{indicator.name}.{field}")


def format_fear_greed(readings: Sequence[SentimentReading]) -> str:
    lines = [FEAR_GREED_HEADER, "Date: Index classification - Index value"]
    for reading in readings:
        lines.append(f"{reading.date:%Y-%m-%d}: {reading.classification} - {reading.value}")
    return "\n".join(lines)


class PromptBuilder:
    """Renders market data, indicators and sentiment into the analyst prompt"""

    def __init__(self, history_bars: int = 90, timeframe: str = "4h"):
        self.history_bars = history_bars
        self.timeframe = timeframe

    def build(self, snapshot: Optional[IndicatorSnapshot], sentiment: Optional[SentimentReading],
              bars: Sequence[Bar],
              sentiment_history: Optional[Sequence[SentimentReading]] = None) -> str:
        """
        Build the forecast prompt

        Args:
            snapshot: Indicator snapshot for the bars
            sentiment: Latest Fear & Greed reading
            bars: OHLCV bars, oldest first
            sentiment_history: Optional recent readings, newest first, shown instead of
                the single latest reading

        Returns:
            Prompt text

        Raises:
            MissingFieldError: an input is missing or incomplete
        """
        if snapshot is None:
            raise MissingFieldError("snapshot")
        if sentiment is None:
            raise MissingFieldError("sentiment")
        if not bars:
            raise MissingFieldError("bars")

        sections = [
            self.format_price_history(bars),
            self.format_indicators(snapshot),
            format_fear_greed(sentiment_history or [sentiment]),
        ]
        return TEMPLATE.format(data="\n\n".join(sections))

    def format_price_history(self, bars: Sequence[Bar]) -> str:
        recent = bars_to_frame(bars).tail(self.history_bars)
        recent.index.name = 'Date'
        csv = recent.to_csv(
            header=['Open', 'High', 'Low', 'Close', 'Volume'],
            float_format='%.2f',
            date_format='%Y-%m-%d %H:%M:%S',
        )
        header = f"{OHLC_HEADER} ({self.timeframe} candles, last {len(recent)}):"
        return f"{header}\n{csv.strip()}"

    def format_indicators(self, snapshot: IndicatorSnapshot) -> str:
        for name in REQUIRED_INDICATORS:
            if name not in snapshot:
                raise MissingFieldError(name)
        groups = {prefix: _find(snapshot, prefix) for prefix in REQUIRED_PREFIXES}
        for prefix, found in groups.items():
            if not found:
                raise MissingFieldError(f"{prefix}*")

        lines = [INDICATORS_HEADER, f"Latest close: ${format_value(snapshot.last_close)} "
                                    f"({snapshot.bar_count} bars analyzed)"]

        lines += ["", "Simple Moving Averages:"]
        for ind in groups["SMA-"]:
            lines.append(f"SMA ({_period(ind.name)}-period): ${format_value(ind.value)} "
                         f"(trend: {ind.trend}; {ind.signal})")

        lines += ["", "Exponential Moving Averages:"]
        for ind in groups["EMA-"]:
            lines.append(f"EMA ({_period(ind.name)}-period): ${format_value(ind.value)} "
                         f"(trend: {ind.trend}; {ind.signal})")

        rsi = groups["RSI-"][-1]
        lines += [
            "",
            f"RSI ({_period(rsi.name)}-period, Wilder smoothing): {format_value(rsi.value)}",
            f"RSI Indication: {rsi.signal}",
            f"RSI Trend: {rsi.trend}",
        ]

        macd = snapshot["MACD"]
        _require(macd, "macd", "signal", "histogram")
        lines += [
            "",
            "MACD (12, 26, 9):",
            f"MACD Line: {format_value(macd.values['macd'])}",
            f"Signal Line: {format_value(macd.values['signal'])}",
            f"Histogram: {format_value(macd.values['histogram'])}",
            f"MACD Indication: {macd.signal}",
            f"Histogram Trend: {macd.trend}",
        ]

        bb = snapshot["BollingerBands"]
        _require(bb, "upper", "middle", "lower", "percent_b")
        lines += [
            "",
            "Bollinger Bands (20, 2):",
            f"Upper Band: ${format_value(bb.values['upper'])}",
            f"Middle Band (SMA): ${format_value(bb.values['middle'])}",
            f"Lower Band: ${format_value(bb.values['lower'])}",
            f"Price Position: {format_value(bb.values['percent_b'], 1)}% of band width from lower band",
            f"BB Indication: {bb.signal}",
        ]

        obv = snapshot["OBV"]
        _require(obv, "value", "change_pct")
        lines += [
            "",
            "On Balance Volume (OBV):",
            f"Current OBV: {format_value(obv.value, 0)}",
            f"5-period OBV Change: {format_value(obv.values['change_pct'])}%",
            f"OBV Indication: {obv.signal}",
            f"OBV Trend: {obv.trend}",
        ]

        atr = groups["ATR-"][-1]
        _require(atr, "value", "percent_of_price")
        lines += [
            "",
            "Average True Range (ATR):",
            f"{_period(atr.name)}-period ATR: ${format_value(atr.value)}",
            f"ATR as % of price: {format_value(atr.values['percent_of_price'])}%",
            f"Volatility: {atr.signal}",
        ]

        support, resistance = snapshot["SupportLevel"], snapshot["ResistanceLevel"]
        lines += [
            "",
            f"Support level: ${format_value(support.value)} ({support.signal})",
            f"Resistance level: ${format_value(resistance.value)} ({resistance.signal})",
        ]

        if snapshot.notes:
            lines += ["", "Trend Notes:"]
            lines += [f"- {note}" for note in snapshot.notes]

        return "\n".join(lines)
