"""
Technical analysis module for the Bitcoin forecast pipeline

Every indicator is a pure function over pandas Series. Smoothing choices:

- EMA uses span=period with adjust=False, seeded with the first close.
- RSI and ATR use Wilder smoothing (alpha = 1/period). Tools that smooth RSI
  with a plain EMA (alpha = 2/(period+1)) report slightly different values.
- Bollinger Bands use the population standard deviation (ddof=0).
- OBV starts at 0 on the first bar and adds nothing on an unchanged close.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from crypto_forecast.config import logger
from crypto_forecast.exceptions import InsufficientDataError
from crypto_forecast.models import (
    Bar, IndicatorSnapshot, IndicatorValue,
    TREND_FALLING, TREND_FLAT, TREND_RISING,
)


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """OHLCV DataFrame indexed by UTC open time"""
    df = pd.DataFrame(
        [(b.timestamp, b.open, b.high, b.low, b.close, b.volume) for b in bars],
        columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'],
    )
    df['timestamp'] = pd.to_datetime(df['timestamp'], unit='s', utc=True)
    df.set_index('timestamp', inplace=True)
    return df


def sma(series: pd.Series, period: int) -> pd.Series:
    return series.rolling(window=period).mean()


def ema(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(span=period, adjust=False).mean()


def _wilder(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(alpha=1.0 / period, min_periods=period, adjust=False).mean()


def rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder smoothing, bounded to [0, 100]"""
    delta = close.diff()
    avg_gain = _wilder(delta.clip(lower=0), period)
    avg_loss = _wilder(-delta.clip(upper=0), period)

    with np.errstate(divide='ignore', invalid='ignore'):
        rs = avg_gain / avg_loss
        values = 100 - (100 / (1 + rs))

    # No losses in the window: 100 when there were gains, 50 on a dead flat market
    values = values.where(avg_loss != 0, np.where(avg_gain > 0, 100.0, 50.0))
    values = values.where(avg_gain.notna())
    return values.clip(lower=0, upper=100)


def macd(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    macd_line = ema(close, fast) - ema(close, slow)
    signal_line = macd_line.ewm(span=signal, adjust=False).mean()
    return pd.DataFrame({
        'macd': macd_line,
        'signal': signal_line,
        'histogram': macd_line - signal_line,
    })


def bollinger_bands(close: pd.Series, period: int = 20, num_std: float = 2.0) -> pd.DataFrame:
    middle = sma(close, period)
    std = close.rolling(window=period).std(ddof=0)
    upper = middle + num_std * std
    lower = middle - num_std * std
    width = upper - lower
    with np.errstate(divide='ignore', invalid='ignore'):
        percent_b = (close - lower) / width * 100
    # Zero-width band on a flat market
    percent_b = percent_b.where(width != 0, 50.0).where(middle.notna())
    return pd.DataFrame({
        'upper': upper,
        'middle': middle,
        'lower': lower,
        'percent_b': percent_b,
    })


def on_balance_volume(close: pd.Series, volume: pd.Series) -> pd.Series:
    direction = np.sign(close.diff()).fillna(0)
    return (direction * volume).cumsum()


def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    prev_close = close.shift()
    ranges = pd.concat([
        high - low,
        (high - prev_close).abs(),
        (low - prev_close).abs(),
    ], axis=1)
    # First bar has no previous close, so its range is high - low
    return ranges.max(axis=1)


def average_true_range(high: pd.Series, low: pd.Series, close: pd.Series,
                       period: int = 14) -> pd.Series:
    return _wilder(true_range(high, low, close), period)


def support_resistance(high: pd.Series, low: pd.Series, window: int = 50) -> Tuple[float, float]:
    """Lowest low and highest high over the most recent window"""
    return float(low.tail(window).min()), float(high.tail(window).max())


def percent_change(series: pd.Series, periods: int) -> float:
    """Change of the latest value against the value `periods` bars back, as % of the latest"""
    last = float(series.iloc[-1])
    if len(series) <= periods or last == 0:
        return 0.0
    previous = float(series.iloc[-1 - periods])
    return (last - previous) / abs(last) * 100


def trend_of(series: pd.Series, lookback: int = 5, tolerance: float = 0.001) -> str:
    """
    Coarse trend tag: latest value against the value `lookback` bars earlier

    Changes within `tolerance` (relative) are flat.
    """
    valid = series.dropna()
    if len(valid) < 2:
        return TREND_FLAT
    steps = min(lookback, len(valid) - 1)
    last = float(valid.iloc[-1])
    previous = float(valid.iloc[-1 - steps])
    change = last - previous
    if abs(change) <= tolerance * max(abs(previous), abs(last)):
        return TREND_FLAT
    return TREND_RISING if change > 0 else TREND_FALLING


@dataclass(frozen=True)
class IndicatorConfig:
    """Lookback windows for the indicator set"""

    sma_periods: Tuple[int, ...] = (7, 20, 50)
    ema_periods: Tuple[int, ...] = (12, 26, 50)
    long_term_period: int = 200
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_std: float = 2.0
    atr_period: int = 14
    sr_window: int = 50
    obv_change_period: int = 5
    trend_lookback: int = 5
    flat_tolerance: float = 0.001

    @property
    def min_bars(self) -> int:
        """Largest lookback window, the minimum sequence length"""
        return max(
            max(self.sma_periods),
            max(self.ema_periods),
            self.rsi_period + 1,
            self.macd_slow + self.macd_signal,
            self.bb_period,
            self.atr_period,
            self.obv_change_period + 1,
        )


class TechnicalAnalyzer:
    """Computes an indicator snapshot from an OHLCV sequence"""

    def __init__(self, config: Optional[IndicatorConfig] = None):
        self.config = config or IndicatorConfig()

    def compute(self, bars: Sequence[Bar]) -> IndicatorSnapshot:
        """
        Compute the latest value of every configured indicator

        Args:
            bars: Bars sorted ascending by timestamp

        Returns:
            IndicatorSnapshot

        Raises:
            InsufficientDataError: fewer bars than the largest lookback window
            ValueError: bars are not strictly ascending
        """
        cfg = self.config
        if len(bars) < cfg.min_bars:
            raise InsufficientDataError(cfg.min_bars, len(bars))
        for previous, current in zip(bars, bars[1:]):
            if current.timestamp <= previous.timestamp:
                raise ValueError(f"Bars must be strictly ascending by timestamp "
                                 f"({previous.timestamp} then {current.timestamp})")

        df = bars_to_frame(bars)
        close, high, low, volume = df['close'], df['high'], df['low'], df['volume']
        current_price = float(close.iloc[-1])

        indicators: Dict[str, IndicatorValue] = {}
        notes: List[str] = []

        def add(name: str, series: pd.Series, signal: str = "", **extra: float):
            values = {'value': float(series.iloc[-1])}
            values.update(extra)
            indicators[name] = IndicatorValue(
                name=name,
                values=values,
                trend=trend_of(series, cfg.trend_lookback, cfg.flat_tolerance),
                signal=signal,
            )

        # Moving averages
        sma_series = {period: sma(close, period) for period in cfg.sma_periods}
        ema_series = {period: ema(close, period) for period in cfg.ema_periods}
        has_long_term = len(bars) >= cfg.long_term_period
        if has_long_term:
            sma_series[cfg.long_term_period] = sma(close, cfg.long_term_period)
            ema_series[cfg.long_term_period] = ema(close, cfg.long_term_period)

        for period, series in sorted(sma_series.items()):
            add(f"SMA-{period}", series, _price_vs_average(current_price, float(series.iloc[-1])))
        for period, series in sorted(ema_series.items()):
            add(f"EMA-{period}", series, _price_vs_average(current_price, float(series.iloc[-1])))

        sma_last = {period: float(series.iloc[-1]) for period, series in sma_series.items()}
        ema_last = {period: float(series.iloc[-1]) for period, series in ema_series.items()}
        notes.extend(_moving_average_notes(cfg, current_price, sma_last, ema_last, has_long_term))

        # RSI
        rsi_series = rsi(close, cfg.rsi_period)
        add(f"RSI-{cfg.rsi_period}", rsi_series, _rsi_signal(float(rsi_series.iloc[-1])))

        # MACD
        macd_df = macd(close, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
        last_macd = macd_df.iloc[-1]
        indicators['MACD'] = IndicatorValue(
            name='MACD',
            values={
                'macd': float(last_macd['macd']),
                'signal': float(last_macd['signal']),
                'histogram': float(last_macd['histogram']),
            },
            trend=trend_of(macd_df['histogram'], cfg.trend_lookback, cfg.flat_tolerance),
            signal=_macd_signal(float(last_macd['macd']), float(last_macd['signal'])),
        )

        # Bollinger Bands
        bb_df = bollinger_bands(close, cfg.bb_period, cfg.bb_std)
        last_bb = bb_df.iloc[-1]
        indicators['BollingerBands'] = IndicatorValue(
            name='BollingerBands',
            values={
                'upper': float(last_bb['upper']),
                'middle': float(last_bb['middle']),
                'lower': float(last_bb['lower']),
                'percent_b': float(last_bb['percent_b']),
            },
            trend=trend_of(bb_df['middle'], cfg.trend_lookback, cfg.flat_tolerance),
            signal=_bollinger_signal(current_price, float(last_bb['upper']), float(last_bb['lower'])),
        )

        # On Balance Volume
        obv_series = on_balance_volume(close, volume)
        obv_change = percent_change(obv_series, cfg.obv_change_period)
        add('OBV', obv_series, _obv_signal(obv_change), change_pct=obv_change)

        # Average True Range
        atr_series = average_true_range(high, low, close, cfg.atr_period)
        atr_pct = float(atr_series.iloc[-1]) / current_price * 100
        add(f"ATR-{cfg.atr_period}", atr_series, _atr_signal(atr_pct), percent_of_price=atr_pct)

        # Support and resistance
        support, resistance = support_resistance(high, low, cfg.sr_window)
        indicators['SupportLevel'] = IndicatorValue(
            name='SupportLevel',
            values={'value': support, 'distance_pct': (current_price - support) / current_price * 100},
            trend=trend_of(low.rolling(cfg.sr_window, min_periods=1).min(),
                           cfg.trend_lookback, cfg.flat_tolerance),
            signal=f"Lowest low of the last {min(cfg.sr_window, len(bars))} bars",
        )
        indicators['ResistanceLevel'] = IndicatorValue(
            name='ResistanceLevel',
            values={'value': resistance, 'distance_pct': (resistance - current_price) / current_price * 100},
            trend=trend_of(high.rolling(cfg.sr_window, min_periods=1).max(),
                           cfg.trend_lookback, cfg.flat_tolerance),
            signal=f"Highest high of the last {min(cfg.sr_window, len(bars))} bars",
        )

        for indicator in indicators.values():
            if any(np.isnan(v) for v in indicator.values.values()):
                raise InsufficientDataError(cfg.min_bars, len(bars))

        logger.info(f"Computed {len(indicators)} indicators over {len(bars)} bars")
        return IndicatorSnapshot(
            last_close=current_price,
            last_timestamp=bars[-1].timestamp,
            bar_count=len(bars),
            indicators=indicators,
            notes=tuple(notes),
        )


def _price_vs_average(price: float, average: float) -> str:
    return "Price above" if price > average else "Price below" if price < average else "Price at"


def _rsi_signal(value: float) -> str:
    if value > 70:
        return "Overbought (>70)"
    if value < 30:
        return "Oversold (<30)"
    return "Neutral (30-70)"


def _macd_signal(macd_value: float, signal_value: float) -> str:
    if macd_value > signal_value:
        if macd_value > 0 and signal_value > 0:
            return "Bullish (MACD Line above Signal Line), strong bullish momentum (both lines above zero)"
        return "Bullish (MACD Line above Signal Line), potential bullish crossover (below zero)"
    if macd_value < 0 and signal_value < 0:
        return "Bearish (MACD Line below Signal Line), strong bearish momentum (both lines below zero)"
    return "Bearish (MACD Line below Signal Line), potential bearish crossover (above zero)"


def _bollinger_signal(price: float, upper: float, lower: float) -> str:
    if price > upper:
        return "Potentially overbought (price above upper band)"
    if price < lower:
        return "Potentially oversold (price below lower band)"
    return "Within normal trading range"


def _obv_signal(change_pct: float) -> str:
    if change_pct > 5.0:
        return "Strong buying pressure (OBV increasing)"
    if change_pct < -5.0:
        return "Strong selling pressure (OBV decreasing)"
    return "Neutral volume pressure"


def _atr_signal(atr_pct: float) -> str:
    if atr_pct > 5.0:
        return "High volatility (ATR > 5% of price)"
    if atr_pct > 3.0:
        return "Medium volatility (ATR 3-5% of price)"
    return "Low volatility (ATR < 3% of price)"


def _moving_average_notes(cfg: IndicatorConfig, price: float, sma_last: Dict[int, float],
                          ema_last: Dict[int, float], has_long_term: bool) -> List[str]:
    notes = []
    short, mid = min(cfg.sma_periods), sorted(cfg.sma_periods)[len(cfg.sma_periods) // 2]
    if sma_last[short] > sma_last[mid]:
        notes.append(f"Short-term Trend: Bullish (SMA {short} above SMA {mid})")
    else:
        notes.append(f"Short-term Trend: Bearish (SMA {short} below SMA {mid})")

    fast_ema, slow_ema = cfg.macd_fast, cfg.macd_slow
    if fast_ema in ema_last and slow_ema in ema_last:
        if ema_last[fast_ema] > ema_last[slow_ema]:
            notes.append(f"Short-term EMA Trend: Bullish (EMA {fast_ema} above EMA {slow_ema})")
        else:
            notes.append(f"Short-term EMA Trend: Bearish (EMA {fast_ema} below EMA {slow_ema})")

    if not has_long_term:
        return notes

    long_period = cfg.long_term_period
    anchor = max(cfg.sma_periods)
    if sma_last[anchor] > sma_last[long_period]:
        notes.append(f"Long-term Trend: Bullish ({anchor} above {long_period}, Golden Cross active)")
    else:
        notes.append(f"Long-term Trend: Bearish ({anchor} below {long_period}, Death Cross active)")

    if price > sma_last[long_period] and price > sma_last[anchor]:
        position = f"Strong bullish (Price above both {anchor} & {long_period} SMAs)"
    elif price > sma_last[long_period]:
        position = f"Moderately bullish (Price above {long_period} SMA but below {anchor} SMA)"
    elif price > sma_last[anchor]:
        position = f"Mixed signals (Price above {anchor} SMA but below {long_period} SMA)"
    else:
        position = f"Bearish (Price below both {anchor} & {long_period} SMAs)"
    notes.append(f"Price relative to SMAs: {position}")

    ema_anchor = max(cfg.ema_periods)
    ratio = ema_last[ema_anchor] / ema_last[long_period]
    if ema_last[ema_anchor] < ema_last[long_period] and ratio > 0.995:
        notes.append(f"Alert: Potential golden cross forming ({ema_anchor} EMA approaching "
                     f"{long_period} EMA from below)")
    elif ema_last[ema_anchor] > ema_last[long_period] and ratio < 1.005:
        notes.append(f"Alert: Potential death cross forming ({ema_anchor} EMA approaching "
                     f"{long_period} EMA from above)")
    return notes
