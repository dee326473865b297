"""Tests for the indicator engine."""

import pandas as pd
import pytest

from crypto_forecast.analysis.technical import (
    IndicatorConfig,
    TechnicalAnalyzer,
    bars_to_frame,
    ema,
    macd,
    on_balance_volume,
    percent_change,
    rsi,
    true_range,
    trend_of,
)
from crypto_forecast.exceptions import InsufficientDataError

EXPECTED_INDICATORS = {
    "SMA-7", "SMA-20", "SMA-50",
    "EMA-12", "EMA-26", "EMA-50",
    "RSI-14", "MACD", "BollingerBands", "OBV", "ATR-14",
    "SupportLevel", "ResistanceLevel",
}


@pytest.fixture
def analyzer():
    return TechnicalAnalyzer()


def test_snapshot_contains_every_configured_indicator(analyzer, ramp_bars):
    snapshot = analyzer.compute(ramp_bars)

    assert set(snapshot.indicators) == EXPECTED_INDICATORS
    assert snapshot.bar_count == 60
    assert snapshot.last_close == 110.0
    assert snapshot.last_timestamp == ramp_bars[-1].timestamp


def test_sma_20_is_mean_of_last_20_closes(analyzer, ramp_bars):
    snapshot = analyzer.compute(ramp_bars)

    closes = [bar.close for bar in ramp_bars]
    assert snapshot["SMA-20"].value == pytest.approx(sum(closes[-20:]) / 20)
    assert snapshot["SMA-20"].value == pytest.approx(102.75)
    assert snapshot["SMA-20"].trend == "rising"


def test_obv_non_decreasing_while_price_non_decreasing(analyzer, ramp_bars):
    frame = bars_to_frame(ramp_bars)
    obv = on_balance_volume(frame["close"], frame["volume"])

    assert (obv.diff().dropna() >= 0).all()
    snapshot = analyzer.compute(ramp_bars)
    assert snapshot["OBV"].value == 100.0
    assert snapshot["OBV"].values["change_pct"] == pytest.approx(50.0)
    assert "buying pressure" in snapshot["OBV"].signal


def test_rsi_is_100_when_price_never_falls(analyzer, ramp_bars):
    snapshot = analyzer.compute(ramp_bars)

    assert snapshot["RSI-14"].value == 100.0
    assert snapshot["RSI-14"].signal.startswith("Overbought")


def test_support_and_resistance_bracket_recent_range(analyzer, ramp_bars):
    snapshot = analyzer.compute(ramp_bars)

    assert snapshot["SupportLevel"].value == 99.0
    assert snapshot["ResistanceLevel"].value == 111.0
    assert snapshot["SupportLevel"].trend == "flat"


def test_compute_is_deterministic(analyzer, random_walk_bars):
    first = analyzer.compute(random_walk_bars)
    second = analyzer.compute(list(random_walk_bars))

    assert first == second


def test_values_stay_in_valid_ranges(analyzer, random_walk_bars):
    snapshot = analyzer.compute(random_walk_bars)

    assert 0.0 <= snapshot["RSI-14"].value <= 100.0
    bands = snapshot["BollingerBands"].values
    assert bands["lower"] <= bands["middle"] <= bands["upper"]
    assert snapshot["ATR-14"].value > 0
    assert snapshot["SupportLevel"].value <= snapshot.last_close <= snapshot["ResistanceLevel"].value
    for indicator in snapshot.indicators.values():
        assert indicator.trend in ("rising", "falling", "flat")

    frame = bars_to_frame(random_walk_bars)
    series = rsi(frame["close"]).dropna()
    assert series.between(0, 100).all()


def test_long_term_block_when_200_bars_available(analyzer, random_walk_bars):
    snapshot = analyzer.compute(random_walk_bars)

    assert "SMA-200" in snapshot
    assert "EMA-200" in snapshot
    assert any(note.startswith("Long-term Trend") for note in snapshot.notes)
    assert any(note.startswith("Price relative to SMAs") for note in snapshot.notes)


def test_long_term_block_absent_with_short_history(analyzer, ramp_bars):
    snapshot = analyzer.compute(ramp_bars)

    assert "SMA-200" not in snapshot
    assert not any(note.startswith("Long-term Trend") for note in snapshot.notes)
    assert any(note.startswith("Short-term Trend: Bullish") for note in snapshot.notes)


def test_too_few_bars_raises(analyzer, bar_factory):
    with pytest.raises(InsufficientDataError) as excinfo:
        analyzer.compute(bar_factory([100.0] * 49))

    assert excinfo.value.required == 50
    assert excinfo.value.available == 49


def test_empty_sequence_raises(analyzer):
    with pytest.raises(InsufficientDataError):
        analyzer.compute([])


def test_unsorted_bars_raise(analyzer, ramp_bars):
    bars = list(ramp_bars)
    bars[10], bars[11] = bars[11], bars[10]

    with pytest.raises(ValueError):
        analyzer.compute(bars)


def test_min_bars_follows_config():
    config = IndicatorConfig(sma_periods=(5, 10, 20), ema_periods=(5, 10, 20))
    assert config.min_bars == 35
    assert IndicatorConfig().min_bars == 50


def test_ema_seeded_with_first_value():
    result = ema(pd.Series([1.0, 2.0, 3.0]), 3)
    assert result.tolist() == pytest.approx([1.0, 1.5, 2.25])


def test_rsi_wilder_smoothing():
    result = rsi(pd.Series([1.0, 2.0, 1.0, 2.0]), period=2)
    assert result.iloc[-1] == pytest.approx(75.0)


def test_rsi_flat_and_falling_markets():
    assert rsi(pd.Series([30.0] * 30)).iloc[-1] == 50.0
    assert rsi(pd.Series([float(x) for x in range(60, 30, -1)])).iloc[-1] == 0.0


def test_macd_histogram_is_line_minus_signal(random_walk_bars):
    close = bars_to_frame(random_walk_bars)["close"]
    result = macd(close)

    assert (result["histogram"] - (result["macd"] - result["signal"])).abs().max() < 1e-9


def test_true_range_first_bar_is_high_minus_low():
    high = pd.Series([12.0, 15.0])
    low = pd.Series([10.0, 13.0])
    close = pd.Series([11.0, 14.0])

    assert true_range(high, low, close).tolist() == [2.0, 4.0]


def test_trend_tags():
    assert trend_of(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])) == "rising"
    assert trend_of(pd.Series([6.0, 5.0, 4.0, 3.0, 2.0, 1.0])) == "falling"
    assert trend_of(pd.Series([100.0, 100.01, 100.02, 100.0, 100.01, 100.02])) == "flat"
    assert trend_of(pd.Series([float("nan"), 5.0])) == "flat"


def test_percent_change_guards_zero():
    assert percent_change(pd.Series([5.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]), 5) == 0.0
    assert percent_change(pd.Series([1.0, 2.0]), 5) == 0.0
