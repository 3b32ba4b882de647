from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from range_predictor.core.indicators import (
    DEFAULT_CORRELATION,
    IndicatorInputs,
    average_true_range,
    bollinger_position,
    ema_ratio,
    intraday_volatility,
    normalized_volume,
    price_position,
    rate_of_change,
    relative_strength_index,
    rolling_return_correlation,
    rolling_return_volatility,
    safe_divide,
    simple_returns,
    true_range,
)


def _inputs(close, high=None, low=None, volume=None) -> IndicatorInputs:
    index = pd.RangeIndex(len(close))
    close_series = pd.Series(close, index=index, dtype=float)
    return IndicatorInputs(
        high=pd.Series(high if high is not None else close, index=index, dtype=float),
        low=pd.Series(low if low is not None else close, index=index, dtype=float),
        close=close_series,
        volume=pd.Series(volume, index=index, dtype=float) if volume is not None else None,
    )


def test_simple_returns_guard_non_positive_prior_close() -> None:
    close = pd.Series([0.0, 10.0, 11.0, -1.0, 2.0])
    returns = simple_returns(close)

    assert np.isnan(returns.iloc[0])
    assert returns.iloc[1] == 0.0
    assert returns.iloc[2] == pytest.approx(0.1)
    assert returns.iloc[4] == 0.0


def test_intraday_volatility_is_range_over_close() -> None:
    inputs = _inputs([100.0, 0.0], high=[102.0, 1.0], low=[98.0, 0.5])
    result = intraday_volatility(inputs)

    assert result.iloc[0] == pytest.approx(0.04)
    assert result.iloc[1] == 0.0


def test_normalized_volume_uses_full_series_mean() -> None:
    volume = pd.Series([100.0, 200.0, 300.0])
    result = normalized_volume(volume)

    assert result.tolist() == pytest.approx([0.5, 1.0, 1.5])


def test_correlation_defaults_without_history() -> None:
    close_a = pd.Series(np.linspace(100, 120, 8))
    close_b = pd.Series(np.linspace(50, 40, 8))
    result = rolling_return_correlation(close_a, close_b, window=10)

    assert (result == DEFAULT_CORRELATION).all()


def test_correlation_detects_perfectly_linked_series() -> None:
    rng = np.random.default_rng(4)
    close_a = pd.Series(100 * np.exp(np.cumsum(rng.normal(0, 0.01, 40))))
    close_b = close_a * 2
    result = rolling_return_correlation(close_a, close_b, window=10)

    assert result.iloc[:11].eq(DEFAULT_CORRELATION).all()
    assert result.iloc[12:].to_numpy() == pytest.approx(np.ones(28))


def test_correlation_flat_series_falls_back() -> None:
    close_a = pd.Series(np.full(30, 100.0))
    close_b = pd.Series(np.linspace(10, 20, 30))
    result = rolling_return_correlation(close_a, close_b, window=10)

    assert (result == DEFAULT_CORRELATION).all()


def test_thirty_flat_sessions_give_neutral_values() -> None:
    flat = pd.Series(np.full(30, 100.0))

    for series, expected in (
        (rolling_return_volatility(flat, window=10), 0.0),
        (bollinger_position(flat, period=20), 0.0),
        (rate_of_change(flat, period=10), 0.0),
        (relative_strength_index(flat, period=14), 50.0),
    ):
        assert series.notna().all()
        assert (series == expected).all()


def test_price_position_handles_flat_window() -> None:
    flat = pd.Series(np.full(25, 50.0))
    rising = pd.Series(np.arange(25, dtype=float))

    assert (price_position(flat, period=20) == 0.5).all()
    assert price_position(rising, period=20).iloc[-1] == pytest.approx(1.0)
    assert price_position(rising, period=20).iloc[5] == 0.5


def test_rsi_neutral_on_short_history_and_extreme_on_gains() -> None:
    rising = pd.Series(np.arange(1, 31, dtype=float))
    rsi = relative_strength_index(rising, period=14)

    assert (rsi.iloc[:14] == 50.0).all()
    assert rsi.iloc[-1] == pytest.approx(100.0)
    assert (relative_strength_index(pd.Series(np.full(30, 5.0))) == 50.0).all()


def test_true_range_and_atr_use_previous_close() -> None:
    inputs = _inputs([10.0, 12.0, 11.0], high=[10.5, 12.5, 11.5], low=[9.5, 11.8, 9.0])
    tr = true_range(inputs)
    atr = average_true_range(inputs, period=14)

    assert np.isnan(tr.iloc[0])
    assert tr.iloc[1] == pytest.approx(2.5)
    assert tr.iloc[2] == pytest.approx(3.0)
    assert atr.iloc[0] == 0.0
    assert atr.iloc[2] == pytest.approx(2.75)


def test_rolling_volatility_requires_full_window() -> None:
    close = pd.Series([100.0, 101.0, 100.0, 101.0, 100.0, 101.0, 100.0])
    vol = rolling_return_volatility(close, window=5)

    assert (vol.iloc[:5] == 0.0).all()
    assert vol.iloc[5] > 0


def test_rate_of_change_and_ema_ratio_defaults() -> None:
    close = pd.Series([10.0, 11.0, 12.0])

    assert rate_of_change(close, period=5).tolist() == [0.0, 0.0, 0.0]
    assert rate_of_change(close, period=2).iloc[2] == pytest.approx(0.2)
    assert ema_ratio(pd.Series([0.0, 0.0]), span=5).tolist() == [1.0, 1.0]


def test_safe_divide_returns_default_for_tiny_denominators() -> None:
    numerator = pd.Series([1.0, 2.0, 3.0])
    denominator = pd.Series([2.0, 1e-12, -4.0])
    result = safe_divide(numerator, denominator)

    assert result.tolist() == pytest.approx([0.5, 0.0, -0.75])
    assert safe_divide(1.0, 0.0, default=7.0) == 7.0
