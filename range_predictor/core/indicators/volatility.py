"""Volatility related indicators."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .utils import IndicatorInputs, history_length, simple_returns


def intraday_volatility(inputs: IndicatorInputs) -> pd.Series:
    """Session range relative to the close, 0 when the close is not positive."""

    close = inputs.close
    ratio = (inputs.high - inputs.low) / close.where(close > 0)
    return ratio.fillna(0.0).rename("IntradayVolatility")


def rolling_return_volatility(close: pd.Series, *, window: int) -> pd.Series:
    """Population standard deviation of the last ``window`` returns.

    Rows with fewer than ``window`` returns report 0.
    """

    returns = simple_returns(close)
    std = returns.rolling(window=window, min_periods=window).std(ddof=0)
    return std.fillna(0.0).rename(f"Volatility_{window}")


def true_range(inputs: IndicatorInputs) -> pd.Series:
    """True range per session; undefined for the first row."""

    prev_close = inputs.close.shift(1)
    tr = pd.concat(
        [
            (inputs.high - inputs.low).abs(),
            (inputs.high - prev_close).abs(),
            (inputs.low - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1, skipna=False)
    return tr.rename("TrueRange")


def average_true_range(
    inputs: IndicatorInputs,
    *,
    period: int = 14,
) -> pd.Series:
    """Return the Average True Range indicator.

    Uses the mean of whatever true ranges exist while fewer than ``period`` are
    available, and 0 before the second session.
    """

    tr = true_range(inputs)
    atr = tr.rolling(window=period, min_periods=1).mean()
    return atr.fillna(0.0).rename(f"ATR_{period}")


def true_range_ratio(inputs: IndicatorInputs) -> pd.Series:
    """True range normalised by the close."""

    close = inputs.close
    ratio = true_range(inputs) / close.where(close != 0)
    return ratio.fillna(0.0).rename("TrueRangeRatio")


def volatility_ratio(
    close: pd.Series,
    *,
    window: int = 20,
    long_window: int = 50,
) -> pd.Series:
    """Ratio of the ``window`` return volatility to the long-run volatility.

    The long-run volatility only replaces the short one once more than
    ``long_window`` returns exist; the ratio defaults to 1.0 when the
    denominator is not positive.
    """

    short_vol = rolling_return_volatility(close, window=window)
    long_vol = rolling_return_volatility(close, window=long_window)
    returns_available = history_length(close) - 1
    baseline = long_vol.where(returns_available > long_window, short_vol)
    ratio = short_vol / baseline.where(baseline > 0)
    return ratio.fillna(1.0).rename("VolatilityRatio")


def bollinger_position(close: pd.Series, *, period: int = 20) -> pd.Series:
    """Distance from the SMA in units of two standard deviations."""

    sma = close.rolling(window=period, min_periods=period).mean()
    std = close.rolling(window=period, min_periods=period).std(ddof=0)
    position = (close - sma) / (2 * std.where(std > 0))
    return position.fillna(0.0).rename("BBPosition")


def bollinger_squeeze(close: pd.Series, *, period: int = 20) -> pd.Series:
    """Relative standard deviation of the trailing window."""

    sma = close.rolling(window=period, min_periods=period).mean()
    std = close.rolling(window=period, min_periods=period).std(ddof=0)
    squeeze = std / sma.where(sma != 0)
    return squeeze.fillna(0.0).rename("BBSqueeze")


def intraday_volatility_ratio(
    inputs: IndicatorInputs,
    *,
    recent: int = 5,
    period: int = 20,
) -> pd.Series:
    """Recent mean session range versus the trailing ``period`` mean."""

    session = intraday_volatility(inputs)
    recent_mean = session.rolling(window=recent, min_periods=1).mean()
    historical = session.rolling(window=period, min_periods=period).mean()
    ratio = recent_mean / historical.where(historical != 0)
    return ratio.fillna(1.0).rename("IntradayVolatilityRatio")


def volatility_breakout(inputs: IndicatorInputs, *, period: int = 20) -> pd.Series:
    """Current session range relative to its trailing average."""

    session = intraday_volatility(inputs)
    average = session.rolling(window=period, min_periods=period).mean()
    breakout = (session - average) / average.where(average != 0)
    return breakout.fillna(0.0).astype(np.float64).rename("VolatilityBreakout")


__all__ = [
    "average_true_range",
    "bollinger_position",
    "bollinger_squeeze",
    "intraday_volatility",
    "intraday_volatility_ratio",
    "rolling_return_volatility",
    "true_range",
    "true_range_ratio",
    "volatility_breakout",
    "volatility_ratio",
]
