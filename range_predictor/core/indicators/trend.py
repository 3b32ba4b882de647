"""Trend-following indicators computed over trailing windows."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .utils import history_length


def simple_moving_average(close: pd.Series, *, period: int) -> pd.Series:
    """Trailing SMA, falling back to the latest price on short history."""

    sma = close.rolling(window=period, min_periods=period).mean()
    return sma.fillna(close).rename(f"SMA_{period}")


def exponential_moving_average(close: pd.Series, *, span: int) -> pd.Series:
    """EMA seeded with the first price; expanding mean until ``span`` rows exist."""

    ema = close.ewm(span=span, adjust=False).mean()
    fallback = close.expanding(min_periods=1).mean()
    ema = ema.where(history_length(close) >= span, fallback)
    return ema.rename(f"EMA_{span}")


def ema_ratio(close: pd.Series, *, span: int) -> pd.Series:
    """Price divided by its EMA, 1.0 when the EMA is not positive."""

    ema = exponential_moving_average(close, span=span)
    ratio = close / ema.where(ema > 0)
    return ratio.where(ema > 0, 1.0).rename(f"EMAR_{span}")


def price_position(close: pd.Series, *, period: int = 20) -> pd.Series:
    """Where the price sits within its trailing min/max range (0..1)."""

    rolling_min = close.rolling(window=period, min_periods=period).min()
    rolling_max = close.rolling(window=period, min_periods=period).max()
    spread = rolling_max - rolling_min
    position = (close - rolling_min) / spread.where(spread != 0)
    return position.fillna(0.5).rename(f"PricePosition_{period}")


def rate_of_change(close: pd.Series, *, period: int) -> pd.Series:
    """Fractional change over ``period`` sessions, 0 on short history or zero base."""

    previous = close.shift(period)
    roc = (close - previous) / previous.where(previous != 0)
    return roc.fillna(0.0).rename(f"ROC_{period}")


def price_momentum(close: pd.Series, *, period: int = 20) -> pd.Series:
    """Momentum expressed as the fractional change over ``period`` sessions."""

    return rate_of_change(close, period=period).rename(f"Momentum_{period}")


def macd_line(close: pd.Series, *, fast: int = 12, slow: int = 26) -> pd.Series:
    """Difference between the fast and slow EMA, 0 until ``slow`` rows exist."""

    fast_ema = exponential_moving_average(close, span=fast)
    slow_ema = exponential_moving_average(close, span=slow)
    macd = (fast_ema - slow_ema).where(history_length(close) >= slow, 0.0)
    return macd.rename("MACD")


def rolling_difference(series: pd.Series, *, periods: int) -> pd.Series:
    """Change in ``series`` versus ``periods`` rows earlier, 0 on short history."""

    return series.diff(periods).fillna(0.0).astype(np.float64)


__all__ = [
    "ema_ratio",
    "exponential_moving_average",
    "macd_line",
    "price_momentum",
    "price_position",
    "rate_of_change",
    "rolling_difference",
    "simple_moving_average",
]
