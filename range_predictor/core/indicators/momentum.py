"""Momentum oscillators."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .utils import IndicatorInputs, history_length


def relative_strength_index(close: pd.Series, *, period: int = 14) -> pd.Series:
    """Average gain/loss RSI over the last ``period`` price changes.

    Neutral 50 until ``period + 1`` prices exist or when the window is flat,
    100 when the window holds gains but no losses.
    """

    change = close.diff()
    gains = change.clip(lower=0).rolling(window=period, min_periods=period).sum() / period
    losses = (-change).clip(lower=0).rolling(window=period, min_periods=period).sum() / period

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = gains / losses
        rsi = 100.0 - (100.0 / (1.0 + rs))
    rsi = rsi.where(losses > 0, 100.0)
    rsi = rsi.where((gains > 0) | (losses > 0), 50.0)
    rsi = rsi.where(history_length(close) > period, 50.0)
    return rsi.fillna(50.0).rename(f"RSI_{period}")


def stochastic_oscillator(inputs: IndicatorInputs, *, period: int = 14) -> pd.Series:
    """%K stochastic oscillator, 50 on short history or a flat window."""

    highest = inputs.high.rolling(window=period, min_periods=period).max()
    lowest = inputs.low.rolling(window=period, min_periods=period).min()
    spread = highest - lowest
    k = (inputs.close - lowest) / spread.where(spread != 0) * 100.0
    return k.fillna(50.0).rename(f"Stochastic_{period}")


__all__ = ["relative_strength_index", "stochastic_oscillator"]
