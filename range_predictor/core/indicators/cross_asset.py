"""Indicators relating two aligned price series."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .utils import simple_returns

DEFAULT_CORRELATION = 0.5
CORRELATION_EPSILON = 1e-8


def rolling_return_correlation(
    close_a: pd.Series,
    close_b: pd.Series,
    *,
    window: int = 10,
) -> pd.Series:
    """Pearson correlation of the two return series over the prior ``window`` sessions.

    The current session is excluded. Rows with fewer than ``window`` prior
    returns, or a near-zero denominator, report 0.5.
    """

    returns_a = simple_returns(close_a)
    returns_b = simple_returns(close_b)
    rolling_a = returns_a.rolling(window=window, min_periods=window)
    rolling_b = returns_b.rolling(window=window, min_periods=window)

    sum_sq_a = rolling_a.var(ddof=0).clip(lower=0) * window
    sum_sq_b = rolling_b.var(ddof=0).clip(lower=0) * window
    cross = rolling_a.cov(returns_b, ddof=0) * window
    denominator = np.sqrt(sum_sq_a * sum_sq_b)

    correlation = cross / denominator.where(denominator >= CORRELATION_EPSILON)
    correlation = correlation.clip(-1.0, 1.0).shift(1)
    return correlation.fillna(DEFAULT_CORRELATION).rename("ReturnCorrelation")


__all__ = ["DEFAULT_CORRELATION", "rolling_return_correlation"]
