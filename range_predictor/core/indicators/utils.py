"""Utility helpers for indicator computations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

SAFE_DIVIDE_EPSILON = 1e-8


@dataclass(frozen=True)
class IndicatorInputs:
    """Container bundling typical OHLCV inputs for indicators."""

    high: pd.Series
    low: pd.Series
    close: pd.Series
    volume: pd.Series | None = None
    open: pd.Series | None = None

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "IndicatorInputs":
        """Build inputs from a frame with ``Open/High/Low/Close/Volume`` columns."""

        return cls(
            high=frame["High"].astype(float),
            low=frame["Low"].astype(float),
            close=frame["Close"].astype(float),
            volume=frame["Volume"].astype(float) if "Volume" in frame else None,
            open=frame["Open"].astype(float) if "Open" in frame else None,
        )

    @property
    def typical_price(self) -> pd.Series:
        """Return the standard typical price series."""

        high = self.high.fillna(self.close)
        low = self.low.fillna(self.close)
        return (high + low + self.close) / 3


def history_length(series: pd.Series) -> pd.Series:
    """Return the count of observations available at each row."""

    return pd.Series(np.arange(1, len(series) + 1), index=series.index)


def safe_divide(
    numerator: pd.Series | np.ndarray | float,
    denominator: pd.Series | np.ndarray | float,
    *,
    default: float = 0.0,
    epsilon: float = SAFE_DIVIDE_EPSILON,
) -> pd.Series | np.ndarray | float:
    """Divide while substituting ``default`` wherever ``|denominator| < epsilon``."""

    if np.isscalar(numerator) and np.isscalar(denominator):
        return default if abs(float(denominator)) < epsilon else float(numerator) / float(denominator)

    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        result = np.where(np.abs(den) < epsilon, default, num / den)
    index = next((obj.index for obj in (numerator, denominator) if isinstance(obj, pd.Series)), None)
    if index is not None:
        return pd.Series(result, index=index, dtype="float64")
    return result


def simple_returns(close: pd.Series) -> pd.Series:
    """Return one-session returns, 0 where the prior close is not positive.

    The first row has no prior close and stays ``NaN`` so rolling windows can
    tell missing history apart from a flat session.
    """

    previous = close.shift(1)
    returns = (close - previous) / previous.where(previous > 0)
    returns = returns.where(previous > 0, 0.0)
    returns.iloc[:1] = np.nan
    return returns.astype("float64")


__all__ = [
    "IndicatorInputs",
    "SAFE_DIVIDE_EPSILON",
    "history_length",
    "safe_divide",
    "simple_returns",
]
