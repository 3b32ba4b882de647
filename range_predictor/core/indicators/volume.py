"""Volume based indicators."""

from __future__ import annotations

import numpy as np
import pandas as pd

from .utils import IndicatorInputs

VOLUME_SCALE = 1_000_000.0


def normalized_volume(volume: pd.Series) -> pd.Series:
    """Volume relative to the mean volume of the whole series."""

    average = float(volume.mean()) if len(volume) else 0.0
    if not np.isfinite(average) or average <= 0:
        return pd.Series(1.0, index=volume.index, name="VolumeNormalized")
    return (volume / average).rename("VolumeNormalized")


def on_balance_volume(
    close: pd.Series,
    volume: pd.Series,
    *,
    period: int = 20,
) -> pd.Series:
    """Signed volume summed over the trailing ``period`` sessions, in millions."""

    direction = np.sign(close.diff()).fillna(0.0)
    signed = direction * volume
    obv = signed.rolling(window=period, min_periods=1).sum() / VOLUME_SCALE
    return obv.rename("OBV")


def price_volume_trend(
    close: pd.Series,
    volume: pd.Series,
    *,
    period: int = 20,
) -> pd.Series:
    """Volume weighted by fractional price change over ``period`` sessions, in millions."""

    previous = close.shift(1)
    change = ((close - previous) / previous.where(previous != 0)).fillna(0.0)
    pvt = (change * volume).rolling(window=period, min_periods=1).sum() / VOLUME_SCALE
    return pvt.rename("PVT")


def volume_weighted_average_price(inputs: IndicatorInputs, *, period: int = 20) -> pd.Series:
    """Rolling VWAP of the typical price; the close stands in on short history."""

    if inputs.volume is None:
        raise ValueError("Volume series is required to compute VWAP.")
    weighted = (inputs.typical_price * inputs.volume).rolling(window=period, min_periods=period).sum()
    total = inputs.volume.rolling(window=period, min_periods=period).sum()
    vwap = weighted / total.where(total != 0)
    return vwap.fillna(inputs.close).rename(f"VWAP_{period}")


def volume_rate_of_change(volume: pd.Series, *, period: int = 10) -> pd.Series:
    """Fractional change in volume versus ``period`` sessions earlier."""

    previous = volume.shift(period)
    roc = (volume - previous) / previous.where(previous != 0)
    return roc.fillna(0.0).rename(f"VolumeROC_{period}")


__all__ = [
    "normalized_volume",
    "on_balance_volume",
    "price_volume_trend",
    "volume_rate_of_change",
    "volume_weighted_average_price",
]
