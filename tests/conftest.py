"""Shared synthetic market fixtures."""

from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from range_predictor.core.features import FeatureVectorProvider, SampleSet, get_schema


def make_price_frame(
    rows: int = 120,
    *,
    start: float = 100.0,
    seed: int = 0,
    drift: float = 0.0005,
    volatility: float = 0.01,
    first_date: str = "2024-01-02",
) -> pd.DataFrame:
    """Random-walk OHLCV frame with a ``Date`` column on business days."""

    rng = np.random.default_rng(seed)
    dates = pd.bdate_range(first_date, periods=rows)
    returns = rng.normal(drift, volatility, rows)
    close = start * np.exp(np.cumsum(returns))
    open_ = close * (1 + rng.normal(0, volatility / 4, rows))
    spread = np.abs(rng.normal(0.012, 0.004, rows)) * close
    high = np.maximum(open_, close) + spread / 2
    low = np.minimum(open_, close) - spread / 2
    volume = rng.integers(800_000, 1_600_000, rows).astype(float)
    return pd.DataFrame(
        {
            "Date": dates,
            "Open": open_,
            "High": high,
            "Low": low,
            "Close": close,
            "Volume": volume,
        }
    )


def make_market_frames(rows: int = 120) -> dict[str, pd.DataFrame]:
    return {
        "DOW": make_price_frame(rows, start=38_000.0, seed=1),
        "QQQ": make_price_frame(rows, start=420.0, seed=2),
        "MSFT": make_price_frame(rows, start=400.0, seed=3),
    }


def make_linear_samples(rows: int = 80, *, seed: int = 0, schema_name: str = "base") -> SampleSet:
    """Samples whose low/high are a noisy linear function of the features."""

    schema = get_schema(schema_name)
    rng = np.random.default_rng(seed)
    X = rng.normal(0.0, 1.0, (rows, len(schema)))
    weights = rng.normal(0.0, 1.0, len(schema))
    mid = 100.0 + X @ weights + rng.normal(0.0, 0.2, rows)
    low = mid - 1.0
    high = mid + 1.0
    dates = pd.bdate_range("2024-01-02", periods=rows)
    context = {
        "Volatility10": np.full(rows, 0.01),
        "ROC10": np.zeros(rows),
        "Volume": np.ones(rows),
        "Volatility": np.full(rows, 0.015),
        "RSI": np.full(rows, 50.0),
    }
    return SampleSet.from_arrays(schema, X, low, high, dates=dates, context=context)


@pytest.fixture
def market_frames() -> dict[str, pd.DataFrame]:
    return make_market_frames()


@pytest.fixture
def market_samples(market_frames: dict[str, pd.DataFrame]) -> SampleSet:
    return FeatureVectorProvider("enhanced").build(market_frames)


@pytest.fixture
def linear_samples() -> SampleSet:
    return make_linear_samples()
