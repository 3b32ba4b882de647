from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_market_frames, make_price_frame
from range_predictor.core.config import FeatureSettings
from range_predictor.core.features import CONTEXT_COLUMNS, FeatureVectorProvider, SampleSet, get_schema
from range_predictor.core.modeling.exceptions import (
    InsufficientSamplesError,
    MissingSeriesError,
    SchemaViolationError,
)


@pytest.mark.parametrize("schema_name", ["base", "enhanced", "extended"])
def test_build_produces_declared_width(schema_name: str) -> None:
    samples = FeatureVectorProvider(schema_name).build(make_market_frames(90))

    assert samples.features.shape[1] == len(get_schema(schema_name))
    assert list(samples.features.columns) == list(get_schema(schema_name).names)
    assert np.isfinite(samples.X).all()


def test_first_common_date_is_dropped(market_frames) -> None:
    samples = FeatureVectorProvider("base").build(market_frames)
    first_date = pd.Timestamp(market_frames["MSFT"]["Date"].iloc[0])

    assert len(samples) == len(market_frames["MSFT"]) - 1
    assert first_date not in samples.dates
    assert samples.dates.is_monotonic_increasing


def test_only_dates_in_every_series_are_kept() -> None:
    frames = make_market_frames(60)
    frames["QQQ"] = frames["QQQ"].drop(index=[10, 11, 12])
    samples = FeatureVectorProvider("base").build(frames)

    dropped = set(frames["MSFT"]["Date"].iloc[[10, 11, 12]])
    assert len(samples) == 60 - 3 - 1
    assert dropped.isdisjoint(set(samples.dates))


def test_targets_are_target_symbol_low_and_high(market_frames) -> None:
    samples = FeatureVectorProvider("base").build(market_frames)
    msft = market_frames["MSFT"].set_index("Date")

    expected_low = msft.loc[samples.dates, "Low"].to_numpy()
    expected_high = msft.loc[samples.dates, "High"].to_numpy()
    assert samples.y_low == pytest.approx(expected_low)
    assert samples.y_high == pytest.approx(expected_high)
    assert (samples.y_high >= samples.y_low).all()


def test_target_offset_shifts_targets_forward(market_frames) -> None:
    same_day = FeatureVectorProvider("base").build(market_frames)
    next_day = FeatureVectorProvider("base", target_offset=1).build(market_frames)

    assert len(next_day) == len(same_day) - 1
    assert next_day.y_low[:5] == pytest.approx(same_day.y_low[1:6])


def test_returns_use_prior_close(market_frames) -> None:
    samples = FeatureVectorProvider("base").build(market_frames)
    close = market_frames["MSFT"].set_index("Date")["Close"]
    expected = close.pct_change().loc[samples.dates].to_numpy()

    assert samples.features["MsftReturn"].to_numpy() == pytest.approx(expected)


def test_missing_series_fails_fast(market_frames) -> None:
    del market_frames["QQQ"]
    with pytest.raises(MissingSeriesError) as excinfo:
        FeatureVectorProvider("base").build(market_frames)

    assert excinfo.value.missing == ("QQQ",)


def test_lowercase_symbol_keys_are_accepted(market_frames) -> None:
    frames = {symbol.lower(): frame for symbol, frame in market_frames.items()}
    samples = FeatureVectorProvider("base").build(frames)

    assert len(samples) == len(market_frames["MSFT"]) - 1


def test_single_common_date_is_insufficient() -> None:
    frames = {
        "DOW": make_price_frame(1, seed=1),
        "QQQ": make_price_frame(1, seed=2),
        "MSFT": make_price_frame(1, seed=3),
    }
    with pytest.raises(InsufficientSamplesError):
        FeatureVectorProvider("base").build(frames)


def test_context_comes_from_target_symbol(market_frames) -> None:
    provider = FeatureVectorProvider("enhanced")
    samples = provider.build(market_frames)
    raw, _ = provider.compute_raw_features(market_frames)

    assert tuple(samples.context.columns) == CONTEXT_COLUMNS
    assert samples.context["RSI"].to_numpy() == pytest.approx(raw["MsftRSI"].to_numpy())
    assert samples.context["Volatility10"].to_numpy() == pytest.approx(raw["MsftVolatility10"].to_numpy())


def test_custom_target_symbol_moves_to_the_end(market_frames) -> None:
    provider = FeatureVectorProvider("extended", target_symbol="QQQ")

    assert provider.symbols == ("DOW", "MSFT", "QQQ")
    assert "DowQqqCorrelation" in provider.schema.names
    samples = provider.build(market_frames)
    assert samples.y_low == pytest.approx(
        market_frames["QQQ"].set_index("Date").loc[samples.dates, "Low"].to_numpy()
    )


def test_unknown_target_symbol_is_rejected() -> None:
    with pytest.raises(ValueError):
        FeatureVectorProvider("base", target_symbol="AAPL")


def test_from_settings_uses_calendar_settings(market_frames) -> None:
    settings = FeatureSettings(schema="enhanced", market_holidays=("2024-02-19",), holiday_cap_days=5)
    provider = FeatureVectorProvider.from_settings(settings)

    assert provider.calendar.holiday_cap_days == 5
    samples = provider.build(market_frames)
    assert samples.features["DaysToMarketHoliday"].max() <= 0.5


def test_sample_set_indexing_and_slicing(market_samples: SampleSet) -> None:
    first = market_samples[0]
    last = market_samples[-1]
    window = market_samples[10:20]

    assert first.date == market_samples.dates[0]
    assert last.date == market_samples.dates[-1]
    assert len(window) == 10
    assert window.dates[0] == market_samples.dates[10]
    assert first.features.shape == (62,)
    assert not first.features.flags.writeable
    with pytest.raises(IndexError):
        market_samples[len(market_samples)]


def test_sample_set_rejects_wrong_width() -> None:
    schema = get_schema("base")
    with pytest.raises(SchemaViolationError):
        SampleSet.from_arrays(schema, np.zeros((3, 8)), [1, 2, 3], [2, 3, 4])


def test_context_column_defaults_when_absent(market_samples: SampleSet) -> None:
    assert market_samples.context_column("RSI").shape == (len(market_samples),)
    assert (market_samples.context_column("Breadth", default=1.5) == 1.5).all()


def _flat_frame(rows: int, price: float) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Date": pd.bdate_range("2024-01-02", periods=rows),
            "Open": price,
            "High": price,
            "Low": price,
            "Close": price,
            "Volume": 1_000_000.0,
        }
    )


def test_flat_market_yields_neutral_target_indicators() -> None:
    prices = {"DOW": 38_000.0, "QQQ": 420.0, "MSFT": 400.0}
    frames = {symbol: _flat_frame(31, price) for symbol, price in prices.items()}
    provider = FeatureVectorProvider("enhanced")
    raw, _ = provider.compute_raw_features(frames)

    assert len(raw) == 30
    expected = {
        "MsftVolatility": 0.0,
        "MsftVolatility10": 0.0,
        "MsftBBPosition": 0.0,
        "MsftROC10": 0.0,
        "MsftRSI": 50.0,
    }
    for column, value in expected.items():
        assert (raw[column] == value).all(), column

    samples = provider.build(frames)
    assert np.isfinite(samples.X).all()
    assert (samples.context_column("RSI") == 50.0).all()
