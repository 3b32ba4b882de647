from __future__ import annotations

from pathlib import Path
import sys

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_market_frames
from range_predictor.core.data_loader import load_market_data, load_price_frame
from range_predictor.core.modeling.exceptions import MissingSeriesError


def _write_frames(directory: Path, frames: dict[str, pd.DataFrame]) -> None:
    for symbol, frame in frames.items():
        frame.to_csv(directory / f"{symbol}.csv", index=False)


def test_load_price_frame_normalises_columns(tmp_path) -> None:
    path = tmp_path / "prices.csv"
    pd.DataFrame(
        {
            "timestamp": ["2024-01-03", "2024-01-02", "2024-01-03"],
            "open": [1.0, 1.0, 1.1],
            "high": [2.0, 2.0, 2.2],
            "low": [0.5, 0.5, 0.6],
            "close": [1.5, 1.5, 1.6],
            "volume": [10, 20, 30],
        }
    ).to_csv(path, index=False)

    frame = load_price_frame(path)

    assert list(frame.columns) == ["Open", "High", "Low", "Close", "Volume"]
    assert frame.index.name == "Date"
    assert frame.index.is_monotonic_increasing
    assert len(frame) == 2
    assert frame.loc["2024-01-03", "Close"] == 1.6


def test_load_price_frame_requires_dates_and_prices(tmp_path) -> None:
    missing_file = tmp_path / "absent.csv"
    with pytest.raises(FileNotFoundError):
        load_price_frame(missing_file)

    no_date = tmp_path / "nodate.csv"
    pd.DataFrame({"Close": [1.0]}).to_csv(no_date, index=False)
    with pytest.raises(ValueError):
        load_price_frame(no_date)

    no_low = tmp_path / "nolow.csv"
    pd.DataFrame({"Date": ["2024-01-02"], "High": [1.0], "Close": [1.0], "Volume": [1.0]}).to_csv(
        no_low, index=False
    )
    with pytest.raises(ValueError):
        load_price_frame(no_low)


def test_load_market_data_reads_every_symbol(tmp_path) -> None:
    _write_frames(tmp_path, make_market_frames(30))

    frames = load_market_data(tmp_path, ("dow", "QQQ", "MSFT"))

    assert set(frames) == {"DOW", "QQQ", "MSFT"}
    assert all(len(frame) == 30 for frame in frames.values())


def test_load_market_data_reports_all_missing_symbols(tmp_path) -> None:
    frames = make_market_frames(10)
    _write_frames(tmp_path, {"DOW": frames["DOW"]})

    with pytest.raises(MissingSeriesError) as excinfo:
        load_market_data(tmp_path, ("DOW", "QQQ", "MSFT"))

    assert excinfo.value.missing == ("MSFT", "QQQ")
