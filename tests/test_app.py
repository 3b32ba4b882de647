from __future__ import annotations

from pathlib import Path
import sys

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_market_frames
from range_predictor.app import RangePredictorApplication
from range_predictor.core.config import build_config
from range_predictor.core.events import EventRecorder
from range_predictor.core.modeling.exceptions import MissingSeriesError


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "data"
    directory.mkdir()
    for symbol, frame in make_market_frames(120).items():
        frame.to_csv(directory / f"{symbol}.csv", index=False)
    return directory


def _app(data_dir: Path, tmp_path: Path, **overrides) -> tuple[RangePredictorApplication, EventRecorder]:
    params = {
        "data_dir": data_dir,
        "models_dir": tmp_path / "models",
        "schema": "base",
        "model": "bayesian",
        "initial_train_size": 60,
        "validation_window": 20,
        "step_size": 20,
    }
    params.update(overrides)
    events = EventRecorder()
    return RangePredictorApplication(build_config(**params), events=events), events


def test_load_samples_is_cached(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path)
    samples = app.load_samples()

    assert len(samples) == 119
    assert app.load_samples() is samples
    assert app.load_samples(refresh=True) is not samples


def test_walk_forward_mode(data_dir, tmp_path) -> None:
    app, events = _app(data_dir, tmp_path)
    result = app.run("walk-forward")

    payload = result.payload["walk_forward"]
    assert result.status == "ok"
    assert payload["model"] == "bayesian"
    assert payload["aggregate"]["folds"] == 3
    assert events.count("walk_forward.fold") == 3


def test_evaluate_mode_reports_both_calibrations(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path)
    payload = app.run("evaluate", train_fraction=0.75).payload["evaluate"]

    assert payload["train_size"] == 89
    assert payload["test_size"] == 30
    assert payload["uncalibrated"]["sample_count"] == 30
    assert set(payload["calibrated"]["low"]) >= {"mape", "median_error", "accuracy_breakdown"}


def test_evaluate_rejects_bad_fraction(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path)

    with pytest.raises(ValueError):
        app.evaluate(train_fraction=1.0)


def test_predict_mode_with_regime_ensemble_saves_model(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path, model="ensemble")
    payload = app.run("predict", save=True).payload["predict"]

    assert payload["model"] == "ensemble"
    assert payload["prediction"]["final_low"] < payload["prediction"]["final_high"]
    assert Path(payload["saved_to"]).exists()
    assert Path(payload["saved_to"]).name == "msft_base_ensemble.joblib"


def test_predict_mode_with_single_model(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path, model="lightgbm")
    payload = app.predict()

    assert payload["model"] == "lightgbm"
    assert "saved_to" not in payload
    assert set(payload["prediction"]) == {"date", "final_low", "final_high"}


def test_predict_holds_out_latest_labelled_session_by_default(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path, model="lightgbm")
    samples = app.load_samples()
    payload = app.predict()

    assert payload["target_offset"] == 0
    assert payload["actual"] == {"low": samples[-1].low, "high": samples[-1].high}
    assert pd.Timestamp(payload["prediction"]["date"]) == pd.Timestamp(samples.dates[-1])


def test_predict_with_target_offset_forecasts_from_final_session(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path, model="ensemble", target_offset=1)
    samples = app.load_samples()
    payload = app.predict()

    last_date = pd.Timestamp(make_market_frames(120)["MSFT"]["Date"].iloc[-1])
    assert len(samples) == 118
    assert payload["target_offset"] == 1
    assert payload["actual"] is None
    assert pd.Timestamp(payload["prediction"]["date"]) == last_date
    assert pd.Timestamp(samples.dates[-1]) < last_date
    assert payload["prediction"]["final_low"] < payload["prediction"]["final_high"]


def test_missing_price_file_surfaces(tmp_path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    app, _ = _app(empty, tmp_path)

    with pytest.raises(MissingSeriesError):
        app.run("walk-forward")


def test_unknown_mode_is_rejected(data_dir, tmp_path) -> None:
    app, _ = _app(data_dir, tmp_path)

    with pytest.raises(ValueError):
        app.run("dashboard")
