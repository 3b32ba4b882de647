from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_linear_samples
from range_predictor.core.config import CalibrationSettings
from range_predictor.core.events import EventRecorder
from range_predictor.core.features import get_schema
from range_predictor.core.modeling import bayesian as bayesian_module
from range_predictor.core.modeling.bayesian import (
    BayesianRangeRegressor,
    FeatureStandardizer,
    TargetScaler,
    fit_variational_regression,
)
from range_predictor.core.modeling.exceptions import (
    InsufficientSamplesError,
    ModelNotTrainedError,
    NumericalFailureError,
    SchemaViolationError,
)


def test_variational_regression_recovers_linear_signal() -> None:
    rng = np.random.default_rng(7)
    Z = rng.normal(size=(200, 3))
    y = Z @ np.array([0.6, -0.3, 0.1]) + rng.normal(0, 0.05, 200)

    posterior = fit_variational_regression(Z, y, weight_prior_variance=1.0)

    assert posterior.converged
    assert posterior.weight_means == pytest.approx([0.6, -0.3, 0.1], abs=0.05)
    assert posterior.expected_precision > 100
    assert (posterior.predictive_variance(Z[:5]) > 0).all()


def test_standardizer_clips_and_guards_flat_columns() -> None:
    X = np.column_stack([np.arange(10, dtype=float), np.full(10, 3.0)])
    scaler = FeatureStandardizer(clip=1.0).fit(X)
    Z = scaler.transform(np.array([[100.0, 3.0]]))

    assert scaler.std[1] == 1.0
    assert Z.tolist() == [[1.0, 0.0]]


def test_target_scaler_round_trips() -> None:
    scaler = TargetScaler().fit(np.array([10.0, 12.0, 14.0]))
    values = np.array([9.5, 13.0, 20.0])

    assert scaler.mean == pytest.approx(12.0)
    assert scaler.inverse(scaler.transform(13.0)) == pytest.approx(13.0)
    assert scaler.inverse(scaler.transform(values)) == pytest.approx(values)


def test_standardize_saturates_at_clip_bound(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    row = np.zeros(len(linear_samples.schema))
    row[0] = 500.0
    row[1] = -500.0

    Z = model.standardize(row)[0]
    assert Z[0] == 3.0
    assert Z[1] == -3.0
    assert np.abs(Z).max() <= 3.0

    centred = model.standardize(model.standardizer.mean)[0]
    assert centred == pytest.approx(np.zeros(len(linear_samples.schema)), abs=1e-9)
    assert model.destandardize(model.target_scalers["low"].transform(101.5), "low") == pytest.approx(101.5)


def test_holdout_is_most_recent_fifth(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)

    assert model.holdout_indices == range(64, 80)
    assert model.summary()["training_samples"] == 64


def test_holdout_has_a_minimum_size() -> None:
    samples = make_linear_samples(12)
    model = BayesianRangeRegressor(samples.schema).fit(samples)

    assert len(model.holdout_indices) == 5


def test_predictions_track_linear_targets(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    predictions = model.predict_samples(linear_samples)

    assert predictions.shape == (80, 2)
    assert (predictions[:, 1] >= predictions[:, 0]).all()
    errors = np.abs(predictions[:, 0] - linear_samples.y_low) / linear_samples.y_low
    assert errors.mean() < 0.05


def test_calibration_toggle_applies_bias_corrections(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    row = linear_samples.X[0]

    raw_low, raw_high = model.predict(row)
    model.set_calibration(True)
    low, high = model.predict(row)

    assert low - raw_low == pytest.approx(model.bias_corrections["low"])
    assert high - raw_high == pytest.approx(model.bias_corrections["high"])


def test_calibration_enabled_from_settings(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema, settings=CalibrationSettings(enabled=True))

    assert model.calibration_enabled


def test_inverted_predictions_are_swapped_and_counted(linear_samples) -> None:
    events = EventRecorder()
    model = BayesianRangeRegressor(linear_samples.schema, events=events).fit(linear_samples)
    model.set_calibration(True)
    model.bias_corrections = {"low": 50.0, "high": -50.0}

    low, high = model.predict(linear_samples.X[0])

    assert low <= high
    assert model.swap_count == 1
    assert events.count("bayesian.swap") == 1
    assert events.count("bayesian.trained") == 1
    assert events.count("bayesian.calibration") == 1


def test_predictive_std_is_positive(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)

    std = model.predictive_std(linear_samples.X[:3])
    assert std.shape == (3, 2)
    assert (std > 0).all()


def test_non_finite_features_are_sanitized(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    row = np.array(linear_samples.X[0], dtype=float)
    row[0] = np.nan
    row[1] = np.inf

    low, high = model.predict(row)
    assert np.isfinite([low, high]).all()


def test_prediction_before_training_fails() -> None:
    model = BayesianRangeRegressor(get_schema("base"))

    with pytest.raises(ModelNotTrainedError):
        model.predict(np.zeros(9))


def test_wrong_feature_width_is_rejected(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)

    with pytest.raises(SchemaViolationError):
        model.predict(np.zeros(5))


def test_too_few_samples_is_rejected() -> None:
    samples = make_linear_samples(9)

    with pytest.raises(InsufficientSamplesError) as excinfo:
        BayesianRangeRegressor(samples.schema).fit(samples)

    assert excinfo.value.required == 10
    assert excinfo.value.available == 9


def test_calibration_zeroes_mean_holdout_residual(linear_samples) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    holdout = linear_samples.take(model.holdout_indices)

    model.set_calibration(False)
    raw = model.predict_samples(holdout)
    model.set_calibration(True)
    calibrated = model.predict_samples(holdout)

    raw_residual = np.mean(holdout.y_low - raw[:, 0])
    calibrated_residual = np.mean(holdout.y_low - calibrated[:, 0])
    assert raw_residual == pytest.approx(model.bias_corrections["low"])
    assert calibrated_residual == pytest.approx(0.0, abs=1e-9)
    assert np.mean(holdout.y_high - calibrated[:, 1]) == pytest.approx(0.0, abs=1e-9)
    assert model.swap_count == 0


def test_repeated_fits_are_identical(linear_samples) -> None:
    first = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    second = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)

    assert np.array_equal(first.predict_samples(linear_samples), second.predict_samples(linear_samples))
    assert first.bias_corrections == second.bias_corrections


def test_failed_refit_keeps_previous_model(linear_samples, monkeypatch) -> None:
    model = BayesianRangeRegressor(linear_samples.schema).fit(linear_samples)
    standardizer = model.standardizer
    posteriors = model.posteriors
    corrections = dict(model.bias_corrections)
    before = model.predict(linear_samples.X[0])

    original = bayesian_module.fit_variational_regression
    calls = []

    def fail_on_high_target(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise NumericalFailureError("Posterior precision matrix is singular.")
        return original(*args, **kwargs)

    monkeypatch.setattr(bayesian_module, "fit_variational_regression", fail_on_high_target)
    with pytest.raises(NumericalFailureError):
        model.fit(make_linear_samples(60, seed=4))

    assert model.is_trained
    assert model.standardizer is standardizer
    assert model.posteriors is posteriors
    assert model.bias_corrections == corrections
    assert model.holdout_indices == range(64, 80)
    assert model.predict(linear_samples.X[0]) == pytest.approx(before)
