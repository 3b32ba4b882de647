from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_linear_samples
from range_predictor.core.config import TreeEnsembleSettings
from range_predictor.core.events import EventRecorder
from range_predictor.core.features import get_schema
from range_predictor.core.modeling.exceptions import (
    InsufficientSamplesError,
    ModelNotTrainedError,
    SchemaViolationError,
)
from range_predictor.core.modeling.trees import TreeRangeRegressor


def test_fit_trains_three_targets(linear_samples) -> None:
    events = EventRecorder()
    model = TreeRangeRegressor(linear_samples.schema, events=events).fit(linear_samples)

    assert model.is_trained
    assert set(model.best_iterations) == {"low", "high", "range"}
    assert events.count("trees.trained") == 1


def test_single_vector_returns_tuple(linear_samples) -> None:
    model = TreeRangeRegressor(linear_samples.schema).fit(linear_samples)

    single = model.predict(linear_samples.X[0])
    many = model.predict(linear_samples.X[:4])

    assert isinstance(single, tuple) and len(single) == 3
    assert many.shape == (4, 3)
    assert model.predict_samples(linear_samples).shape == (80, 2)


def test_same_seed_is_deterministic(linear_samples) -> None:
    first = TreeRangeRegressor(linear_samples.schema, seed=3).fit(linear_samples)
    second = TreeRangeRegressor(linear_samples.schema, seed=3).fit(linear_samples)

    assert first.predict_samples(linear_samples) == pytest.approx(second.predict_samples(linear_samples))


def test_early_stopping_is_skipped_for_small_sets() -> None:
    samples = make_linear_samples(12)
    model = TreeRangeRegressor(samples.schema).fit(samples)

    assert model.best_iterations["low"] == TreeEnsembleSettings().low.n_estimators


def test_feature_importance_covers_every_field(linear_samples) -> None:
    model = TreeRangeRegressor(linear_samples.schema).fit(linear_samples)
    importance = model.feature_importance()

    assert set(importance) == {"low", "high", "range"}
    assert set(importance["low"].index) == set(linear_samples.schema.names)


def test_predictions_stay_finite_for_bad_inputs(linear_samples) -> None:
    model = TreeRangeRegressor(linear_samples.schema).fit(linear_samples)
    row = np.array(linear_samples.X[0], dtype=float)
    row[:3] = [np.nan, np.inf, -np.inf]

    assert np.isfinite(model.predict(row)).all()


def test_errors_before_training_and_on_bad_width(linear_samples) -> None:
    model = TreeRangeRegressor(get_schema("base"))
    with pytest.raises(ModelNotTrainedError):
        model.predict(np.zeros(9))

    model.fit(linear_samples)
    with pytest.raises(SchemaViolationError):
        model.predict(np.zeros(4))


def test_too_few_samples_is_rejected() -> None:
    samples = make_linear_samples(8)

    with pytest.raises(InsufficientSamplesError):
        TreeRangeRegressor(samples.schema).fit(samples)
