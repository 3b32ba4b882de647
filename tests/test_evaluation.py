from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from range_predictor.core.evaluation import (
    RangeEvaluator,
    directional_accuracy,
    evaluate_model,
    joint_directional_accuracy,
    percentile,
)


ACTUAL_LOW = [100.0, 102.0, 101.0, 104.0]
ACTUAL_HIGH = [103.0, 105.0, 104.0, 107.0]
PREDICTED_LOW = [102.0, 101.0, 101.0, 104.0]
PREDICTED_HIGH = [103.0, 105.0, 104.0, 107.0]


def test_percentile_uses_nearest_lower_rank() -> None:
    values = [1.0, 2.0, 3.0, 4.0, 5.0]

    assert percentile(values, 0.5) == 3.0
    assert percentile(values, 0.95) == 4.0
    assert percentile([], 0.5) == 0.0


def test_directional_accuracy_compares_consecutive_moves() -> None:
    assert directional_accuracy(ACTUAL_LOW, PREDICTED_LOW) == pytest.approx(100.0 / 3)
    assert directional_accuracy([1.0], [2.0]) == 0.0
    assert joint_directional_accuracy(ACTUAL_LOW, ACTUAL_HIGH, PREDICTED_LOW, PREDICTED_HIGH) == pytest.approx(
        100.0 / 3
    )


def test_price_metrics() -> None:
    report = RangeEvaluator().evaluate(ACTUAL_LOW, ACTUAL_HIGH, PREDICTED_LOW, PREDICTED_HIGH)
    low = report.low

    assert low.mae == pytest.approx(0.75)
    assert low.rmse == pytest.approx(np.sqrt(5 / 4))
    assert low.median_error == 1.0
    assert low.max_error == 2.0
    assert low.mape == pytest.approx((2.0 + 100.0 / 102.0) / 4)
    assert low.within_1pct == 75.0
    assert low.within_5pct == 100.0
    assert low.accuracy_breakdown["<=10%"] == 100.0
    assert list(low.accuracy_breakdown) == [f"<={value}%" for value in range(10, 101, 10)]
    assert report.high.mae == 0.0
    assert report.directional.high == 100.0


def test_error_distribution_percentiles() -> None:
    report = RangeEvaluator().evaluate(ACTUAL_LOW, ACTUAL_HIGH, PREDICTED_LOW, PREDICTED_HIGH)

    assert list(report.distribution.low_percentiles) == ["P25", "P50", "P75", "P90", "P95"]
    assert report.distribution.low_percentiles["P95"] == pytest.approx(100.0 / 102.0)
    assert report.distribution.high_percentiles["P50"] == 0.0


def test_report_serializes_and_keeps_predictions() -> None:
    dates = ["2024-01-02", "2024-01-03", "2024-01-04", "2024-01-05"]
    report = RangeEvaluator().evaluate(
        ACTUAL_LOW, ACTUAL_HIGH, PREDICTED_LOW, PREDICTED_HIGH, dates=dates, model_name="bayesian"
    )
    payload = report.to_dict()

    assert payload["model_name"] == "bayesian"
    assert payload["sample_count"] == 4
    assert set(payload) >= {"low", "high", "directional_accuracy", "error_distribution"}
    assert report.predictions.index.name == "Date"
    assert report.predictions["low_error"].tolist() == [2.0, 1.0, 0.0, 0.0]


@pytest.mark.parametrize(
    "arguments",
    [
        ([100.0], [101.0], [100.0, 1.0], [101.0]),
        ([], [], [], []),
        ([0.0], [1.0], [1.0], [1.0]),
    ],
)
def test_invalid_inputs_are_rejected(arguments) -> None:
    with pytest.raises(ValueError):
        RangeEvaluator().evaluate(*arguments)


class _ShiftedModel:
    name = "shifted"

    def __init__(self) -> None:
        self.calibrated = None

    def set_calibration(self, enabled: bool) -> None:
        self.calibrated = enabled

    def predict_samples(self, samples) -> np.ndarray:
        return np.column_stack([samples.y_low - 1.0, samples.y_high + 1.0])


def test_evaluate_model_sets_calibration_and_names_report(linear_samples) -> None:
    model = _ShiftedModel()
    report = evaluate_model(model, linear_samples, calibrated=True)

    assert model.calibrated is True
    assert report.model_name == "shifted"
    assert report.sample_count == len(linear_samples)
    assert report.low.mae == pytest.approx(1.0)
