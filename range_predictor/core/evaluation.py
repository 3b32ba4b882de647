"""Error, accuracy and directional metrics for low/high range predictions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error

from .features.provider import SampleSet

LOGGER = logging.getLogger(__name__)

PERCENTILES: tuple[float, ...] = (0.25, 0.5, 0.75, 0.9, 0.95)
BREAKDOWN_THRESHOLDS: tuple[int, ...] = tuple(range(10, 101, 10))


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile: ``sorted_values[int(fraction * (n - 1))]``."""

    if len(sorted_values) == 0:
        return 0.0
    return float(sorted_values[int(fraction * (len(sorted_values) - 1))])


def percent_errors(actual: np.ndarray, predicted: np.ndarray) -> np.ndarray:
    return np.abs((actual - predicted) / actual) * 100.0


def directional_accuracy(actual: Sequence[float], predicted: Sequence[float]) -> float:
    """Share (percent) of consecutive pairs whose move direction agrees."""

    actual_moves = np.sign(np.diff(np.asarray(actual, dtype=float)))
    predicted_moves = np.sign(np.diff(np.asarray(predicted, dtype=float)))
    if actual_moves.size == 0:
        return 0.0
    return float(np.mean(actual_moves == predicted_moves) * 100.0)


def joint_directional_accuracy(
    actual_low: Sequence[float],
    actual_high: Sequence[float],
    predicted_low: Sequence[float],
    predicted_high: Sequence[float],
) -> float:
    """Share (percent) of consecutive pairs where both low and high directions agree."""

    low_ok = np.sign(np.diff(np.asarray(actual_low, dtype=float))) == np.sign(
        np.diff(np.asarray(predicted_low, dtype=float))
    )
    high_ok = np.sign(np.diff(np.asarray(actual_high, dtype=float))) == np.sign(
        np.diff(np.asarray(predicted_high, dtype=float))
    )
    if low_ok.size == 0:
        return 0.0
    return float(np.mean(low_ok & high_ok) * 100.0)


@dataclass(frozen=True)
class PriceMetrics:
    mae: float
    rmse: float
    mape: float
    median_error: float
    max_error: float
    within_1pct: float
    within_5pct: float
    accuracy_breakdown: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_arrays(cls, actual: np.ndarray, predicted: np.ndarray) -> "PriceMetrics":
        errors = np.abs(actual - predicted)
        pct = percent_errors(actual, predicted)
        ordered = np.sort(errors)
        breakdown = {
            f"<={threshold}%": float(np.mean(pct <= threshold) * 100.0) for threshold in BREAKDOWN_THRESHOLDS
        }
        return cls(
            mae=float(mean_absolute_error(actual, predicted)),
            rmse=float(np.sqrt(mean_squared_error(actual, predicted))),
            mape=float(pct.mean()),
            median_error=float(ordered[len(ordered) // 2]),
            max_error=float(errors.max()),
            within_1pct=float(np.mean(pct <= 1.0) * 100.0),
            within_5pct=float(np.mean(pct <= 5.0) * 100.0),
            accuracy_breakdown=breakdown,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mae": self.mae,
            "rmse": self.rmse,
            "mape": self.mape,
            "median_error": self.median_error,
            "max_error": self.max_error,
            "within_1pct": self.within_1pct,
            "within_5pct": self.within_5pct,
            "accuracy_breakdown": dict(self.accuracy_breakdown),
        }


@dataclass(frozen=True)
class DirectionalAccuracy:
    low: float
    high: float
    range: float

    def to_dict(self) -> dict[str, float]:
        return {"low": self.low, "high": self.high, "range": self.range}


@dataclass(frozen=True)
class ErrorDistribution:
    low_percentiles: Mapping[str, float]
    high_percentiles: Mapping[str, float]

    @classmethod
    def from_errors(cls, low_pct: np.ndarray, high_pct: np.ndarray) -> "ErrorDistribution":
        low_sorted = np.sort(low_pct)
        high_sorted = np.sort(high_pct)
        return cls(
            low_percentiles={f"P{int(p * 100)}": percentile(low_sorted, p) for p in PERCENTILES},
            high_percentiles={f"P{int(p * 100)}": percentile(high_sorted, p) for p in PERCENTILES},
        )

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {"low": dict(self.low_percentiles), "high": dict(self.high_percentiles)}


@dataclass(frozen=True)
class EvaluationReport:
    """Full metric summary for one model over one set of predictions."""

    model_name: str
    sample_count: int
    low: PriceMetrics
    high: PriceMetrics
    directional: DirectionalAccuracy
    distribution: ErrorDistribution
    predictions: pd.DataFrame = field(repr=False, compare=False, default_factory=pd.DataFrame)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_name": self.model_name,
            "sample_count": self.sample_count,
            "low": self.low.to_dict(),
            "high": self.high.to_dict(),
            "directional_accuracy": self.directional.to_dict(),
            "error_distribution": self.distribution.to_dict(),
        }


class RangeEvaluator:
    """Compute :class:`EvaluationReport` objects from predicted and actual bounds."""

    def evaluate(
        self,
        actual_low: Sequence[float],
        actual_high: Sequence[float],
        predicted_low: Sequence[float],
        predicted_high: Sequence[float],
        *,
        dates: Sequence[Any] | None = None,
        model_name: str = "model",
    ) -> EvaluationReport:
        a_low = np.asarray(actual_low, dtype=float)
        a_high = np.asarray(actual_high, dtype=float)
        p_low = np.asarray(predicted_low, dtype=float)
        p_high = np.asarray(predicted_high, dtype=float)
        lengths = {len(a_low), len(a_high), len(p_low), len(p_high)}
        if len(lengths) != 1:
            raise ValueError("Actual and predicted arrays must have the same length.")
        if len(a_low) == 0:
            raise ValueError("At least one prediction is required for evaluation.")
        if np.any(a_low <= 0) or np.any(a_high <= 0):
            raise ValueError("Actual prices must be positive to compute percentage errors.")

        low_pct = percent_errors(a_low, p_low)
        high_pct = percent_errors(a_high, p_high)
        frame = pd.DataFrame(
            {
                "actual_low": a_low,
                "actual_high": a_high,
                "predicted_low": p_low,
                "predicted_high": p_high,
                "low_error": np.abs(a_low - p_low),
                "high_error": np.abs(a_high - p_high),
                "low_pct_error": low_pct,
                "high_pct_error": high_pct,
            },
            index=pd.Index(list(dates), name="Date") if dates is not None else None,
        )
        report = EvaluationReport(
            model_name=model_name,
            sample_count=len(a_low),
            low=PriceMetrics.from_arrays(a_low, p_low),
            high=PriceMetrics.from_arrays(a_high, p_high),
            directional=DirectionalAccuracy(
                low=directional_accuracy(a_low, p_low),
                high=directional_accuracy(a_high, p_high),
                range=directional_accuracy(a_high - a_low, p_high - p_low),
            ),
            distribution=ErrorDistribution.from_errors(low_pct, high_pct),
            predictions=frame,
        )
        LOGGER.info(
            "%s: low MAPE %.2f%%, high MAPE %.2f%% over %d samples",
            model_name,
            report.low.mape,
            report.high.mape,
            report.sample_count,
        )
        return report


def evaluate_model(
    model: Any,
    samples: SampleSet,
    *,
    calibrated: bool | None = None,
    model_name: str | None = None,
) -> EvaluationReport:
    """Predict every sample with ``model`` and evaluate the result."""

    if calibrated is not None:
        model.set_calibration(calibrated)
    predictions = np.asarray(model.predict_samples(samples), dtype=float)
    return RangeEvaluator().evaluate(
        samples.y_low,
        samples.y_high,
        predictions[:, 0],
        predictions[:, 1],
        dates=list(samples.dates),
        model_name=model_name or getattr(model, "name", type(model).__name__),
    )


__all__ = [
    "DirectionalAccuracy",
    "ErrorDistribution",
    "EvaluationReport",
    "PriceMetrics",
    "RangeEvaluator",
    "directional_accuracy",
    "evaluate_model",
    "joint_directional_accuracy",
    "percent_errors",
    "percentile",
]
