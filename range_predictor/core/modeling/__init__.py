"""Modeling package exposing the base regressors, the combiners and their errors."""

from __future__ import annotations

from importlib import import_module
from typing import Any

from .exceptions import (
    InsufficientSamplesError,
    InsufficientValidSamplesError,
    MissingSeriesError,
    ModelNotTrainedError,
    NumericalFailureError,
    RangePredictorError,
    SchemaViolationError,
)

# The feature layer imports ``modeling.exceptions``; everything that depends on
# the feature layer is resolved on first access.
_LAZY_EXPORTS = {
    "BayesianRangeRegressor": ".bayesian",
    "fit_variational_regression": ".bayesian",
    "RegimeWeightedEnsemble": ".ensembles",
    "bayesian_confidence": ".ensembles",
    "reconcile_range": ".ensembles",
    "EnsemblePrediction": ".prediction_result",
    "EnsembleStatistics": ".prediction_result",
    "PerformanceRecord": ".prediction_result",
    "EnsembleWeights": ".regimes",
    "MarketRegime": ".regimes",
    "RegimeDetector": ".regimes",
    "StackingEnsemble": ".stacking",
    "StackingFold": ".stacking",
    "TreeRangeRegressor": ".trees",
}

__all__ = [
    "BayesianRangeRegressor",
    "EnsemblePrediction",
    "EnsembleStatistics",
    "EnsembleWeights",
    "InsufficientSamplesError",
    "InsufficientValidSamplesError",
    "MarketRegime",
    "MissingSeriesError",
    "ModelNotTrainedError",
    "NumericalFailureError",
    "PerformanceRecord",
    "RangePredictorError",
    "RegimeDetector",
    "RegimeWeightedEnsemble",
    "SchemaViolationError",
    "StackingEnsemble",
    "StackingFold",
    "TreeRangeRegressor",
    "bayesian_confidence",
    "fit_variational_regression",
    "reconcile_range",
]


def __getattr__(name: str) -> Any:  # pragma: no cover - thin convenience wrapper
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    return getattr(import_module(module_name, __name__), name)
