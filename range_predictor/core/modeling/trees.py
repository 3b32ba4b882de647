"""LightGBM gradient boosted trees for the low, high and range targets."""

from __future__ import annotations

import logging
from typing import Any

import lightgbm as lgb
import numpy as np
import pandas as pd
from lightgbm import LGBMRegressor

from ..config import TreeEnsembleSettings, TreeModelParams
from ..events import EventSink, emit
from ..features.feature_registry import DEFAULT_SANITIZE_BOUND, FeatureSchema, sanitize_features
from ..features.provider import SampleSet
from .exceptions import InsufficientSamplesError, ModelNotTrainedError

LOGGER = logging.getLogger(__name__)

TARGETS = ("low", "high", "range")


def build_regressor(params: TreeModelParams, *, seed: int, n_jobs: int = 1) -> LGBMRegressor:
    """Return an unfitted, deterministic :class:`LGBMRegressor`."""

    return LGBMRegressor(
        objective="regression",
        num_leaves=params.num_leaves,
        min_child_samples=params.min_child_samples,
        learning_rate=params.learning_rate,
        n_estimators=params.n_estimators,
        random_state=seed,
        deterministic=True,
        force_row_wise=True,
        n_jobs=n_jobs,
        verbose=-1,
    )


class TreeRangeRegressor:
    """Three independent LightGBM regressors sharing one feature matrix."""

    name = "lightgbm"

    def __init__(
        self,
        schema: FeatureSchema,
        *,
        settings: TreeEnsembleSettings | None = None,
        seed: int | None = None,
        sanitize_bound: float = DEFAULT_SANITIZE_BOUND,
        events: EventSink | None = None,
    ) -> None:
        self.schema = schema
        self.settings = settings or TreeEnsembleSettings()
        self.seed = int(self.settings.seed if seed is None else seed)
        self.sanitize_bound = float(sanitize_bound)
        self.events = events
        self.models: dict[str, LGBMRegressor] = {}
        self.best_iterations: dict[str, int] = {}

    @property
    def is_trained(self) -> bool:
        return len(self.models) == len(TARGETS)

    def _frame(self, matrix: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(matrix, columns=list(self.schema.names))

    def _validation_split(self, n_samples: int) -> int:
        """Number of trailing rows reserved for early stopping (0 disables it)."""

        n_valid = int(n_samples * self.settings.early_stopping_fraction)
        if n_valid < 2 or n_samples - n_valid < self.settings.min_samples:
            return 0
        return n_valid

    def fit(self, samples: SampleSet) -> "TreeRangeRegressor":
        self.schema.validate_width(samples.features.shape[1])
        n_samples = len(samples)
        if n_samples < self.settings.min_samples:
            raise InsufficientSamplesError(
                required=self.settings.min_samples, available=n_samples, component=self.name
            )

        X = self._frame(sanitize_features(samples.X, bound=self.sanitize_bound))
        targets = {
            "low": samples.y_low,
            "high": samples.y_high,
            "range": samples.y_high - samples.y_low,
        }
        n_valid = self._validation_split(n_samples)
        split = n_samples - n_valid

        models: dict[str, LGBMRegressor] = {}
        best: dict[str, int] = {}
        for target in TARGETS:
            params = self.settings.params_for(target)
            model = build_regressor(params, seed=self.seed, n_jobs=self.settings.n_jobs)
            y = targets[target]
            if n_valid:
                model.fit(
                    X.iloc[:split],
                    y[:split],
                    eval_set=[(X.iloc[split:], y[split:])],
                    callbacks=[lgb.early_stopping(params.early_stopping_rounds, verbose=False)],
                )
                best[target] = int(model.best_iteration_ or params.n_estimators)
            else:
                model.fit(X, y)
                best[target] = params.n_estimators
            models[target] = model

        self.models = models
        self.best_iterations = best
        emit(
            self.events,
            "trees.trained",
            level=logging.INFO,
            samples=n_samples,
            early_stopping_rows=n_valid,
            seed=self.seed,
            **{f"{target}_iterations": value for target, value in best.items()},
        )
        return self

    def _as_matrix(self, features: Any) -> np.ndarray:
        matrix = np.asarray(features, dtype=float)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        self.schema.validate_width(matrix.shape[1])
        return sanitize_features(matrix, bound=self.sanitize_bound)

    def predict_many(self, features: Any) -> np.ndarray:
        """Return an ``(n, 3)`` array of ``[low, high, range]`` predictions."""

        if not self.is_trained:
            raise ModelNotTrainedError(type(self).__name__)
        frame = self._frame(self._as_matrix(features))
        columns = [np.asarray(self.models[target].predict(frame), dtype=float) for target in TARGETS]
        return np.column_stack(columns)

    def predict(self, features: Any) -> tuple[float, float, float] | np.ndarray:
        """Predict ``(low, high, range)`` for one vector or an ``(n, 3)`` array for many."""

        predictions = self.predict_many(features)
        if np.asarray(features).ndim == 1:
            low, high, spread = predictions[0]
            return float(low), float(high), float(spread)
        return predictions

    def predict_samples(self, samples: SampleSet) -> np.ndarray:
        return self.predict_many(samples.X)[:, :2]

    def set_calibration(self, enabled: bool) -> None:
        """Tree predictions carry no calibration step."""

    def feature_importance(self, importance_type: str = "gain") -> dict[str, pd.Series]:
        if not self.is_trained:
            raise ModelNotTrainedError(type(self).__name__)
        result: dict[str, pd.Series] = {}
        for target, model in self.models.items():
            values = model.booster_.feature_importance(importance_type=importance_type)
            result[target] = pd.Series(values, index=list(self.schema.names), name=target).sort_values(
                ascending=False
            )
        return result


__all__ = ["TreeRangeRegressor", "build_regressor"]
