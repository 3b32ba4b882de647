"""K-fold stacking of the Bayesian and tree models with linear meta-models."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from sklearn.linear_model import LinearRegression

from ..config import CalibrationSettings, EnsembleSettings, TreeEnsembleSettings
from ..events import EventSink, emit
from ..features.feature_registry import DEFAULT_SANITIZE_BOUND, FeatureSchema
from ..features.provider import Sample, SampleSet
from .bayesian import BayesianRangeRegressor
from .ensembles import bayesian_confidence
from .exceptions import (
    InsufficientSamplesError,
    InsufficientValidSamplesError,
    ModelNotTrainedError,
)
from .prediction_result import EnsemblePrediction
from .trees import TreeRangeRegressor

LOGGER = logging.getLogger(__name__)

META_FEATURES = ("bayesian_low", "bayesian_high", "tree_low", "tree_high", "volatility", "rsi")


@dataclass(frozen=True)
class StackingFold:
    """Train/test positions of one out-of-fold pass."""

    index: int
    train_indices: tuple[int, ...]
    test_indices: tuple[int, ...]
    meta_rows: int = 0
    skipped: bool = False
    reason: str | None = None

    def overlaps(self) -> bool:
        return bool(set(self.train_indices) & set(self.test_indices))


def contiguous_folds(n_samples: int, n_folds: int) -> list[np.ndarray]:
    """Split ``range(n_samples)`` into ``n_folds`` contiguous blocks."""

    if n_folds < 2:
        raise ValueError("At least two folds are required.")
    return [block for block in np.array_split(np.arange(n_samples), n_folds) if len(block)]


class StackingEnsemble:
    """Learn how to combine base-model predictions from out-of-fold estimates."""

    name = "stacking"

    def __init__(
        self,
        schema: FeatureSchema,
        *,
        settings: EnsembleSettings | None = None,
        calibration: CalibrationSettings | None = None,
        trees: TreeEnsembleSettings | None = None,
        seed: int | None = None,
        sanitize_bound: float = DEFAULT_SANITIZE_BOUND,
        events: EventSink | None = None,
    ) -> None:
        self.schema = schema
        self.settings = settings or EnsembleSettings()
        self.calibration = calibration or CalibrationSettings()
        self.tree_settings = trees or TreeEnsembleSettings()
        self.seed = seed
        self.sanitize_bound = float(sanitize_bound)
        self.events = events
        self.bayesian = self._new_bayesian()
        self.trees = self._new_trees()
        self.meta_models: dict[str, LinearRegression] = {}
        self.folds: tuple[StackingFold, ...] = ()
        self._history: list[EnsemblePrediction] = []

    def _new_bayesian(self) -> BayesianRangeRegressor:
        return BayesianRangeRegressor(
            self.schema, settings=self.calibration, sanitize_bound=self.sanitize_bound, events=self.events
        )

    def _new_trees(self) -> TreeRangeRegressor:
        return TreeRangeRegressor(
            self.schema,
            settings=self.tree_settings,
            seed=self.seed,
            sanitize_bound=self.sanitize_bound,
            events=self.events,
        )

    @property
    def is_trained(self) -> bool:
        return len(self.meta_models) == 2

    @property
    def base_min_samples(self) -> int:
        return max(self.calibration.min_samples, self.tree_settings.min_samples)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def fit(self, samples: SampleSet) -> "StackingEnsemble":
        n_samples = len(samples)
        if n_samples < self.settings.min_samples:
            raise InsufficientSamplesError(
                required=self.settings.min_samples, available=n_samples, component=self.name
            )

        meta_rows: list[list[float]] = []
        meta_low: list[float] = []
        meta_high: list[float] = []
        folds: list[StackingFold] = []
        all_positions = np.arange(n_samples)

        for index, test_positions in enumerate(contiguous_folds(n_samples, self.settings.stacking_folds)):
            train_positions = np.setdiff1d(all_positions, test_positions)
            fold = StackingFold(
                index=index,
                train_indices=tuple(int(i) for i in train_positions),
                test_indices=tuple(int(i) for i in test_positions),
            )
            if len(train_positions) < self.base_min_samples:
                folds.append(self._skip(fold, f"{len(train_positions)} training rows"))
                continue

            bayesian = self._new_bayesian()
            trees = self._new_trees()
            try:
                train_set = samples.take(train_positions)
                bayesian.fit(train_set)
                trees.fit(train_set)
            except InsufficientSamplesError as exc:
                folds.append(self._skip(fold, str(exc)))
                continue

            produced = 0
            for sample in samples.take(test_positions):
                row = self._meta_row(sample, bayesian, trees)
                if row is None:
                    continue
                meta_rows.append(row)
                meta_low.append(sample.low)
                meta_high.append(sample.high)
                produced += 1
            folds.append(
                StackingFold(
                    index=fold.index,
                    train_indices=fold.train_indices,
                    test_indices=fold.test_indices,
                    meta_rows=produced,
                )
            )
            emit(self.events, "stacking.fold", fold=index, train=len(train_positions), meta_rows=produced)

        if not meta_rows:
            raise InsufficientValidSamplesError(
                "Stacking produced no out-of-fold predictions.",
                required=1,
                available=0,
                component=self.name,
            )

        X_meta = np.asarray(meta_rows, dtype=float)
        meta_models = {
            "low": LinearRegression().fit(X_meta, np.asarray(meta_low)),
            "high": LinearRegression().fit(X_meta, np.asarray(meta_high)),
        }
        bayesian = self._new_bayesian().fit(samples)
        trees = self._new_trees().fit(samples)
        bayesian.set_calibration(self.bayesian.calibration_enabled)

        self.meta_models = meta_models
        self.bayesian = bayesian
        self.trees = trees
        self.folds = tuple(folds)
        self._history.clear()
        emit(
            self.events,
            "stacking.trained",
            level=logging.INFO,
            samples=n_samples,
            meta_rows=len(meta_rows),
            folds_used=sum(1 for fold in folds if not fold.skipped),
        )
        return self

    def _skip(self, fold: StackingFold, reason: str) -> StackingFold:
        emit(self.events, "stacking.fold", level=logging.WARNING, fold=fold.index, skipped=True, reason=reason)
        return StackingFold(
            index=fold.index,
            train_indices=fold.train_indices,
            test_indices=fold.test_indices,
            skipped=True,
            reason=reason,
        )

    def _meta_row(
        self,
        sample: Sample,
        bayesian: BayesianRangeRegressor,
        trees: TreeRangeRegressor,
    ) -> list[float] | None:
        try:
            b_low, b_high = bayesian.predict(sample.features)
            t_low, t_high, _ = trees.predict(sample.features)
        except (ArithmeticError, ValueError) as exc:
            emit(self.events, "ensemble.sample_skipped", level=logging.WARNING, date=sample.date, reason=str(exc))
            return None
        return [
            b_low,
            b_high,
            t_low,
            t_high,
            float(sample.context.get("Volatility", 0.0)),
            float(sample.context.get("RSI", 50.0)),
        ]

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    def set_calibration(self, enabled: bool) -> None:
        self.bayesian.set_calibration(enabled)

    def predict(self, sample: Sample) -> EnsemblePrediction:
        if not self.is_trained:
            raise ModelNotTrainedError(type(self).__name__)
        b_low, b_high = self.bayesian.predict(sample.features)
        t_low, t_high, t_range = self.trees.predict(sample.features)
        row = np.array(
            [[
                b_low,
                b_high,
                t_low,
                t_high,
                float(sample.context.get("Volatility", 0.0)),
                float(sample.context.get("RSI", 50.0)),
            ]]
        )
        low = float(self.meta_models["low"].predict(row)[0])
        high = float(self.meta_models["high"].predict(row)[0])

        gap_enforced = False
        if high <= low:
            midpoint = (low + high) / 2.0
            low, high = midpoint - self.settings.min_gap, midpoint + self.settings.min_gap
            gap_enforced = True
            emit(self.events, "ensemble.gap_enforced", level=logging.WARNING, date=sample.date)

        prediction = EnsemblePrediction(
            date=sample.date,
            bayesian_low=b_low,
            bayesian_high=b_high,
            tree_low=t_low,
            tree_high=t_high,
            tree_range=t_range,
            final_low=low,
            final_high=high,
            confidence=bayesian_confidence(b_low, b_high),
            gap_enforced=gap_enforced,
            strategy=self.name,
        )
        self._history.append(prediction)
        return prediction

    def predict_samples(self, samples: SampleSet) -> np.ndarray:
        predictions = [self.predict(sample) for sample in samples]
        return np.array([[item.final_low, item.final_high] for item in predictions], dtype=float).reshape(-1, 2)

    @property
    def history(self) -> tuple[EnsemblePrediction, ...]:
        return tuple(self._history)

    def meta_coefficients(self) -> dict[str, dict[str, float]]:
        if not self.is_trained:
            raise ModelNotTrainedError(type(self).__name__)
        result: dict[str, dict[str, float]] = {}
        for target, model in self.meta_models.items():
            coefficients = dict(zip(META_FEATURES, (float(value) for value in model.coef_)))
            coefficients["intercept"] = float(model.intercept_)
            result[target] = coefficients
        return result

    def summary(self) -> dict[str, Any]:
        return {
            "schema": self.schema.key,
            "strategy": self.name,
            "folds": [
                {"index": fold.index, "meta_rows": fold.meta_rows, "skipped": fold.skipped}
                for fold in self.folds
            ],
            "meta_coefficients": self.meta_coefficients() if self.is_trained else None,
        }


__all__ = ["META_FEATURES", "StackingEnsemble", "StackingFold", "contiguous_folds"]
