"""Regime-aware blending of the Bayesian and tree range models."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any

import joblib
import numpy as np

from ..config import CalibrationSettings, EnsembleSettings, TreeEnsembleSettings
from ..events import EventSink, emit
from ..features.feature_registry import DEFAULT_SANITIZE_BOUND, FeatureSchema
from ..features.provider import Sample, SampleSet
from .bayesian import BayesianRangeRegressor
from .exceptions import (
    InsufficientSamplesError,
    InsufficientValidSamplesError,
    ModelNotTrainedError,
)
from .prediction_result import EnsemblePrediction, EnsembleStatistics, PerformanceRecord
from .regimes import EnsembleWeights, MarketRegime, RegimeDetector
from .trees import TreeRangeRegressor

LOGGER = logging.getLogger(__name__)

ERROR_FLOOR = 1e-8
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0


def reconcile_range(
    low: float,
    high: float,
    predicted_range: float,
    *,
    adjustment: float,
    trigger: float = 0.2,
    min_gap: float = 0.01,
) -> tuple[float, float, bool, bool]:
    """Pull the blended bounds toward the tree's range prediction.

    Returns ``(low, high, reconciled, gap_enforced)``. When the blended range
    differs from ``predicted_range`` by more than ``trigger`` of it, the bounds
    are rebuilt around their midpoint. Collapsed or inverted bounds end as
    ``midpoint -/+ min_gap``.
    """

    current = high - low
    reconciled = False
    if abs(current - predicted_range) > trigger * predicted_range:
        midpoint = (low + high) / 2.0
        half_width = (predicted_range / 2.0) * (1.0 - adjustment) + (current / 2.0) * adjustment
        low, high = midpoint - half_width, midpoint + half_width
        reconciled = True

    gap_enforced = False
    if high <= low:
        midpoint = (low + high) / 2.0
        low, high = midpoint - min_gap, midpoint + min_gap
        gap_enforced = True
    return low, high, reconciled, gap_enforced


def bayesian_confidence(low: float, high: float) -> float:
    """Narrower Bayesian ranges relative to their midpoint give higher confidence."""

    midpoint = (low + high) / 2.0
    if midpoint == 0:
        return MIN_CONFIDENCE
    raw = 1.0 / (1.0 + (high - low) / midpoint)
    return float(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, raw)))


def paired_mape(low: np.ndarray, high: np.ndarray, pred_low: np.ndarray, pred_high: np.ndarray) -> np.ndarray:
    """Per-sample mean of the low and high absolute percentage errors."""

    return (np.abs(low - pred_low) / low + np.abs(high - pred_high) / high) * 50.0


class RegimeWeightedEnsemble:
    """Blend Bayesian and LightGBM predictions with regime-aware weights.

    Weights start from inverse validation error, are nudged per prediction
    for the detected market regime and drift toward recent performance as
    realised outcomes are recorded with :meth:`update_performance`.
    """

    name = "ensemble"

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
        self.detector = RegimeDetector(self.settings.regimes)
        self.weights = EnsembleWeights(range_adjustment=self.settings.range_adjustment)
        self._history: list[EnsemblePrediction] = []
        self._outcomes: list[PerformanceRecord] = []
        self._trained = False

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

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    @property
    def is_trained(self) -> bool:
        return self._trained

    def fit(self, samples: SampleSet) -> "RegimeWeightedEnsemble":
        n_samples = len(samples)
        if n_samples < self.settings.min_samples:
            raise InsufficientSamplesError(
                required=self.settings.min_samples, available=n_samples, component=self.name
            )
        bayesian = self._new_bayesian().fit(samples)
        trees = self._new_trees().fit(samples)
        bayesian.set_calibration(self.bayesian.calibration_enabled)
        weights = self._initial_weights(
            samples, bayesian, trees, EnsembleWeights(range_adjustment=self.settings.range_adjustment)
        )

        self.bayesian = bayesian
        self.trees = trees
        self.weights = weights
        self._history.clear()
        self._outcomes.clear()
        self._trained = True
        emit(
            self.events,
            "ensemble.trained",
            level=logging.INFO,
            samples=n_samples,
            bayesian=self.weights.bayesian,
            tree=self.weights.tree,
        )
        return self

    def initialize_weights(self, samples: SampleSet) -> EnsembleWeights:
        """Set weights from inverse paired MAPE on the trailing validation slice."""

        self.weights = self._initial_weights(samples, self.bayesian, self.trees, self.weights)
        return self.weights

    def _initial_weights(
        self,
        samples: SampleSet,
        bayesian: BayesianRangeRegressor,
        trees: TreeRangeRegressor,
        base: EnsembleWeights,
    ) -> EnsembleWeights:
        n_samples = len(samples)
        split = int(n_samples * (1.0 - self.settings.validation_fraction))
        validation = samples[split:]
        if len(validation) < self.settings.min_validation_samples:
            LOGGER.info(
                "Keeping default weights: %d validation samples (< %d)",
                len(validation),
                self.settings.min_validation_samples,
            )
            return base

        bayes_errors: list[float] = []
        tree_errors: list[float] = []
        for sample in validation:
            try:
                b_low, b_high = bayesian.predict(sample.features)
                t_low, t_high, _ = trees.predict(sample.features)
                if sample.low <= 0 or sample.high <= 0:
                    raise ValueError("Non-positive actual price.")
            except (ArithmeticError, ValueError) as exc:
                emit(
                    self.events,
                    "ensemble.sample_skipped",
                    level=logging.WARNING,
                    date=sample.date,
                    reason=str(exc),
                )
                continue
            actual_low = np.array([sample.low])
            actual_high = np.array([sample.high])
            bayes_errors.append(
                float(paired_mape(actual_low, actual_high, np.array([b_low]), np.array([b_high]))[0])
            )
            tree_errors.append(
                float(paired_mape(actual_low, actual_high, np.array([t_low]), np.array([t_high]))[0])
            )

        if not bayes_errors:
            raise InsufficientValidSamplesError(
                "No validation sample produced usable predictions.",
                required=1,
                available=0,
                component=self.name,
            )

        bayes_mape = float(np.mean(bayes_errors))
        tree_mape = float(np.mean(tree_errors))
        weights = self._inverse_error_weights(bayes_mape, tree_mape, base=base)
        emit(
            self.events,
            "ensemble.weights_initialized",
            level=logging.INFO,
            validation_samples=len(bayes_errors),
            bayesian_mape=bayes_mape,
            tree_mape=tree_mape,
            bayesian=weights.bayesian,
            tree=weights.tree,
        )
        return weights

    def _inverse_error_weights(
        self, bayes_error: float, tree_error: float, *, base: EnsembleWeights
    ) -> EnsembleWeights:
        inverse_bayes = 1.0 / max(bayes_error, ERROR_FLOOR)
        inverse_tree = 1.0 / max(tree_error, ERROR_FLOOR)
        share = inverse_bayes / (inverse_bayes + inverse_tree)
        proposal = EnsembleWeights(
            bayesian=share,
            tree_low=1.0 - share,
            tree_high=1.0 - share,
            range_adjustment=base.range_adjustment,
            update_count=base.update_count,
            last_updated=base.last_updated,
        )
        return proposal.normalized(self.settings.min_weight, self.settings.max_weight)

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    def set_calibration(self, enabled: bool) -> None:
        self.bayesian.set_calibration(enabled)
        LOGGER.debug("Bayesian calibration %s in ensemble", "enabled" if enabled else "disabled")

    def predict(self, sample: Sample) -> EnsemblePrediction:
        if not self._trained:
            raise ModelNotTrainedError(type(self).__name__)

        b_low, b_high = self.bayesian.predict(sample.features)
        t_low, t_high, t_range = self.trees.predict(sample.features)

        regime = self.detector.detect(sample.context)
        weights = self.detector.adjust(
            self.weights,
            regime,
            min_weight=self.settings.min_weight,
            max_weight=self.settings.max_weight,
        )
        blended_low = weights.bayesian * b_low + weights.tree_low * t_low
        blended_high = weights.bayesian * b_high + weights.tree_high * t_high

        final_low, final_high, reconciled, gap_enforced = reconcile_range(
            blended_low,
            blended_high,
            t_range,
            adjustment=weights.range_adjustment,
            trigger=self.settings.range_trigger,
            min_gap=self.settings.min_gap,
        )
        if reconciled:
            emit(
                self.events,
                "ensemble.range_reconciled",
                date=sample.date,
                blended_range=blended_high - blended_low,
                tree_range=t_range,
            )
        if gap_enforced:
            emit(self.events, "ensemble.gap_enforced", level=logging.WARNING, date=sample.date)

        prediction = EnsemblePrediction(
            date=sample.date,
            bayesian_low=b_low,
            bayesian_high=b_high,
            tree_low=t_low,
            tree_high=t_high,
            tree_range=t_range,
            final_low=final_low,
            final_high=final_high,
            confidence=bayesian_confidence(b_low, b_high),
            weights=weights,
            regime=regime,
            range_reconciled=reconciled,
            gap_enforced=gap_enforced,
        )
        self._history.append(prediction)
        emit(
            self.events,
            "ensemble.prediction",
            date=sample.date,
            low=final_low,
            high=final_high,
            regime=str(regime),
            confidence=prediction.confidence,
        )
        return prediction

    def predict_samples(self, samples: SampleSet) -> np.ndarray:
        predictions = [self.predict(sample) for sample in samples]
        return np.array([[item.final_low, item.final_high] for item in predictions], dtype=float).reshape(-1, 2)

    # ------------------------------------------------------------------
    # Adaptive weights
    # ------------------------------------------------------------------
    def update_performance(self, sample: Sample) -> bool:
        """Record realised bounds for the latest prediction dated ``sample.date``.

        Returns ``True`` when the record triggered a weight update.
        """

        prediction = next(
            (item for item in reversed(self._history) if item.date == sample.date), None
        )
        if prediction is None:
            LOGGER.debug("No prediction recorded for %s; outcome ignored", sample.date)
            return False

        record = PerformanceRecord(prediction=prediction, actual_low=sample.low, actual_high=sample.high)
        self._outcomes.append(record)
        LOGGER.debug("Recorded outcome for %s: error %.3f%%", sample.date, record.ensemble_error())

        count = len(self._outcomes)
        if count >= self.settings.performance_window and count % self.settings.update_frequency == 0:
            self._update_weights()
            return True
        return False

    def _update_weights(self) -> None:
        window = self._outcomes[-self.settings.performance_window :]
        bayes_error = float(np.mean([record.bayesian_error() for record in window]))
        tree_error = float(np.mean([record.tree_error() for record in window]))
        target = self._inverse_error_weights(bayes_error, tree_error, base=self.weights)

        rate = self.settings.update_rate
        share = (1.0 - rate) * self.weights.bayesian + rate * target.bayesian
        updated = EnsembleWeights(
            bayesian=share,
            tree_low=1.0 - share,
            tree_high=1.0 - share,
            range_adjustment=self.weights.range_adjustment,
            update_count=self.weights.update_count + 1,
            last_updated=window[-1].date,
        ).normalized(self.settings.min_weight, self.settings.max_weight)
        self.weights = updated
        emit(
            self.events,
            "ensemble.weights_updated",
            level=logging.INFO,
            bayesian=updated.bayesian,
            tree=updated.tree,
            bayesian_mape=bayes_error,
            tree_mape=tree_error,
            update_count=updated.update_count,
        )

    # ------------------------------------------------------------------
    # Reporting and persistence
    # ------------------------------------------------------------------
    @property
    def history(self) -> tuple[EnsemblePrediction, ...]:
        return tuple(self._history)

    @property
    def outcomes(self) -> tuple[PerformanceRecord, ...]:
        return tuple(self._outcomes)

    def statistics(self, recent: int = 5) -> EnsembleStatistics:
        distribution = Counter(str(item.regime) for item in self._history if item.regime is not None)
        window = self._outcomes[-self.settings.performance_window :]
        recent_mape = float(np.mean([record.ensemble_error() for record in window])) if window else None
        return EnsembleStatistics(
            weights=self.weights,
            prediction_count=len(self._history),
            outcome_count=len(self._outcomes),
            regime_distribution=dict(distribution),
            recent_predictions=tuple(self._history[-recent:]) if recent > 0 else (),
            recent_mape=recent_mape,
        )

    def save(self, path: str | Path) -> Path:
        if not self._trained:
            raise ModelNotTrainedError(type(self).__name__)
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        events, self.events = self.events, None
        bayes_events, self.bayesian.events = self.bayesian.events, None
        tree_events, self.trees.events = self.trees.events, None
        try:
            joblib.dump(self, target)
        finally:
            self.events = events
            self.bayesian.events = bayes_events
            self.trees.events = tree_events
        LOGGER.info("Saved ensemble to %s", target)
        return target

    @classmethod
    def load(cls, path: str | Path, *, events: EventSink | None = None) -> "RegimeWeightedEnsemble":
        model = joblib.load(Path(path).expanduser())
        if not isinstance(model, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}.")
        model.events = events
        model.bayesian.events = events
        model.trees.events = events
        return model

    def summary(self) -> dict[str, Any]:
        return {
            "schema": self.schema.key,
            "strategy": "regime",
            "weights": self.weights.to_dict(),
            "bayesian": self.bayesian.summary() if self.bayesian.is_trained else None,
            "tree_iterations": dict(self.trees.best_iterations),
        }


__all__ = [
    "MarketRegime",
    "RegimeWeightedEnsemble",
    "bayesian_confidence",
    "paired_mape",
    "reconcile_range",
]
