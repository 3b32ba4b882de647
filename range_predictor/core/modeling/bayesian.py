"""Mean-field variational Bayesian linear regression for low/high targets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from sklearn.preprocessing import StandardScaler

from ..config import CalibrationSettings
from ..events import EventSink, emit
from ..features.feature_registry import DEFAULT_SANITIZE_BOUND, FeatureSchema, sanitize_features
from ..features.provider import SampleSet
from .exceptions import (
    InsufficientSamplesError,
    ModelNotTrainedError,
    NumericalFailureError,
)

LOGGER = logging.getLogger(__name__)

PRIOR_SHAPE = 1.0
PRIOR_RATE = 1.0
TARGETS = ("low", "high")


# ---------------------------------------------------------------------------
# Scaling helpers
# ---------------------------------------------------------------------------


class FeatureStandardizer:
    """Column-wise z-scoring with symmetric clipping."""

    def __init__(self, clip: float) -> None:
        self.clip = float(clip)
        self.scaler = StandardScaler()

    def fit(self, X: np.ndarray) -> "FeatureStandardizer":
        self.scaler.fit(X)
        return self

    @property
    def mean(self) -> np.ndarray:
        return self.scaler.mean_

    @property
    def std(self) -> np.ndarray:
        return self.scaler.scale_

    def transform(self, X: np.ndarray) -> np.ndarray:
        return np.clip(self.scaler.transform(X), -self.clip, self.clip)


class TargetScaler:
    """Single-target z-scoring; ``inverse`` maps model output back to prices."""

    def __init__(self) -> None:
        self.scaler = StandardScaler()

    def fit(self, y: np.ndarray) -> "TargetScaler":
        self.scaler.fit(np.asarray(y, dtype=float).reshape(-1, 1))
        return self

    @property
    def mean(self) -> float:
        return float(self.scaler.mean_[0])

    @property
    def std(self) -> float:
        return float(self.scaler.scale_[0])

    def transform(self, y: np.ndarray | float) -> np.ndarray | float:
        return _apply_column(self.scaler.transform, y)

    def inverse(self, z: np.ndarray | float) -> np.ndarray | float:
        return _apply_column(self.scaler.inverse_transform, z)


def _apply_column(method: Callable[[np.ndarray], np.ndarray], values: np.ndarray | float) -> np.ndarray | float:
    array = np.asarray(values, dtype=float)
    result = method(array.reshape(-1, 1)).reshape(array.shape)
    return float(result) if array.ndim == 0 else result


# ---------------------------------------------------------------------------
# Variational inference
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VariationalPosterior:
    """Joint Gaussian over ``[bias, weights]`` and a Gamma over noise precision."""

    mean: np.ndarray
    covariance: np.ndarray
    shape: float
    rate: float
    iterations: int
    converged: bool

    @property
    def bias_mean(self) -> float:
        return float(self.mean[0])

    @property
    def bias_variance(self) -> float:
        return float(self.covariance[0, 0])

    @property
    def weight_means(self) -> np.ndarray:
        return self.mean[1:]

    @property
    def weight_variances(self) -> np.ndarray:
        return np.diag(self.covariance)[1:]

    @property
    def expected_precision(self) -> float:
        return self.shape / self.rate

    def predict(self, Z: np.ndarray) -> np.ndarray:
        return self.mean[0] + Z @ self.mean[1:]

    def predictive_variance(self, Z: np.ndarray) -> np.ndarray:
        design = np.column_stack([np.ones(len(Z)), Z])
        parameter_variance = np.einsum("ij,jk,ik->i", design, self.covariance, design)
        return parameter_variance + 1.0 / self.expected_precision


def fit_variational_regression(
    Z: np.ndarray,
    y: np.ndarray,
    *,
    weight_prior_variance: float,
    bias_prior_variance: float = 0.1,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> VariationalPosterior:
    """Coordinate ascent between q(bias, weights) and q(precision).

    Priors: weights ~ N(0, weight_prior_variance), bias ~ N(0, bias_prior_variance),
    precision ~ Gamma(1, 1). Stops when E[precision] moves by less than
    ``tolerance`` or after ``max_iterations`` sweeps.
    """

    n, d = Z.shape
    design = np.column_stack([np.ones(n), Z])
    gram = design.T @ design
    projection = design.T @ y
    prior_precision = np.diag(
        np.concatenate([[1.0 / bias_prior_variance], np.full(d, 1.0 / weight_prior_variance)])
    )

    shape = PRIOR_SHAPE + n / 2.0
    rate = PRIOR_RATE
    expected_precision = PRIOR_SHAPE / PRIOR_RATE
    mean = np.zeros(d + 1)
    covariance = np.linalg.inv(prior_precision)
    converged = False
    iteration = 0

    for iteration in range(1, max_iterations + 1):
        try:
            covariance = np.linalg.inv(expected_precision * gram + prior_precision)
        except np.linalg.LinAlgError as exc:
            raise NumericalFailureError("Posterior precision matrix is singular.") from exc
        mean = covariance @ (expected_precision * projection)
        residual = y - design @ mean
        rate = PRIOR_RATE + 0.5 * (float(residual @ residual) + float(np.trace(gram @ covariance)))
        updated = shape / rate
        if not (np.isfinite(updated) and np.all(np.isfinite(mean))):
            raise NumericalFailureError(
                f"Variational update produced non-finite parameters at iteration {iteration}."
            )
        delta = abs(updated - expected_precision)
        expected_precision = updated
        if delta < tolerance:
            converged = True
            break

    return VariationalPosterior(
        mean=mean,
        covariance=covariance,
        shape=shape,
        rate=rate,
        iterations=iteration,
        converged=converged,
    )


def _predict_prices(
    X: np.ndarray,
    standardizer: FeatureStandardizer,
    posteriors: dict[str, VariationalPosterior],
    scalers: dict[str, TargetScaler],
) -> np.ndarray:
    Z = standardizer.transform(X)
    columns = [
        np.asarray(scalers[target].inverse(posteriors[target].predict(Z)), dtype=float)
        for target in TARGETS
    ]
    return np.column_stack(columns)


# ---------------------------------------------------------------------------
# Regressor
# ---------------------------------------------------------------------------


class BayesianRangeRegressor:
    """Bayesian linear regressor predicting the session low and high.

    The most recent ``holdout_fraction`` of the training set is held out to
    estimate a signed bias correction per target; corrections apply only
    when calibration is enabled.
    """

    name = "bayesian"

    def __init__(
        self,
        schema: FeatureSchema,
        *,
        settings: CalibrationSettings | None = None,
        sanitize_bound: float = DEFAULT_SANITIZE_BOUND,
        events: EventSink | None = None,
    ) -> None:
        self.schema = schema
        self.settings = settings or CalibrationSettings()
        self.sanitize_bound = float(sanitize_bound)
        self.events = events
        self.calibration_enabled = bool(self.settings.enabled)
        self.swap_count = 0
        self.posteriors: dict[str, VariationalPosterior] = {}
        self.target_scalers: dict[str, TargetScaler] = {}
        self.bias_corrections: dict[str, float] = {"low": 0.0, "high": 0.0}
        self.standardizer: FeatureStandardizer | None = None
        self._holdout = range(0)
        self._n_training = 0

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    @property
    def is_trained(self) -> bool:
        return self.standardizer is not None and len(self.posteriors) == len(TARGETS)

    @property
    def holdout_indices(self) -> range:
        """Positions of the training samples used for bias correction."""

        return self._holdout

    def holdout_size(self, n_samples: int) -> int:
        return max(self.settings.min_holdout, int(n_samples * self.settings.holdout_fraction))

    def fit(self, samples: SampleSet) -> "BayesianRangeRegressor":
        self.schema.validate_width(samples.features.shape[1])
        n_samples = len(samples)
        if n_samples < self.settings.min_samples:
            raise InsufficientSamplesError(
                required=self.settings.min_samples, available=n_samples, component=self.name
            )
        holdout = self.holdout_size(n_samples)
        n_train = n_samples - holdout
        if n_train < 1:
            raise InsufficientSamplesError(
                "Hold-out leaves no training rows.",
                required=holdout + 1,
                available=n_samples,
                component=self.name,
            )

        X = sanitize_features(samples.X, bound=self.sanitize_bound)
        X_train = X[:n_train]
        standardizer = FeatureStandardizer(self.settings.clip).fit(X_train)
        Z_train = standardizer.transform(X_train)

        targets = {"low": samples.y_low[:n_train], "high": samples.y_high[:n_train]}
        posteriors: dict[str, VariationalPosterior] = {}
        scalers: dict[str, TargetScaler] = {}
        for target, values in targets.items():
            scaler = TargetScaler().fit(values)
            posterior = fit_variational_regression(
                Z_train,
                np.asarray(scaler.transform(values), dtype=float),
                weight_prior_variance=self.schema.weight_prior_variance,
                bias_prior_variance=self.settings.bias_prior_variance,
                max_iterations=self.settings.max_iterations,
                tolerance=self.settings.tolerance,
            )
            scalers[target] = scaler
            posteriors[target] = posterior
            LOGGER.debug(
                "Fitted %s posterior in %d iterations (converged=%s, E[tau]=%.4f)",
                target,
                posterior.iterations,
                posterior.converged,
                posterior.expected_precision,
            )

        held_out = _predict_prices(X[n_train:], standardizer, posteriors, scalers)
        corrections = {
            "low": float(np.mean(samples.y_low[n_train:] - held_out[:, 0])),
            "high": float(np.mean(samples.y_high[n_train:] - held_out[:, 1])),
        }

        # Commit only once every target has fitted.
        self.standardizer = standardizer
        self.posteriors = posteriors
        self.target_scalers = scalers
        self.bias_corrections = corrections
        self._holdout = range(n_train, n_samples)
        self._n_training = n_train
        self.swap_count = 0

        emit(self.events, "bayesian.calibration", samples=holdout, **corrections)
        emit(
            self.events,
            "bayesian.trained",
            level=logging.INFO,
            samples=n_train,
            holdout=holdout,
            features=len(self.schema),
            prior_variance=self.schema.weight_prior_variance,
        )
        return self

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------
    def set_calibration(self, enabled: bool) -> None:
        self.calibration_enabled = bool(enabled)

    def _require_trained(self) -> None:
        if not self.is_trained:
            raise ModelNotTrainedError(type(self).__name__)

    def _as_matrix(self, features: Any) -> np.ndarray:
        matrix = np.asarray(features, dtype=float)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        self.schema.validate_width(matrix.shape[1])
        return sanitize_features(matrix, bound=self.sanitize_bound)

    def standardize(self, features: Any) -> np.ndarray:
        """Return sanitised, standardised and clipped feature rows."""

        self._require_trained()
        assert self.standardizer is not None
        return self.standardizer.transform(self._as_matrix(features))

    def destandardize(self, values: np.ndarray | float, target: str) -> np.ndarray | float:
        self._require_trained()
        return self.target_scalers[target].inverse(values)

    def _raw_predict(self, X: np.ndarray) -> np.ndarray:
        assert self.standardizer is not None
        return _predict_prices(X, self.standardizer, self.posteriors, self.target_scalers)

    def predict_many(self, features: Any) -> np.ndarray:
        """Return an ``(n, 2)`` array of ``[low, high]`` predictions."""

        self._require_trained()
        predictions = self._raw_predict(self._as_matrix(features))
        if self.calibration_enabled:
            predictions[:, 0] += self.bias_corrections["low"]
            predictions[:, 1] += self.bias_corrections["high"]

        inverted = predictions[:, 1] < predictions[:, 0]
        if np.any(inverted):
            for row in np.flatnonzero(inverted):
                emit(
                    self.events,
                    "bayesian.swap",
                    level=logging.WARNING,
                    row=int(row),
                    low=float(predictions[row, 0]),
                    high=float(predictions[row, 1]),
                )
            predictions[inverted] = predictions[inverted][:, ::-1]
            self.swap_count += int(inverted.sum())
        return predictions

    def predict(self, features: Any) -> tuple[float, float]:
        """Predict ``(low, high)`` for a single feature vector."""

        low, high = self.predict_many(features)[0]
        return float(low), float(high)

    def predict_samples(self, samples: SampleSet) -> np.ndarray:
        return self.predict_many(samples.X)

    def predictive_std(self, features: Any) -> np.ndarray:
        """Posterior predictive standard deviation, ``(n, 2)`` in price units."""

        Z = self.standardize(features)
        columns = [
            np.sqrt(self.posteriors[target].predictive_variance(Z)) * self.target_scalers[target].std
            for target in TARGETS
        ]
        return np.column_stack(columns)

    def summary(self) -> dict[str, Any]:
        self._require_trained()
        return {
            "schema": self.schema.key,
            "training_samples": self._n_training,
            "holdout_samples": len(self._holdout),
            "calibration_enabled": self.calibration_enabled,
            "bias_corrections": dict(self.bias_corrections),
            "swap_count": self.swap_count,
            "iterations": {target: post.iterations for target, post in self.posteriors.items()},
            "expected_precision": {
                target: post.expected_precision for target, post in self.posteriors.items()
            },
        }


__all__ = [
    "BayesianRangeRegressor",
    "FeatureStandardizer",
    "TargetScaler",
    "VariationalPosterior",
    "fit_variational_regression",
]
