"""Walk-forward validation for the low/high range models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error

from .config import WalkForwardSettings
from .evaluation import joint_directional_accuracy, percent_errors
from .events import EventSink, emit
from .features.provider import SampleSet
from .modeling.exceptions import InsufficientSamplesError
from .models import ModelFactory, RangeModel

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FoldMetrics:
    low_mape: float
    high_mape: float
    low_mae: float
    high_mae: float
    directional_accuracy: float
    count: int

    @property
    def mean_mape(self) -> float:
        return (self.low_mape + self.high_mape) / 2.0

    @classmethod
    def from_predictions(cls, samples: SampleSet, predictions: np.ndarray) -> "FoldMetrics":
        actual_low = samples.y_low
        actual_high = samples.y_high
        predicted_low = predictions[:, 0]
        predicted_high = predictions[:, 1]
        return cls(
            low_mape=float(np.mean(percent_errors(actual_low, predicted_low))),
            high_mape=float(np.mean(percent_errors(actual_high, predicted_high))),
            low_mae=float(mean_absolute_error(actual_low, predicted_low)),
            high_mae=float(mean_absolute_error(actual_high, predicted_high)),
            directional_accuracy=joint_directional_accuracy(
                actual_low, actual_high, predicted_low, predicted_high
            ),
            count=len(samples),
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "low_mape": self.low_mape,
            "high_mape": self.high_mape,
            "low_mae": self.low_mae,
            "high_mae": self.high_mae,
            "directional_accuracy": self.directional_accuracy,
            "count": self.count,
        }


@dataclass(slots=True)
class WalkForwardFold:
    index: int
    train_start: Any
    train_end: Any
    validation_start: Any
    validation_end: Any
    train_size: int
    validation_size: int
    uncalibrated: FoldMetrics
    calibrated: FoldMetrics

    @property
    def calibration_improved(self) -> bool:
        return self.calibrated.low_mape < self.uncalibrated.low_mape

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "train_start": _isoformat(self.train_start),
            "train_end": _isoformat(self.train_end),
            "validation_start": _isoformat(self.validation_start),
            "validation_end": _isoformat(self.validation_end),
            "train_size": self.train_size,
            "validation_size": self.validation_size,
            "uncalibrated": self.uncalibrated.to_dict(),
            "calibrated": self.calibrated.to_dict(),
        }


def _isoformat(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    return value


@dataclass(slots=True)
class WalkForwardResult:
    model: str
    folds: List[WalkForwardFold]
    skipped_steps: List[int] = field(default_factory=list)

    def _mean(self, attribute: str, *, calibrated: bool) -> float:
        values = [
            getattr(fold.calibrated if calibrated else fold.uncalibrated, attribute) for fold in self.folds
        ]
        return float(np.mean(values)) if values else 0.0

    @property
    def aggregate(self) -> Dict[str, float]:
        calibrated_low = [fold.calibrated.low_mape for fold in self.folds]
        calibrated_high = [fold.calibrated.high_mape for fold in self.folds]
        return {
            "folds": len(self.folds),
            "uncalibrated_low_mape": self._mean("low_mape", calibrated=False),
            "uncalibrated_high_mape": self._mean("high_mape", calibrated=False),
            "uncalibrated_low_mae": self._mean("low_mae", calibrated=False),
            "uncalibrated_high_mae": self._mean("high_mae", calibrated=False),
            "calibrated_low_mape": self._mean("low_mape", calibrated=True),
            "calibrated_high_mape": self._mean("high_mape", calibrated=True),
            "calibrated_low_mae": self._mean("low_mae", calibrated=True),
            "calibrated_high_mae": self._mean("high_mae", calibrated=True),
            "directional_accuracy": self._mean("directional_accuracy", calibrated=True),
            "calibrated_low_mape_std": float(np.std(calibrated_low)) if calibrated_low else 0.0,
            "calibrated_high_mape_std": float(np.std(calibrated_high)) if calibrated_high else 0.0,
            "calibration_success_rate": self.calibration_success_rate,
        }

    @property
    def calibration_success_rate(self) -> float:
        """Percentage of folds where calibration lowered the low-price MAPE."""

        if not self.folds:
            return 0.0
        improved = sum(1 for fold in self.folds if fold.calibration_improved)
        return improved / len(self.folds) * 100.0

    @property
    def best_fold(self) -> Optional[WalkForwardFold]:
        return min(self.folds, key=lambda fold: fold.calibrated.low_mape, default=None)

    @property
    def worst_fold(self) -> Optional[WalkForwardFold]:
        return max(self.folds, key=lambda fold: fold.calibrated.low_mape, default=None)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for fold in self.folds:
            row: Dict[str, Any] = {
                "fold": fold.index,
                "train_end": fold.train_end,
                "validation_start": fold.validation_start,
                "validation_end": fold.validation_end,
                "train_size": fold.train_size,
                "validation_size": fold.validation_size,
            }
            row.update({f"uncalibrated_{key}": value for key, value in fold.uncalibrated.to_dict().items()})
            row.update({f"calibrated_{key}": value for key, value in fold.calibrated.to_dict().items()})
            rows.append(row)
        return pd.DataFrame(rows).set_index("fold") if rows else pd.DataFrame()

    def to_dict(self) -> Dict[str, Any]:
        best = self.best_fold
        worst = self.worst_fold
        return {
            "model": self.model,
            "aggregate": self.aggregate,
            "best_fold": best.index if best is not None else None,
            "worst_fold": worst.index if worst is not None else None,
            "skipped_steps": list(self.skipped_steps),
            "folds": [fold.to_dict() for fold in self.folds],
        }


class WalkForwardValidator:
    """Retrain a fresh model on an expanding window and score the next block."""

    def __init__(
        self,
        *,
        model_factory: ModelFactory,
        settings: WalkForwardSettings | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.model_factory = model_factory
        self.settings = settings or WalkForwardSettings()
        self.events = events

    def total_steps(self, n_samples: int) -> int:
        """Number of steps whose validation block holds at least one sample."""

        settings = self.settings
        span = n_samples - settings.initial_train_size
        if span <= 0:
            return 0
        return -(-span // settings.step_size)

    def _generate_splits(self, n_samples: int) -> Iterator[Tuple[int, slice, slice]]:
        settings = self.settings
        for step in range(self.total_steps(n_samples)):
            train_end = settings.initial_train_size + step * settings.step_size
            validation_end = min(train_end + settings.validation_window, n_samples)
            yield step, slice(0, train_end), slice(train_end, validation_end)

    def run(self, samples: SampleSet) -> WalkForwardResult:
        folds: list[WalkForwardFold] = []
        skipped: list[int] = []
        splits = list(self._generate_splits(len(samples)))
        LOGGER.info(
            "Walk-forward validation of %s over %d samples in %d steps",
            self.model_factory.model_type,
            len(samples),
            len(splits),
        )

        for step, train_slice, validation_slice in splits:
            train_set = samples[train_slice]
            validation_set = samples[validation_slice]
            if len(validation_set) == 0:
                break

            model = self.model_factory.create(samples.schema)
            try:
                model.fit(train_set)
            except InsufficientSamplesError as exc:
                LOGGER.warning("Skipping walk-forward step %d: %s", step, exc)
                emit(self.events, "walk_forward.skipped", level=logging.WARNING, step=step, reason=str(exc))
                skipped.append(step)
                continue

            uncalibrated = self._score(model, validation_set, calibrated=False)
            calibrated = self._score(model, validation_set, calibrated=True)
            train_dates = train_set.dates
            validation_dates = validation_set.dates
            fold = WalkForwardFold(
                index=step,
                train_start=train_dates[0],
                train_end=train_dates[-1],
                validation_start=validation_dates[0],
                validation_end=validation_dates[-1],
                train_size=len(train_set),
                validation_size=len(validation_set),
                uncalibrated=uncalibrated,
                calibrated=calibrated,
            )
            folds.append(fold)
            emit(
                self.events,
                "walk_forward.fold",
                level=logging.INFO,
                step=step,
                train_size=fold.train_size,
                validation_size=fold.validation_size,
                calibrated_low_mape=calibrated.low_mape,
                calibrated_high_mape=calibrated.high_mape,
            )

        if not folds:
            raise RuntimeError(
                "Walk-forward validation did not produce any folds. Check dataset size or window configuration."
            )

        return WalkForwardResult(model=self.model_factory.model_type, folds=folds, skipped_steps=skipped)

    @staticmethod
    def _score(model: RangeModel, samples: SampleSet, *, calibrated: bool) -> FoldMetrics:
        model.set_calibration(calibrated)
        predictions = np.asarray(model.predict_samples(samples), dtype=float).reshape(-1, 2)
        return FoldMetrics.from_predictions(samples, predictions)


__all__ = ["FoldMetrics", "WalkForwardFold", "WalkForwardResult", "WalkForwardValidator"]
