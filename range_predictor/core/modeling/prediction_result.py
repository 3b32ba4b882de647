from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

import pandas as pd

from .regimes import EnsembleWeights, MarketRegime


def _normalize_timestamp(value: pd.Timestamp | str | int | None) -> str | int | None:
    if value is None or isinstance(value, int):
        return value
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return pd.Timestamp(ts).isoformat()


class _MappingMixin(Mapping[str, Any]):
    """Expose ``to_dict`` through the read-only mapping protocol."""

    def to_dict(self) -> dict[str, Any]:  # pragma: no cover - overridden
        raise NotImplementedError

    # Mapping protocol -------------------------------------------------
    def __getitem__(self, key: str) -> Any:  # pragma: no cover - trivial mapping wrapper
        return self.to_dict()[key]

    def __iter__(self) -> Iterator[str]:  # pragma: no cover - trivial mapping wrapper
        return iter(self.to_dict())

    def __len__(self) -> int:  # pragma: no cover - trivial mapping wrapper
        return len(self.to_dict())


@dataclass(frozen=True, eq=False)
class EnsemblePrediction(_MappingMixin):
    """One combined low/high prediction and the inputs that produced it."""

    date: Any
    bayesian_low: float
    bayesian_high: float
    tree_low: float
    tree_high: float
    tree_range: float | None
    final_low: float
    final_high: float
    confidence: float
    weights: EnsembleWeights | None = None
    regime: MarketRegime | None = None
    range_reconciled: bool = False
    gap_enforced: bool = False
    strategy: str = "regime"

    @property
    def midpoint(self) -> float:
        return (self.final_low + self.final_high) / 2.0

    @property
    def range(self) -> float:
        return self.final_high - self.final_low

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dictionary representation suitable for serialization."""

        return {
            "date": _normalize_timestamp(self.date),
            "strategy": self.strategy,
            "bayesian_low": self.bayesian_low,
            "bayesian_high": self.bayesian_high,
            "tree_low": self.tree_low,
            "tree_high": self.tree_high,
            "tree_range": self.tree_range,
            "final_low": self.final_low,
            "final_high": self.final_high,
            "confidence": self.confidence,
            "regime": str(self.regime) if self.regime is not None else None,
            "weights": self.weights.to_dict() if self.weights is not None else None,
            "range_reconciled": self.range_reconciled,
            "gap_enforced": self.gap_enforced,
        }


@dataclass(frozen=True)
class PerformanceRecord:
    """A prediction paired with the realised low and high."""

    prediction: EnsemblePrediction
    actual_low: float
    actual_high: float

    @property
    def date(self) -> Any:
        return self.prediction.date

    def _pct(self, predicted: float, actual: float) -> float:
        return abs(actual - predicted) / actual * 100.0 if actual else 0.0

    def ensemble_error(self) -> float:
        """Mean of the low and high absolute percentage errors."""

        return (
            self._pct(self.prediction.final_low, self.actual_low)
            + self._pct(self.prediction.final_high, self.actual_high)
        ) / 2.0

    def bayesian_error(self) -> float:
        return (
            self._pct(self.prediction.bayesian_low, self.actual_low)
            + self._pct(self.prediction.bayesian_high, self.actual_high)
        ) / 2.0

    def tree_error(self) -> float:
        return (
            self._pct(self.prediction.tree_low, self.actual_low)
            + self._pct(self.prediction.tree_high, self.actual_high)
        ) / 2.0


@dataclass(frozen=True, eq=False)
class EnsembleStatistics(_MappingMixin):
    """Summary of the current weights and recorded prediction history."""

    weights: EnsembleWeights
    prediction_count: int
    outcome_count: int
    regime_distribution: Mapping[str, int] = field(default_factory=dict)
    recent_predictions: tuple[EnsemblePrediction, ...] = ()
    recent_mape: float | None = None

    def regime_share(self, regime: str | MarketRegime) -> float:
        if not self.prediction_count:
            return 0.0
        return self.regime_distribution.get(str(regime), 0) / self.prediction_count * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "weights": self.weights.to_dict(),
            "prediction_count": self.prediction_count,
            "outcome_count": self.outcome_count,
            "regime_distribution": dict(self.regime_distribution),
            "recent_predictions": [prediction.to_dict() for prediction in self.recent_predictions],
            "recent_mape": self.recent_mape,
        }


__all__ = ["EnsemblePrediction", "EnsembleStatistics", "PerformanceRecord"]
