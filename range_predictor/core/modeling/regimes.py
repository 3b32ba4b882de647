"""Market regime detection and regime-aware ensemble weights."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Mapping

import pandas as pd

from ..config import RegimeThresholds


class MarketRegime(str, Enum):
    HIGH_VOLATILITY = "High Volatility"
    BULL_TREND = "Bull Trend"
    BEAR_TREND = "Bear Trend"
    HIGH_VOLUME_SIDEWAYS = "High Volume Sideways"
    NORMAL = "Normal"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EnsembleWeights:
    """Blend weights for the Bayesian and tree models.

    ``bayesian + tree_low`` and ``bayesian + tree_high`` each sum to one once
    normalised. The tree weights for low and high are tracked separately but
    move together.
    """

    bayesian: float = 0.5
    tree_low: float = 0.5
    tree_high: float = 0.5
    range_adjustment: float = 0.1
    update_count: int = 0
    last_updated: pd.Timestamp | None = None

    @property
    def tree(self) -> float:
        return (self.tree_low + self.tree_high) / 2.0

    def normalized(self, min_weight: float, max_weight: float) -> "EnsembleWeights":
        """Return weights whose pairs sum to one with each weight in ``[min, max]``."""

        total = self.bayesian + self.tree
        share = self.bayesian / total if total > 0 else 0.5
        lower = max(min_weight, 1.0 - max_weight)
        upper = min(max_weight, 1.0 - min_weight)
        share = min(max(share, lower), upper)
        return replace(self, bayesian=share, tree_low=1.0 - share, tree_high=1.0 - share)

    def scaled(self, bayesian: float, tree: float) -> "EnsembleWeights":
        return replace(
            self,
            bayesian=self.bayesian * bayesian,
            tree_low=self.tree_low * tree,
            tree_high=self.tree_high * tree,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if hasattr(self.last_updated, "isoformat"):
            payload["last_updated"] = self.last_updated.isoformat()
        return payload


class RegimeDetector:
    """Classify a session from the target asset's volatility, momentum and volume."""

    def __init__(self, thresholds: RegimeThresholds | None = None) -> None:
        self.thresholds = thresholds or RegimeThresholds()

    def detect(self, context: Mapping[str, float]) -> MarketRegime:
        volatility = float(context.get("Volatility10", 0.0))
        momentum = float(context.get("ROC10", 0.0))
        volume = float(context.get("Volume", 1.0))
        limits = self.thresholds

        if volatility > limits.volatility:
            return MarketRegime.HIGH_VOLATILITY
        if momentum >= limits.momentum:
            return MarketRegime.BULL_TREND
        if momentum <= -limits.momentum:
            return MarketRegime.BEAR_TREND
        if volume > limits.volume:
            return MarketRegime.HIGH_VOLUME_SIDEWAYS
        return MarketRegime.NORMAL

    def adjust(
        self,
        weights: EnsembleWeights,
        regime: MarketRegime,
        *,
        min_weight: float,
        max_weight: float,
    ) -> EnsembleWeights:
        """Nudge ``weights`` for ``regime`` and re-normalise."""

        limits = self.thresholds
        if regime is MarketRegime.HIGH_VOLATILITY:
            weights = weights.scaled(limits.volatility_bayes, limits.volatility_tree)
        elif regime in (MarketRegime.BULL_TREND, MarketRegime.BEAR_TREND):
            weights = weights.scaled(limits.trend_bayes, limits.trend_tree)
        return weights.normalized(min_weight, max_weight)


__all__ = ["EnsembleWeights", "MarketRegime", "RegimeDetector"]
