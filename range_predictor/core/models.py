"""Model factory utilities providing configured range models."""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np

from .config import RangePredictorConfig
from .events import EventSink
from .features.feature_registry import FeatureSchema
from .features.provider import SampleSet
from .modeling.bayesian import BayesianRangeRegressor
from .modeling.ensembles import RegimeWeightedEnsemble
from .modeling.stacking import StackingEnsemble
from .modeling.trees import TreeRangeRegressor

LOGGER = logging.getLogger(__name__)


class RangeModel(Protocol):
    """Interface shared by every trainable low/high model."""

    name: str

    def fit(self, samples: SampleSet) -> "RangeModel":  # pragma: no cover - protocol
        ...

    def set_calibration(self, enabled: bool) -> None:  # pragma: no cover - protocol
        ...

    def predict_samples(self, samples: SampleSet) -> np.ndarray:  # pragma: no cover - protocol
        ...


class ModelFactory:
    """Create fresh, untrained range models from a configuration."""

    MODEL_TYPES = ("bayesian", "lightgbm", "ensemble", "stacking")

    def __init__(
        self,
        model_type: str,
        config: RangePredictorConfig | None = None,
        *,
        events: EventSink | None = None,
    ) -> None:
        self.model_type = model_type.strip().lower()
        if self.model_type == "ensemble" and config is not None and config.ensemble.strategy == "stacking":
            self.model_type = "stacking"
        if self.model_type not in self.MODEL_TYPES:
            raise ValueError(
                f"Unknown model type '{model_type}'. Expected one of {', '.join(self.MODEL_TYPES)}."
            )
        self.config = config or RangePredictorConfig()
        self.events = events

    def create(self, schema: FeatureSchema) -> RangeModel:
        """Return a new model for ``schema``."""

        config = self.config
        bound = config.features.sanitize_bound
        if self.model_type == "bayesian":
            model: RangeModel = BayesianRangeRegressor(
                schema, settings=config.calibration, sanitize_bound=bound, events=self.events
            )
        elif self.model_type == "lightgbm":
            model = TreeRangeRegressor(
                schema, settings=config.trees, sanitize_bound=bound, events=self.events
            )
        else:
            combiner = StackingEnsemble if self.model_type == "stacking" else RegimeWeightedEnsemble
            model = combiner(
                schema,
                settings=config.ensemble,
                calibration=config.calibration,
                trees=config.trees,
                sanitize_bound=bound,
                events=self.events,
            )
        LOGGER.debug("Created %s model for schema %s", self.model_type, schema.key)
        return model

    def __call__(self, schema: FeatureSchema) -> RangeModel:
        return self.create(schema)


__all__ = ["ModelFactory", "RangeModel"]
