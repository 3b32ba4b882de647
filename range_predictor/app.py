"""Top-level orchestration for the range prediction pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from range_predictor.core import (
    EvaluationReport,
    FeatureVectorProvider,
    ModelFactory,
    RangeEvaluator,
    RangePredictorConfig,
    SampleSet,
    WalkForwardResult,
    WalkForwardValidator,
    build_config,
    evaluate_model,
    load_environment,
    load_market_data,
)
from range_predictor.core.events import EventRecorder, LoggingEventSink
from range_predictor.core.modeling.ensembles import RegimeWeightedEnsemble
from range_predictor.core.modeling.stacking import StackingEnsemble

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RunResult:
    """Wrapper used by the application to provide consistent responses."""

    status: str
    payload: dict[str, Any]


class RangePredictorApplication:
    """Coordinate data loading, feature building, training and validation."""

    MODES = ("walk-forward", "evaluate", "predict")

    def __init__(self, config: RangePredictorConfig, *, events: EventRecorder | None = None) -> None:
        self.config = config
        self.events = events if events is not None else EventRecorder(forward_to=LoggingEventSink())
        self.provider = FeatureVectorProvider.from_settings(config.features)
        self._frames: dict[str, pd.DataFrame] | None = None
        self._samples: SampleSet | None = None

    @classmethod
    def from_environment(cls, **overrides: Any) -> "RangePredictorApplication":
        """Create an application instance using environment variables and overrides."""

        load_environment()
        config = build_config(**{key: value for key, value in overrides.items() if value is not None})
        LOGGER.debug(
            "Initialised configuration for %s with schema %s",
            config.features.target_symbol,
            config.features.schema,
        )
        return cls(config)

    @property
    def model_factory(self) -> ModelFactory:
        return ModelFactory(self.config.walk_forward.model, self.config, events=self.events)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------
    def load_samples(self, *, refresh: bool = False) -> SampleSet:
        """Read the configured price files and build the feature samples."""

        if self._samples is None or refresh:
            self._frames = load_market_data(self.config.data_dir, self.provider.symbols)
            self._samples = self.provider.build(self._frames)
        return self._samples

    def latest_session(self) -> SampleSet:
        """Feature row of the final session, whose future range is unknown."""

        if self._frames is None:
            self.load_samples()
        assert self._frames is not None
        return self.provider.build_latest(self._frames)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------
    def walk_forward(self, samples: SampleSet | None = None) -> WalkForwardResult:
        samples = samples if samples is not None else self.load_samples()
        validator = WalkForwardValidator(
            model_factory=self.model_factory,
            settings=self.config.walk_forward,
            events=self.events,
        )
        return validator.run(samples)

    def evaluate(self, samples: SampleSet | None = None, *, train_fraction: float = 0.8) -> dict[str, Any]:
        """Train on the leading share of samples and score the trailing block.

        The regime ensemble replays the block one session at a time so that
        realised outcomes feed its adaptive weights.
        """

        samples = samples if samples is not None else self.load_samples()
        if not 0.0 < train_fraction < 1.0:
            raise ValueError("train_fraction must lie strictly between 0 and 1.")
        split = int(len(samples) * train_fraction)
        train_set, test_set = samples[:split], samples[split:]
        if len(test_set) == 0:
            raise ValueError("No samples left for evaluation; lower train_fraction or add data.")

        model = self.model_factory.create(samples.schema)
        model.fit(train_set)
        LOGGER.info("Evaluating %s on %d held-out samples", model.name, len(test_set))

        uncalibrated = evaluate_model(model, test_set, calibrated=False)
        if isinstance(model, RegimeWeightedEnsemble):
            model.set_calibration(True)
            calibrated = self._replay(model, test_set)
            statistics: dict[str, Any] | None = model.statistics().to_dict()
        else:
            calibrated = evaluate_model(model, test_set, calibrated=True)
            statistics = None

        payload: dict[str, Any] = {
            "model": model.name,
            "train_size": len(train_set),
            "test_size": len(test_set),
            "uncalibrated": uncalibrated.to_dict(),
            "calibrated": calibrated.to_dict(),
        }
        if statistics is not None:
            payload["ensemble"] = statistics
        return payload

    def _replay(self, model: RegimeWeightedEnsemble, samples: SampleSet) -> EvaluationReport:
        rows = []
        for sample in samples:
            prediction = model.predict(sample)
            model.update_performance(sample)
            rows.append((prediction.final_low, prediction.final_high))
        predictions = np.asarray(rows, dtype=float)
        return RangeEvaluator().evaluate(
            samples.y_low,
            samples.y_high,
            predictions[:, 0],
            predictions[:, 1],
            dates=list(samples.dates),
            model_name=model.name,
        )

    def predict(self, samples: SampleSet | None = None, *, save: bool = False) -> dict[str, Any]:
        """Predict the range of the session after the data.

        With a positive ``target_offset`` the model trains on every labelled
        sample and predicts from the final, unlabelled session. With the
        default offset of 0 targets share the feature date, so the latest
        session is held out and scored as a one-step backtest.
        """

        offset = self.config.features.target_offset
        samples = samples if samples is not None else self.load_samples()
        if offset:
            train_set, target_set = samples, self.latest_session()
        else:
            if len(samples) < 2:
                raise ValueError("At least two samples are required to train and predict.")
            train_set, target_set = samples[:-1], samples[-1:]

        model = self.model_factory.create(samples.schema)
        model.fit(train_set)
        model.set_calibration(True)
        latest = target_set[0]

        if isinstance(model, (RegimeWeightedEnsemble, StackingEnsemble)):
            prediction = model.predict(latest).to_dict()
        else:
            low, high = model.predict_samples(target_set)[0]
            prediction = {"date": str(latest.date), "final_low": float(low), "final_high": float(high)}

        payload: dict[str, Any] = {
            "model": model.name,
            "target_offset": offset,
            "prediction": prediction,
            "actual": None if offset else {"low": latest.low, "high": latest.high},
        }
        if save and isinstance(model, RegimeWeightedEnsemble):
            path = model.save(self.config.ensemble_path)
            payload["saved_to"] = str(path)
        return payload

    def run(self, mode: str, **kwargs: Any) -> RunResult:
        """Dispatch execution based on the requested mode."""

        handlers = {
            "walk-forward": lambda: self.walk_forward().to_dict(),
            "evaluate": lambda: self.evaluate(train_fraction=kwargs.get("train_fraction", 0.8)),
            "predict": lambda: self.predict(save=kwargs.get("save", False)),
        }
        if mode not in handlers:
            raise ValueError(f"Unsupported application mode: {mode}")

        payload = handlers[mode]()
        return RunResult(status="ok", payload={mode.replace("-", "_"): payload})


__all__ = ["RangePredictorApplication", "RunResult"]
