"""Core analytical components for the range predictor."""

from range_predictor.core.backtesting import (
    FoldMetrics,
    WalkForwardFold,
    WalkForwardResult,
    WalkForwardValidator,
)
from range_predictor.core.config import (
    DEFAULT_SYMBOLS,
    ENSEMBLE_STRATEGIES,
    SCHEMA_NAMES,
    RangePredictorConfig,
    build_config,
    load_config_from_file,
    load_environment,
)
from range_predictor.core.data_loader import load_market_data, load_price_frame
from range_predictor.core.evaluation import EvaluationReport, RangeEvaluator, evaluate_model
from range_predictor.core.events import EventRecorder, LoggingEventSink, ModelEvent
from range_predictor.core.features import (
    FeatureSchema,
    FeatureVectorProvider,
    MarketCalendar,
    Sample,
    SampleSet,
    get_schema,
)
from range_predictor.core.models import ModelFactory, RangeModel

__all__ = [
    "DEFAULT_SYMBOLS",
    "ENSEMBLE_STRATEGIES",
    "EvaluationReport",
    "EventRecorder",
    "FeatureSchema",
    "FeatureVectorProvider",
    "FoldMetrics",
    "LoggingEventSink",
    "MarketCalendar",
    "ModelEvent",
    "ModelFactory",
    "RangeEvaluator",
    "RangeModel",
    "RangePredictorConfig",
    "SCHEMA_NAMES",
    "Sample",
    "SampleSet",
    "WalkForwardFold",
    "WalkForwardResult",
    "WalkForwardValidator",
    "build_config",
    "evaluate_model",
    "get_schema",
    "load_config_from_file",
    "load_environment",
    "load_market_data",
    "load_price_frame",
]
