"""Next-session low/high range prediction with blended Bayesian and tree models."""

from range_predictor.app import RangePredictorApplication, RunResult
from range_predictor.core import (
    RangePredictorConfig,
    WalkForwardValidator,
    build_config,
    load_environment,
)

__all__ = [
    "RangePredictorApplication",
    "RangePredictorConfig",
    "RunResult",
    "WalkForwardValidator",
    "build_config",
    "load_environment",
]
