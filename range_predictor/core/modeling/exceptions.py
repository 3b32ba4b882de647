"""Custom exceptions for the modeling package."""

from __future__ import annotations

from typing import Iterable


class RangePredictorError(RuntimeError):
    """Base class for errors raised by the range prediction core."""


class SchemaViolationError(RangePredictorError, ValueError):
    """Raised when a feature vector disagrees with its declared schema."""

    def __init__(
        self,
        message: str | None = None,
        *,
        expected: int,
        actual: int,
        schema: str | None = None,
    ) -> None:
        self.expected = int(expected)
        self.actual = int(actual)
        self.schema = schema
        label = f" for schema '{schema}'" if schema else ""
        details = message or "Feature vector width mismatch"
        super().__init__(f"{details}{label}: expected {self.expected}, got {self.actual}.")


class MissingSeriesError(RangePredictorError, KeyError):
    """Raised when one of the required input price series is absent."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(sorted(str(symbol) for symbol in missing))
        super().__init__(f"Missing required price series: {', '.join(self.missing)}")

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return str(self.args[0])


class InsufficientSamplesError(ValueError):
    """Raised when there are not enough samples to proceed with training."""

    def __init__(
        self,
        message: str | None = None,
        *,
        required: int,
        available: int,
        component: str | None = None,
    ) -> None:
        self.required = int(required)
        self.available = int(available)
        self.component = component

        details: list[str] = [message or "Insufficient samples for requested training run."]
        if component:
            details.append(f"Component: {component}.")
        details.append(f"Required {self.required}, available {self.available}.")
        super().__init__(" ".join(details))


class InsufficientValidSamplesError(InsufficientSamplesError):
    """Raised when every sample of an evaluation loop had to be skipped."""


class ModelNotTrainedError(RangePredictorError):
    """Raised when a model is asked to predict before it has been trained."""

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__(f"{model} must be trained before predicting.")


class NumericalFailureError(RangePredictorError, ArithmeticError):
    """Raised when posterior inference produces non-finite parameters."""


__all__ = [
    "InsufficientSamplesError",
    "InsufficientValidSamplesError",
    "MissingSeriesError",
    "ModelNotTrainedError",
    "NumericalFailureError",
    "RangePredictorError",
    "SchemaViolationError",
]
