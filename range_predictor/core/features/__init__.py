"""Feature schemas, calendar features and the feature vector provider."""

from .feature_registry import (
    DEFAULT_ASSETS,
    FeatureField,
    FeatureRegistryError,
    FeatureSchema,
    SCHEMA_BLUEPRINT,
    UnknownSchemaError,
    available_schemas,
    get_schema,
    sanitize_features,
)
from .provider import CONTEXT_COLUMNS, FeatureVectorProvider, Sample, SampleSet, prepare_price_frame
from .temporal import MarketCalendar

__all__ = [
    "CONTEXT_COLUMNS",
    "DEFAULT_ASSETS",
    "FeatureField",
    "FeatureRegistryError",
    "FeatureSchema",
    "FeatureVectorProvider",
    "MarketCalendar",
    "SCHEMA_BLUEPRINT",
    "Sample",
    "SampleSet",
    "UnknownSchemaError",
    "available_schemas",
    "get_schema",
    "prepare_price_frame",
    "sanitize_features",
]
