"""Feature schema registry definitions and helpers.

A :class:`FeatureSchema` is the versioned contract between the feature
provider and every model: the exact number of fields, their order and the
transform applied to each raw column before it reaches a model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, Iterable, Sequence

import numpy as np
import pandas as pd

from ..modeling.exceptions import SchemaViolationError

DEFAULT_ASSETS: tuple[str, ...] = ("DOW", "QQQ", "MSFT")
DEFAULT_SANITIZE_BOUND = 1000.0

SMALL_SCHEMA_PRIOR_VARIANCE = 0.01
LARGE_SCHEMA_PRIOR_VARIANCE = 0.0005
SMALL_SCHEMA_WIDTH = 9
LARGE_SCHEMA_WIDTH = 62

Transform = Callable[[pd.Series], pd.Series]

TRANSFORMS: Dict[str, Transform] = {
    "identity": lambda values: values,
    "log1p_positive": lambda values: np.log1p(values.clip(lower=0)),
    "per_10_capped": lambda values: (values / 10.0).clip(upper=1.0),
    "per_90_capped": lambda values: (values / 90.0).clip(upper=1.0),
}


@dataclass(frozen=True)
class FeatureField:
    """A single named slot within a feature schema."""

    name: str
    group: str
    source: str
    transform: str = "identity"
    description: str = ""

    def apply(self, values: pd.Series) -> pd.Series:
        return TRANSFORMS[self.transform](values.astype(float))


@dataclass(frozen=True)
class FeatureSchema:
    """Ordered, versioned description of a model feature vector."""

    name: str
    version: str
    fields: tuple[FeatureField, ...]
    description: str = ""
    prior_variance: float | None = None
    _positions: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        names = [item.name for item in self.fields]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise FeatureRegistryError(
                f"Schema '{self.name}' declares duplicate fields: {', '.join(duplicates)}."
            )
        object.__setattr__(self, "_positions", {name: idx for idx, name in enumerate(names)})

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(item.name for item in self.fields)

    @property
    def sources(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.source for item in self.fields))

    @property
    def key(self) -> str:
        return f"{self.name}-{len(self)}@{self.version}"

    @property
    def weight_prior_variance(self) -> float:
        """Prior variance on each regression weight.

        Shrinks from 0.01 at nine fields to 0.0005 at 62 or more fields,
        linearly in between.
        """

        if self.prior_variance is not None:
            return float(self.prior_variance)
        width = len(self)
        if width <= SMALL_SCHEMA_WIDTH:
            return SMALL_SCHEMA_PRIOR_VARIANCE
        if width >= LARGE_SCHEMA_WIDTH:
            return LARGE_SCHEMA_PRIOR_VARIANCE
        share = (width - SMALL_SCHEMA_WIDTH) / (LARGE_SCHEMA_WIDTH - SMALL_SCHEMA_WIDTH)
        return SMALL_SCHEMA_PRIOR_VARIANCE + share * (
            LARGE_SCHEMA_PRIOR_VARIANCE - SMALL_SCHEMA_PRIOR_VARIANCE
        )

    def index_of(self, name: str) -> int:
        try:
            return self._positions[name]
        except KeyError as exc:
            raise FeatureRegistryError(f"Schema '{self.name}' has no field '{name}'.") from exc

    def groups(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for item in self.fields:
            grouped.setdefault(item.group, []).append(item.name)
        return grouped

    def validate_width(self, width: int) -> None:
        """Raise :class:`SchemaViolationError` unless ``width`` matches the schema."""

        if int(width) != len(self):
            raise SchemaViolationError(expected=len(self), actual=int(width), schema=self.key)

    def assemble(self, raw: pd.DataFrame) -> pd.DataFrame:
        """Project ``raw`` columns onto the schema order and apply transforms."""

        missing = [item.source for item in self.fields if item.source not in raw.columns]
        if missing:
            raise FeatureRegistryError(
                f"Schema '{self.name}' requires columns that were not computed: {', '.join(missing)}."
            )
        assembled = pd.DataFrame(
            {item.name: item.apply(raw[item.source]) for item in self.fields},
            index=raw.index,
        )
        self.validate_width(assembled.shape[1])
        return assembled


class FeatureRegistryError(RuntimeError):
    """Base class for registry related errors."""


class UnknownSchemaError(FeatureRegistryError, KeyError):
    """Raised when a schema name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Unknown feature schema '{name}'. Known schemas: {', '.join(SCHEMA_BLUEPRINT)}."
        )
        self.schema = name

    def __str__(self) -> str:
        return str(self.args[0])


def sanitize_features(values: np.ndarray | pd.DataFrame, *, bound: float = DEFAULT_SANITIZE_BOUND):
    """Replace NaN/inf with 0 and clamp magnitudes to ``bound``.

    The same function runs on the training matrix and on every inference
    vector, so both paths see identical inputs.
    """

    if isinstance(values, pd.DataFrame):
        cleaned = values.astype(float).replace([np.inf, -np.inf], np.nan).fillna(0.0)
        return cleaned.clip(lower=-bound, upper=bound)
    array = np.array(values, dtype=float, copy=True)
    array[~np.isfinite(array)] = 0.0
    return np.clip(array, -bound, bound)


# ---------------------------------------------------------------------------
# Field group builders
# ---------------------------------------------------------------------------


def _prefix(symbol: str) -> str:
    return symbol.strip().title()


def _per_asset(assets: Sequence[str], group: str, suffixes: Iterable[str], *, transform: str = "identity") -> list[FeatureField]:
    fields: list[FeatureField] = []
    suffix_list = list(suffixes)
    for symbol in assets:
        prefix = _prefix(symbol)
        for suffix in suffix_list:
            name = f"{prefix}{suffix}"
            fields.append(FeatureField(name=name, group=group, source=name, transform=transform))
    return fields


def _base_fields(assets: Sequence[str]) -> list[FeatureField]:
    fields: list[FeatureField] = []
    for symbol in assets:
        prefix = _prefix(symbol)
        fields.extend(
            [
                FeatureField(f"{prefix}Return", "returns", f"{prefix}Return", description="One-session close return."),
                FeatureField(f"{prefix}Volatility", "returns", f"{prefix}Volatility", description="(high - low) / close."),
                FeatureField(
                    f"{prefix}Volume",
                    "returns",
                    f"{prefix}Volume",
                    transform="log1p_positive",
                    description="log(1 + volume / mean volume).",
                ),
            ]
        )
    return fields


def _technical_fields(assets: Sequence[str]) -> list[FeatureField]:
    return (
        _per_asset(assets, "moving_average", ("SMA5", "SMA10", "SMA20"))
        + _per_asset(assets, "moving_average", ("EMAR5", "EMAR10", "EMAR20"))
        + _per_asset(assets, "price_position", ("PricePosition",))
        + _per_asset(assets, "rate_of_change", ("ROC5", "ROC10"))
        + _per_asset(assets, "volatility", ("Volatility5", "Volatility10"))
    )


def _temporal_fields(assets: Sequence[str]) -> list[FeatureField]:
    names = [
        "IsMondayEffect",
        "IsTuesdayEffect",
        "IsWednesdayEffect",
        "IsThursdayEffect",
        "IsFridayEffect",
        "IsFirstWeekOfMonth",
        "IsSecondWeekOfMonth",
        "IsThirdWeekOfMonth",
        "IsFourthWeekOfMonth",
        "IsOptionsExpirationWeek",
        "IsJanuaryEffect",
        "IsQuarterStart",
        "IsQuarterEnd",
        "IsYearEnd",
    ]
    fields = [FeatureField(name, "temporal", name) for name in names]
    fields.extend(
        [
            FeatureField("DaysToMarketHoliday", "temporal", "DaysToMarketHoliday", "per_10_capped"),
            FeatureField("DaysFromMarketHoliday", "temporal", "DaysFromMarketHoliday", "per_10_capped"),
            FeatureField("DaysIntoQuarter", "temporal", "DaysIntoQuarter", "per_90_capped"),
            FeatureField("DaysUntilQuarterEnd", "temporal", "DaysUntilQuarterEnd", "per_90_capped"),
            FeatureField("QuarterProgress", "temporal", "QuarterProgress"),
            FeatureField("YearProgress", "temporal", "YearProgress"),
        ]
    )
    return fields


def _extended_fields(assets: Sequence[str]) -> list[FeatureField]:
    *peers, target = assets
    t = _prefix(target)
    fields: list[FeatureField] = []
    for peer in peers:
        name = f"{_prefix(peer)}{t}Correlation"
        fields.append(FeatureField(name, "cross_asset", name))
    fields += _per_asset(assets, "volatility", ("Volatility20",))
    fields += _per_asset(assets, "volatility", ("ATR",))
    fields += _per_asset(assets, "volatility", ("VolatilityRatio",))
    fields += _per_asset(assets, "volatility", ("BBPosition",))

    def target_fields(group: str, suffixes: Sequence[str]) -> list[FeatureField]:
        return [FeatureField(f"{t}{suffix}", group, f"{t}{suffix}") for suffix in suffixes]

    fields += target_fields("oscillators", ("RSI",))
    fields += [FeatureField(f"{_prefix(peer)}RSI", "oscillators", f"{_prefix(peer)}RSI") for peer in peers]
    fields += target_fields("oscillators", ("MACD", "Momentum20"))
    if peers:
        first_peer = _prefix(peers[0])
        fields.append(FeatureField(f"{first_peer}Momentum20", "oscillators", f"{first_peer}Momentum20"))
    fields += target_fields("oscillators", ("Stochastic",))
    fields += target_fields("volume", ("OBV", "VWAP", "VolumeROC", "PVT"))
    fields += target_fields(
        "volatility_regime",
        ("BBSqueeze", "IntradayVolatilityRatio", "TrueRange", "VolBreakout"),
    )

    lag_names = [f"{t}ReturnLag1", f"{t}VolatilityLag1"]
    if peers:
        lag_names.append(f"{_prefix(peers[0])}ReturnLag1")
    lag_names.append(f"{t}ReturnLag2")
    if peers:
        lag_names.append(f"{_prefix(peers[0])}ReturnLag2")
    lag_names.append(f"{t}ReturnLag5")
    if len(peers) > 1:
        lag_names.append(f"{_prefix(peers[1])}ReturnLag5")
    lag_names += [f"{t}SMA5Diff", f"{t}SMA20Diff"]
    fields += [FeatureField(name, "lags", name) for name in lag_names]

    interaction_names = [f"{_prefix(peer)}{t}MomentumRatio" for peer in peers]
    interaction_names.append(f"{t}VolumeVolatilityProduct")
    interaction_names += [f"{t}{_prefix(peer)}PricePositionDiff" for peer in peers]
    interaction_names += [
        f"{t}SMA5SMA20Ratio",
        f"{t}SMA10SMA20Ratio",
        "IsHighVolatilityRegime",
        "IsLowVolumeRegime",
        "IsStrongUptrend",
        "IsStrongDowntrend",
    ]
    fields += [FeatureField(name, "interactions", name) for name in interaction_names]

    fields += [
        FeatureField("MonthProgress", "calendar", "MonthProgress"),
        FeatureField("IsEarningsSeason", "calendar", "IsEarningsSeason"),
        FeatureField("DaysToEarningsWeek", "calendar", "DaysToEarningsWeek"),
        FeatureField("DaysFromEarningsWeek", "calendar", "DaysFromEarningsWeek"),
    ]
    return fields


SCHEMA_BLUEPRINT: Dict[str, dict[str, object]] = {
    "base": {
        "description": "Per-asset return, session volatility and volume.",
        "version": "1.0",
        "builders": (_base_fields,),
    },
    "enhanced": {
        "description": "Base fields plus moving averages, momentum, volatility and calendar flags.",
        "version": "2.0",
        "builders": (_base_fields, _technical_fields, _temporal_fields),
    },
    "extended": {
        "description": "Enhanced fields plus oscillators, volume flow, lags, interactions and earnings calendar.",
        "version": "3.0",
        "builders": (_base_fields, _technical_fields, _temporal_fields, _extended_fields),
    },
}


@lru_cache(maxsize=None)
def get_schema(name: str = "enhanced", assets: tuple[str, ...] = DEFAULT_ASSETS) -> FeatureSchema:
    """Return the registered schema ``name`` for ``assets`` (target symbol last)."""

    key = str(name).strip().lower()
    blueprint = SCHEMA_BLUEPRINT.get(key)
    if blueprint is None:
        raise UnknownSchemaError(name)
    if len(assets) < 1:
        raise FeatureRegistryError("At least one asset symbol is required to build a schema.")
    fields: list[FeatureField] = []
    for builder in blueprint["builders"]:  # type: ignore[union-attr]
        fields.extend(builder(tuple(assets)))
    return FeatureSchema(
        name=key,
        version=str(blueprint["version"]),
        fields=tuple(fields),
        description=str(blueprint.get("description", "")),
    )


def available_schemas() -> tuple[str, ...]:
    return tuple(SCHEMA_BLUEPRINT)


__all__ = [
    "DEFAULT_ASSETS",
    "DEFAULT_SANITIZE_BOUND",
    "FeatureField",
    "FeatureRegistryError",
    "FeatureSchema",
    "SCHEMA_BLUEPRINT",
    "TRANSFORMS",
    "UnknownSchemaError",
    "available_schemas",
    "get_schema",
    "sanitize_features",
]
