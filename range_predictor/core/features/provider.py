"""Build schema-conformant feature vectors from aligned market series."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterator, Mapping, Sequence

import numpy as np
import pandas as pd

from ..indicators import (
    IndicatorInputs,
    average_true_range,
    bollinger_position,
    bollinger_squeeze,
    ema_ratio,
    intraday_volatility,
    intraday_volatility_ratio,
    macd_line,
    normalized_volume,
    on_balance_volume,
    price_momentum,
    price_position,
    price_volume_trend,
    rate_of_change,
    relative_strength_index,
    rolling_difference,
    rolling_return_correlation,
    rolling_return_volatility,
    safe_divide,
    simple_moving_average,
    simple_returns,
    stochastic_oscillator,
    true_range_ratio,
    volatility_breakout,
    volatility_ratio,
    volume_rate_of_change,
    volume_weighted_average_price,
)
from ..modeling.exceptions import InsufficientSamplesError, MissingSeriesError
from .feature_registry import (
    DEFAULT_ASSETS,
    DEFAULT_SANITIZE_BOUND,
    FeatureSchema,
    get_schema,
    sanitize_features,
)
from .temporal import MarketCalendar

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..config import FeatureSettings

LOGGER = logging.getLogger(__name__)

PRICE_COLUMNS = ("Open", "High", "Low", "Close", "Volume")
TARGET_COLUMNS = ("Low", "High")
CONTEXT_COLUMNS = ("Volatility10", "ROC10", "Volume", "Volatility", "RSI")

HIGH_VOLATILITY_REGIME = 0.025
LOW_VOLUME_REGIME = 0.8
STRONG_TREND = 0.02


# ---------------------------------------------------------------------------
# Sample containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Sample:
    """One dated feature vector together with its targets and regime context."""

    date: pd.Timestamp
    features: np.ndarray
    low: float
    high: float
    context: Mapping[str, float] = field(default_factory=dict)

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2.0


@dataclass(frozen=True)
class SampleSet:
    """Ordered collection of samples sharing a single feature schema."""

    schema: FeatureSchema
    features: pd.DataFrame
    targets: pd.DataFrame
    context: pd.DataFrame

    def __post_init__(self) -> None:
        self.schema.validate_width(self.features.shape[1])
        if len(self.features) != len(self.targets) or len(self.features) != len(self.context):
            raise ValueError("Features, targets and context must have the same number of rows.")
        missing_targets = [column for column in TARGET_COLUMNS if column not in self.targets.columns]
        if missing_targets:
            raise ValueError(f"Targets are missing columns: {', '.join(missing_targets)}.")

    @classmethod
    def from_arrays(
        cls,
        schema: FeatureSchema,
        features: np.ndarray,
        low: Sequence[float],
        high: Sequence[float],
        *,
        dates: Sequence | pd.DatetimeIndex | None = None,
        context: pd.DataFrame | Mapping[str, Sequence[float]] | None = None,
    ) -> "SampleSet":
        matrix = np.asarray(features, dtype=float)
        if matrix.ndim != 2:
            raise ValueError("features must be a two dimensional array.")
        schema.validate_width(matrix.shape[1])
        if dates is None:
            index = pd.RangeIndex(matrix.shape[0], name="Date")
        else:
            index = pd.DatetimeIndex(pd.to_datetime(list(dates)), name="Date")
        frame = pd.DataFrame(matrix, index=index, columns=list(schema.names))
        targets = pd.DataFrame({"Low": np.asarray(low, dtype=float), "High": np.asarray(high, dtype=float)}, index=index)
        if isinstance(context, pd.DataFrame):
            context_frame = context.reset_index(drop=True).set_axis(index)
        else:
            context_frame = pd.DataFrame(dict(context or {}), index=index)
        for column in CONTEXT_COLUMNS:
            if column not in context_frame.columns:
                context_frame[column] = 0.0
        return cls(schema=schema, features=frame, targets=targets, context=context_frame)

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[Sample]:
        for position in range(len(self)):
            yield self._sample_at(position)

    def __getitem__(self, item: int | slice | Sequence[int]) -> "Sample | SampleSet":
        if isinstance(item, (int, np.integer)):
            position = int(item)
            if position < 0:
                position += len(self)
            if not 0 <= position < len(self):
                raise IndexError("Sample index out of range.")
            return self._sample_at(position)
        if isinstance(item, slice):
            return self._take(item)
        return self.take(item)

    def take(self, positions: Sequence[int]) -> "SampleSet":
        return self._take(np.asarray(list(positions), dtype=int))

    def _take(self, selector) -> "SampleSet":
        return SampleSet(
            schema=self.schema,
            features=self.features.iloc[selector],
            targets=self.targets.iloc[selector],
            context=self.context.iloc[selector],
        )

    def _sample_at(self, position: int) -> Sample:
        vector = self.features.iloc[position].to_numpy(dtype=float, copy=True)
        vector.setflags(write=False)
        targets = self.targets.iloc[position]
        context = {key: float(value) for key, value in self.context.iloc[position].items()}
        return Sample(
            date=self.features.index[position],
            features=vector,
            low=float(targets["Low"]),
            high=float(targets["High"]),
            context=MappingProxyType(context),
        )

    # ------------------------------------------------------------------
    # Array views
    # ------------------------------------------------------------------
    @property
    def X(self) -> np.ndarray:
        return self.features.to_numpy(dtype=float)

    @property
    def y_low(self) -> np.ndarray:
        return self.targets["Low"].to_numpy(dtype=float)

    @property
    def y_high(self) -> np.ndarray:
        return self.targets["High"].to_numpy(dtype=float)

    @property
    def dates(self) -> pd.Index:
        return self.features.index

    def context_column(self, name: str, default: float = 0.0) -> np.ndarray:
        if name not in self.context.columns:
            return np.full(len(self), default, dtype=float)
        return self.context[name].to_numpy(dtype=float)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


def prepare_price_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Return ``frame`` indexed by date, sorted, de-duplicated and numeric."""

    prepared = frame.copy()
    if "Date" in prepared.columns:
        prepared = prepared.set_index("Date")
    prepared.index = pd.DatetimeIndex(pd.to_datetime(prepared.index), name="Date")
    missing = [column for column in PRICE_COLUMNS if column not in prepared.columns and column != "Open"]
    if missing:
        raise ValueError(f"Price frame is missing columns: {', '.join(missing)}.")
    prepared = prepared[~prepared.index.duplicated(keep="last")].sort_index()
    columns = [column for column in PRICE_COLUMNS if column in prepared.columns]
    return prepared[columns].apply(pd.to_numeric, errors="coerce").astype(float)


class FeatureVectorProvider:
    """Turn per-symbol OHLCV frames into a :class:`SampleSet`.

    Only dates present in every series are kept and the first common date is
    dropped because it has no prior close. Volume is normalised against the
    full series of each symbol before alignment.
    """

    def __init__(
        self,
        schema: FeatureSchema | str = "enhanced",
        *,
        symbols: Sequence[str] = DEFAULT_ASSETS,
        target_symbol: str | None = None,
        calendar: MarketCalendar | None = None,
        correlation_window: int = 10,
        sanitize_bound: float = DEFAULT_SANITIZE_BOUND,
        target_offset: int = 0,
    ) -> None:
        symbols = tuple(str(symbol).upper() for symbol in symbols)
        target = (target_symbol or symbols[-1]).upper()
        if target not in symbols:
            raise ValueError(f"Target symbol '{target}' must be one of {symbols}.")
        self.target_symbol = target
        self.symbols = tuple(symbol for symbol in symbols if symbol != target) + (target,)
        self.schema = schema if isinstance(schema, FeatureSchema) else get_schema(schema, self.symbols)
        self.calendar = calendar or MarketCalendar()
        self.correlation_window = int(correlation_window)
        self.sanitize_bound = float(sanitize_bound)
        if target_offset < 0:
            raise ValueError("target_offset must be non-negative.")
        self.target_offset = int(target_offset)

    @classmethod
    def from_settings(cls, settings: "FeatureSettings") -> "FeatureVectorProvider":
        calendar = MarketCalendar(
            holidays=settings.market_holidays or None,
            earnings_season_starts=settings.earnings_season_starts,
            earnings_window_days=settings.earnings_window_days,
            holiday_cap_days=settings.holiday_cap_days,
            earnings_cap_days=settings.earnings_cap_days,
        )
        return cls(
            settings.schema,
            symbols=settings.symbols,
            target_symbol=settings.target_symbol,
            calendar=calendar,
            correlation_window=settings.correlation_window,
            sanitize_bound=settings.sanitize_bound,
            target_offset=settings.target_offset,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build(self, frames: Mapping[str, pd.DataFrame]) -> SampleSet:
        """Return the aligned, sanitised :class:`SampleSet` for ``frames``."""

        raw, prices = self.compute_raw_features(frames)
        target_prices = prices[self.target_symbol].loc[raw.index, list(TARGET_COLUMNS)]
        if self.target_offset:
            target_prices = target_prices.shift(-self.target_offset)
            keep = target_prices.notna().all(axis=1)
            raw = raw.loc[keep]
            target_prices = target_prices.loc[keep]

        samples = self._sample_set(raw, target_prices)
        LOGGER.info(
            "Built %d samples with schema %s (%d features)",
            len(samples),
            self.schema.key,
            len(self.schema),
        )
        return samples

    def build_latest(self, frames: Mapping[str, pd.DataFrame]) -> SampleSet:
        """Return the final session as a one-row set with unknown targets.

        Only meaningful with a positive ``target_offset``; otherwise the final
        session is already labelled and part of :meth:`build`.
        """

        raw, _ = self.compute_raw_features(frames)
        raw = raw.iloc[-1:]
        targets = pd.DataFrame(np.nan, index=raw.index, columns=list(TARGET_COLUMNS))
        return self._sample_set(raw, targets)

    def _sample_set(self, raw: pd.DataFrame, targets: pd.DataFrame) -> SampleSet:
        features = sanitize_features(self.schema.assemble(raw), bound=self.sanitize_bound)
        self.schema.validate_width(features.shape[1])
        context = raw[[self._target_column(name) for name in CONTEXT_COLUMNS]].copy()
        context.columns = list(CONTEXT_COLUMNS)
        return SampleSet(
            schema=self.schema,
            features=features,
            targets=targets.astype(float),
            context=context.astype(float),
        )

    def compute_raw_features(
        self, frames: Mapping[str, pd.DataFrame]
    ) -> tuple[pd.DataFrame, dict[str, pd.DataFrame]]:
        """Return every raw feature column plus the aligned price frames."""

        frames = {str(symbol).upper(): frame for symbol, frame in frames.items()}
        missing = [
            symbol for symbol in self.symbols if symbol not in frames or frames[symbol] is None
        ]
        if missing:
            raise MissingSeriesError(missing)

        prepared: dict[str, pd.DataFrame] = {}
        for symbol in self.symbols:
            frame = prepare_price_frame(frames[symbol])
            frame["VolumeNormalized"] = normalized_volume(frame["Volume"])
            prepared[symbol] = frame

        common = prepared[self.symbols[0]].index
        for symbol in self.symbols[1:]:
            common = common.intersection(prepared[symbol].index)
        common = common.sort_values()
        if len(common) < 2:
            raise InsufficientSamplesError(required=2, available=len(common), component="features")
        aligned = {symbol: frame.loc[common] for symbol, frame in prepared.items()}

        columns: dict[str, pd.Series] = {}
        for symbol, frame in aligned.items():
            columns.update(self._asset_columns(_prefix(symbol), frame))
        target = _prefix(self.target_symbol)
        for symbol in self.symbols[:-1]:
            peer = _prefix(symbol)
            columns[f"{peer}{target}Correlation"] = rolling_return_correlation(
                aligned[symbol]["Close"],
                aligned[self.target_symbol]["Close"],
                window=self.correlation_window,
            )

        raw = pd.DataFrame(columns, index=common).iloc[1:].copy()
        raw = pd.concat([raw, self._lag_columns(raw), self._interaction_columns(raw)], axis=1)
        raw = pd.concat([raw, self.calendar.features(raw.index).set_axis(raw.index)], axis=1)
        return raw, aligned

    # ------------------------------------------------------------------
    # Column builders
    # ------------------------------------------------------------------
    def _target_column(self, name: str) -> str:
        return f"{_prefix(self.target_symbol)}{name}"

    @staticmethod
    def _asset_columns(prefix: str, frame: pd.DataFrame) -> dict[str, pd.Series]:
        inputs = IndicatorInputs.from_frame(frame)
        close = inputs.close
        returns = simple_returns(close).fillna(0.0)
        columns: dict[str, pd.Series] = {
            f"{prefix}Return": returns,
            f"{prefix}Volatility": intraday_volatility(inputs),
            f"{prefix}Volume": frame["VolumeNormalized"],
        }
        for period in (5, 10, 20):
            columns[f"{prefix}SMA{period}"] = simple_moving_average(close, period=period)
        for span in (5, 10, 20):
            columns[f"{prefix}EMAR{span}"] = ema_ratio(close, span=span)
        columns[f"{prefix}PricePosition"] = price_position(close, period=20)
        for period in (5, 10):
            columns[f"{prefix}ROC{period}"] = rate_of_change(close, period=period)
        for window in (5, 10, 20):
            columns[f"{prefix}Volatility{window}"] = rolling_return_volatility(close, window=window)
        columns[f"{prefix}ATR"] = average_true_range(inputs, period=14)
        columns[f"{prefix}VolatilityRatio"] = volatility_ratio(close, window=20, long_window=50)
        columns[f"{prefix}BBPosition"] = bollinger_position(close, period=20)
        columns[f"{prefix}RSI"] = relative_strength_index(close, period=14)
        columns[f"{prefix}MACD"] = macd_line(close)
        columns[f"{prefix}Momentum20"] = price_momentum(close, period=20)
        columns[f"{prefix}Stochastic"] = stochastic_oscillator(inputs, period=14)
        columns[f"{prefix}OBV"] = on_balance_volume(close, inputs.volume, period=20)
        columns[f"{prefix}VWAP"] = volume_weighted_average_price(inputs, period=20)
        columns[f"{prefix}VolumeROC"] = volume_rate_of_change(inputs.volume, period=10)
        columns[f"{prefix}PVT"] = price_volume_trend(close, inputs.volume, period=20)
        columns[f"{prefix}BBSqueeze"] = bollinger_squeeze(close, period=20)
        columns[f"{prefix}IntradayVolatilityRatio"] = intraday_volatility_ratio(inputs)
        columns[f"{prefix}TrueRange"] = true_range_ratio(inputs)
        columns[f"{prefix}VolBreakout"] = volatility_breakout(inputs, period=20)
        return columns

    def _lag_columns(self, raw: pd.DataFrame) -> pd.DataFrame:
        target = _prefix(self.target_symbol)
        peers = [_prefix(symbol) for symbol in self.symbols[:-1]]
        lags: dict[str, pd.Series] = {}

        def lag(column: str, periods: int) -> pd.Series:
            return raw[column].shift(periods).fillna(0.0)

        lags[f"{target}ReturnLag1"] = lag(f"{target}Return", 1)
        lags[f"{target}VolatilityLag1"] = lag(f"{target}Volatility", 1)
        lags[f"{target}ReturnLag2"] = lag(f"{target}Return", 2)
        lags[f"{target}ReturnLag5"] = lag(f"{target}Return", 5)
        if peers:
            lags[f"{peers[0]}ReturnLag1"] = lag(f"{peers[0]}Return", 1)
            lags[f"{peers[0]}ReturnLag2"] = lag(f"{peers[0]}Return", 2)
        if len(peers) > 1:
            lags[f"{peers[1]}ReturnLag5"] = lag(f"{peers[1]}Return", 5)
        lags[f"{target}SMA5Diff"] = rolling_difference(raw[f"{target}SMA5"], periods=10)
        lags[f"{target}SMA20Diff"] = rolling_difference(raw[f"{target}SMA20"], periods=10)
        return pd.DataFrame(lags, index=raw.index)

    def _interaction_columns(self, raw: pd.DataFrame) -> pd.DataFrame:
        t = _prefix(self.target_symbol)
        peers = [_prefix(symbol) for symbol in self.symbols[:-1]]
        result: dict[str, pd.Series] = {}
        for peer in peers:
            result[f"{peer}{t}MomentumRatio"] = safe_divide(raw[f"{peer}ROC10"], raw[f"{t}ROC10"])
        result[f"{t}VolumeVolatilityProduct"] = raw[f"{t}Volume"] * raw[f"{t}Volatility"]
        for peer in peers:
            result[f"{t}{peer}PricePositionDiff"] = raw[f"{t}PricePosition"] - raw[f"{peer}PricePosition"]
        result[f"{t}SMA5SMA20Ratio"] = safe_divide(raw[f"{t}SMA5"], raw[f"{t}SMA20"])
        result[f"{t}SMA10SMA20Ratio"] = safe_divide(raw[f"{t}SMA10"], raw[f"{t}SMA20"])
        result["IsHighVolatilityRegime"] = (raw[f"{t}Volatility20"] > HIGH_VOLATILITY_REGIME).astype(float)
        result["IsLowVolumeRegime"] = (raw[f"{t}Volume"] < LOW_VOLUME_REGIME).astype(float)
        result["IsStrongUptrend"] = (raw[f"{t}ROC10"] > STRONG_TREND).astype(float)
        result["IsStrongDowntrend"] = (raw[f"{t}ROC10"] < -STRONG_TREND).astype(float)
        return pd.DataFrame(result, index=raw.index)


def _prefix(symbol: str) -> str:
    return symbol.strip().title()


__all__ = [
    "CONTEXT_COLUMNS",
    "FeatureVectorProvider",
    "Sample",
    "SampleSet",
    "TARGET_COLUMNS",
    "prepare_price_frame",
]
