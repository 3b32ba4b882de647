"""Configuration utilities for the range predictor package."""

from __future__ import annotations

import json
import math
import os
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from dotenv import load_dotenv

from .features.temporal import EARNINGS_SEASON_STARTS, parse_month_day

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_MODELS_DIR = PROJECT_ROOT / "models"

ENV_PREFIX = "RANGE_PREDICTOR_"

SCHEMA_NAMES: tuple[str, ...] = ("base", "enhanced", "extended")
ENSEMBLE_STRATEGIES: tuple[str, ...] = ("regime", "stacking")
MODEL_KINDS: tuple[str, ...] = ("ensemble", "bayesian", "lightgbm", "stacking")

DEFAULT_SYMBOLS: tuple[str, ...] = ("DOW", "QQQ", "MSFT")
DEFAULT_TARGET_SYMBOL = "MSFT"


# ---------------------------------------------------------------------------
# Mapping coercion helpers
# ---------------------------------------------------------------------------


def _coerce_bool(value: Optional[object], *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "y", "on"}:
            return True
        if normalized in {"false", "0", "no", "n", "off"}:
            return False
    return bool(value)


def _coerce_float(payload: Mapping[str, Any], key: str, default: float) -> float:
    try:
        value = float(payload.get(key, default))
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def _coerce_int(payload: Mapping[str, Any], key: str, default: int) -> int:
    try:
        return int(payload.get(key, default))
    except (TypeError, ValueError):
        return default


def _coerce_iterable(
    value: Optional[Iterable[str] | str], default: Sequence[str]
) -> tuple[str, ...]:
    if value is None:
        return tuple(default)
    if isinstance(value, str):
        candidates = [part.strip() for part in value.split(",")]
    else:
        candidates = [str(item).strip() for item in value]
    return tuple(filter(None, candidates)) or tuple(default)


def _coerce_dates(value: Optional[Iterable[Any] | str], default: Sequence[date]) -> tuple[date, ...]:
    if value is None:
        return tuple(default)
    tokens = _coerce_iterable(value, ()) if isinstance(value, str) else list(value)
    parsed: list[date] = []
    for token in tokens:
        if isinstance(token, date):
            parsed.append(token)
            continue
        try:
            parsed.append(date.fromisoformat(str(token).strip()))
        except ValueError as exc:
            raise ValueError(f"Invalid market holiday '{token}'; expected YYYY-MM-DD.") from exc
    return tuple(sorted(set(parsed)))


# ---------------------------------------------------------------------------
# Settings sections
# ---------------------------------------------------------------------------


@dataclass
class FeatureSettings:
    """Feature schema, symbol universe and calendar configuration."""

    schema: str = "enhanced"
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS
    target_symbol: str = DEFAULT_TARGET_SYMBOL
    target_offset: int = 0
    correlation_window: int = 10
    sanitize_bound: float = 1000.0
    holiday_cap_days: int = 10
    earnings_cap_days: int = 30
    earnings_window_days: int = 21
    market_holidays: tuple[date, ...] = ()
    earnings_season_starts: tuple[tuple[int, int], ...] = EARNINGS_SEASON_STARTS

    def __post_init__(self) -> None:
        self.schema = str(self.schema).strip().lower()
        if self.schema not in SCHEMA_NAMES:
            raise ValueError(f"schema must be one of {', '.join(SCHEMA_NAMES)}.")
        self.symbols = tuple(symbol.upper() for symbol in _coerce_iterable(self.symbols, DEFAULT_SYMBOLS))
        self.target_symbol = str(self.target_symbol).strip().upper()
        if self.target_symbol not in self.symbols:
            raise ValueError("target_symbol must be one of the configured symbols.")
        if len(set(self.symbols)) != len(self.symbols):
            raise ValueError("symbols must be unique.")
        self.target_offset = int(self.target_offset)
        if self.target_offset < 0:
            raise ValueError("target_offset must be non-negative.")
        if self.correlation_window <= 1:
            raise ValueError("correlation_window must be greater than 1.")
        if self.sanitize_bound <= 0:
            raise ValueError("sanitize_bound must be positive.")
        if self.holiday_cap_days <= 0 or self.earnings_cap_days <= 0:
            raise ValueError("Calendar caps must be positive.")
        if self.earnings_window_days < 0:
            raise ValueError("earnings_window_days must be non-negative.")
        self.market_holidays = _coerce_dates(self.market_holidays, ())
        self.earnings_season_starts = parse_month_day(self.earnings_season_starts)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "FeatureSettings":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            schema=str(payload.get("schema", "enhanced")),
            symbols=_coerce_iterable(payload.get("symbols"), DEFAULT_SYMBOLS),
            target_symbol=str(payload.get("target_symbol", DEFAULT_TARGET_SYMBOL)),
            target_offset=_coerce_int(payload, "target_offset", 0),
            correlation_window=_coerce_int(payload, "correlation_window", 10),
            sanitize_bound=_coerce_float(payload, "sanitize_bound", 1000.0),
            holiday_cap_days=_coerce_int(payload, "holiday_cap_days", 10),
            earnings_cap_days=_coerce_int(payload, "earnings_cap_days", 30),
            earnings_window_days=_coerce_int(payload, "earnings_window_days", 21),
            market_holidays=_coerce_dates(payload.get("market_holidays"), ()),
            earnings_season_starts=parse_month_day(
                payload.get("earnings_season_starts") or EARNINGS_SEASON_STARTS
            ),
        )


@dataclass
class CalibrationSettings:
    """Variational inference and hold-out calibration parameters."""

    holdout_fraction: float = 0.2
    min_holdout: int = 5
    clip: float = 3.0
    max_iterations: int = 100
    tolerance: float = 1e-6
    min_samples: int = 10
    bias_prior_variance: float = 0.1
    enabled: bool = False

    def __post_init__(self) -> None:
        if not 0 < self.holdout_fraction < 1:
            raise ValueError("holdout_fraction must be between 0 and 1.")
        if self.min_holdout < 1:
            raise ValueError("min_holdout must be at least 1.")
        if self.clip <= 0:
            raise ValueError("clip must be positive.")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1.")
        if self.tolerance <= 0:
            raise ValueError("tolerance must be positive.")
        if self.min_samples < 2:
            raise ValueError("min_samples must be at least 2.")
        if self.bias_prior_variance <= 0:
            raise ValueError("bias_prior_variance must be positive.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "CalibrationSettings":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            holdout_fraction=_coerce_float(payload, "holdout_fraction", 0.2),
            min_holdout=_coerce_int(payload, "min_holdout", 5),
            clip=_coerce_float(payload, "clip", 3.0),
            max_iterations=_coerce_int(payload, "max_iterations", 100),
            tolerance=_coerce_float(payload, "tolerance", 1e-6),
            min_samples=_coerce_int(payload, "min_samples", 10),
            bias_prior_variance=_coerce_float(payload, "bias_prior_variance", 0.1),
            enabled=_coerce_bool(payload.get("enabled"), default=False),
        )


@dataclass(frozen=True)
class TreeModelParams:
    """LightGBM hyperparameters for a single target."""

    num_leaves: int
    min_child_samples: int
    learning_rate: float
    n_estimators: int
    early_stopping_rounds: int

    def __post_init__(self) -> None:
        if self.num_leaves < 2:
            raise ValueError("num_leaves must be at least 2.")
        if self.min_child_samples < 1:
            raise ValueError("min_child_samples must be positive.")
        if not 0 < self.learning_rate <= 1:
            raise ValueError("learning_rate must be in (0, 1].")
        if self.n_estimators < 1 or self.early_stopping_rounds < 1:
            raise ValueError("n_estimators and early_stopping_rounds must be positive.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None, default: "TreeModelParams") -> "TreeModelParams":
        if not isinstance(payload, Mapping):
            return default
        return cls(
            num_leaves=_coerce_int(payload, "num_leaves", default.num_leaves),
            min_child_samples=_coerce_int(payload, "min_child_samples", default.min_child_samples),
            learning_rate=_coerce_float(payload, "learning_rate", default.learning_rate),
            n_estimators=_coerce_int(payload, "n_estimators", default.n_estimators),
            early_stopping_rounds=_coerce_int(
                payload, "early_stopping_rounds", default.early_stopping_rounds
            ),
        )


LOW_TREE_PARAMS = TreeModelParams(64, 10, 0.04, 200, 20)
HIGH_TREE_PARAMS = TreeModelParams(64, 8, 0.04, 200, 20)
RANGE_TREE_PARAMS = TreeModelParams(32, 15, 0.1, 150, 15)


@dataclass
class TreeEnsembleSettings:
    """Per-target LightGBM settings plus the shared seed."""

    low: TreeModelParams = LOW_TREE_PARAMS
    high: TreeModelParams = HIGH_TREE_PARAMS
    range: TreeModelParams = RANGE_TREE_PARAMS
    seed: int = 0
    early_stopping_fraction: float = 0.1
    min_samples: int = 10
    n_jobs: int = 1

    def __post_init__(self) -> None:
        self.seed = int(self.seed)
        if not 0 <= self.early_stopping_fraction < 1:
            raise ValueError("early_stopping_fraction must be in [0, 1).")
        if self.min_samples < 2:
            raise ValueError("min_samples must be at least 2.")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero.")

    def params_for(self, target: str) -> TreeModelParams:
        return {"low": self.low, "high": self.high, "range": self.range}[target]

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "TreeEnsembleSettings":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            low=TreeModelParams.from_mapping(payload.get("low"), LOW_TREE_PARAMS),
            high=TreeModelParams.from_mapping(payload.get("high"), HIGH_TREE_PARAMS),
            range=TreeModelParams.from_mapping(payload.get("range"), RANGE_TREE_PARAMS),
            seed=_coerce_int(payload, "seed", 0),
            early_stopping_fraction=_coerce_float(payload, "early_stopping_fraction", 0.1),
            min_samples=_coerce_int(payload, "min_samples", 10),
            n_jobs=_coerce_int(payload, "n_jobs", 1),
        )


@dataclass
class RegimeThresholds:
    """Thresholds and weight multipliers driving regime-aware blending."""

    volatility: float = 0.03
    momentum: float = 0.02
    volume: float = 1.5
    volatility_bayes: float = 1.2
    volatility_tree: float = 0.9
    trend_bayes: float = 0.9
    trend_tree: float = 1.1

    def __post_init__(self) -> None:
        if self.volatility <= 0 or self.momentum <= 0 or self.volume <= 0:
            raise ValueError("Regime thresholds must be positive.")
        multipliers = (self.volatility_bayes, self.volatility_tree, self.trend_bayes, self.trend_tree)
        if any(value <= 0 for value in multipliers):
            raise ValueError("Regime multipliers must be positive.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "RegimeThresholds":
        if not isinstance(payload, Mapping):
            return cls()
        defaults = cls()
        return cls(**{key: _coerce_float(payload, key, value) for key, value in asdict(defaults).items()})


@dataclass
class EnsembleSettings:
    """Weight bounds, reconciliation and adaptive update configuration."""

    strategy: str = "regime"
    min_weight: float = 0.1
    max_weight: float = 0.8
    validation_fraction: float = 0.2
    min_validation_samples: int = 5
    range_trigger: float = 0.2
    range_adjustment: float = 0.1
    min_gap: float = 0.01
    performance_window: int = 20
    update_frequency: int = 5
    update_rate: float = 0.05
    stacking_folds: int = 5
    min_samples: int = 20
    regimes: RegimeThresholds = field(default_factory=RegimeThresholds)

    def __post_init__(self) -> None:
        self.strategy = str(self.strategy).strip().lower()
        if self.strategy not in ENSEMBLE_STRATEGIES:
            raise ValueError(f"strategy must be one of {', '.join(ENSEMBLE_STRATEGIES)}.")
        if not 0 < self.min_weight < 1 or not 0 < self.max_weight < 1:
            raise ValueError("min_weight and max_weight must lie in (0, 1).")
        if self.min_weight > self.max_weight:
            raise ValueError("min_weight must not exceed max_weight.")
        if not self.min_weight <= 0.5 <= self.max_weight:
            raise ValueError("min_weight must be <= 0.5 <= max_weight for paired weights to sum to 1.")
        if not 0 < self.validation_fraction < 1:
            raise ValueError("validation_fraction must be between 0 and 1.")
        if self.range_trigger < 0 or not 0 <= self.range_adjustment <= 1:
            raise ValueError("range_trigger must be >= 0 and range_adjustment in [0, 1].")
        if self.min_gap <= 0:
            raise ValueError("min_gap must be positive.")
        if self.performance_window < 1 or self.update_frequency < 1:
            raise ValueError("performance_window and update_frequency must be positive.")
        if not 0 <= self.update_rate <= 1:
            raise ValueError("update_rate must be in [0, 1].")
        if self.stacking_folds < 2:
            raise ValueError("stacking_folds must be at least 2.")
        if self.min_samples < 2:
            raise ValueError("min_samples must be at least 2.")
        if isinstance(self.regimes, Mapping):
            self.regimes = RegimeThresholds.from_mapping(self.regimes)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "EnsembleSettings":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            strategy=str(payload.get("strategy", "regime")),
            min_weight=_coerce_float(payload, "min_weight", 0.1),
            max_weight=_coerce_float(payload, "max_weight", 0.8),
            validation_fraction=_coerce_float(payload, "validation_fraction", 0.2),
            min_validation_samples=_coerce_int(payload, "min_validation_samples", 5),
            range_trigger=_coerce_float(payload, "range_trigger", 0.2),
            range_adjustment=_coerce_float(payload, "range_adjustment", 0.1),
            min_gap=_coerce_float(payload, "min_gap", 0.01),
            performance_window=_coerce_int(payload, "performance_window", 20),
            update_frequency=_coerce_int(payload, "update_frequency", 5),
            update_rate=_coerce_float(payload, "update_rate", 0.05),
            stacking_folds=_coerce_int(payload, "stacking_folds", 5),
            min_samples=_coerce_int(payload, "min_samples", 20),
            regimes=RegimeThresholds.from_mapping(payload.get("regimes")),
        )


@dataclass
class WalkForwardSettings:
    """Expanding-window validation layout."""

    initial_train_size: int = 50
    validation_window: int = 10
    step_size: int = 5
    model: str = "ensemble"

    def __post_init__(self) -> None:
        if self.initial_train_size <= 0:
            raise ValueError("initial_train_size must be positive.")
        if self.validation_window <= 0:
            raise ValueError("validation_window must be positive.")
        if self.step_size <= 0:
            raise ValueError("step_size must be positive.")
        self.model = str(self.model).strip().lower()
        if self.model not in MODEL_KINDS:
            raise ValueError(f"model must be one of {', '.join(MODEL_KINDS)}.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "WalkForwardSettings":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            initial_train_size=_coerce_int(payload, "initial_train_size", 50),
            validation_window=_coerce_int(payload, "validation_window", 10),
            step_size=_coerce_int(payload, "step_size", 5),
            model=str(payload.get("model", "ensemble")),
        )


@dataclass
class RangePredictorConfig:
    """Runtime configuration for the low/high range prediction pipeline."""

    data_dir: Path = DEFAULT_DATA_DIR
    models_dir: Path = DEFAULT_MODELS_DIR
    features: FeatureSettings = field(default_factory=FeatureSettings)
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    trees: TreeEnsembleSettings = field(default_factory=TreeEnsembleSettings)
    ensemble: EnsembleSettings = field(default_factory=EnsembleSettings)
    walk_forward: WalkForwardSettings = field(default_factory=WalkForwardSettings)

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        self.models_dir = Path(self.models_dir).expanduser()
        sections = (
            ("features", FeatureSettings),
            ("calibration", CalibrationSettings),
            ("trees", TreeEnsembleSettings),
            ("ensemble", EnsembleSettings),
            ("walk_forward", WalkForwardSettings),
        )
        for name, section_type in sections:
            value = getattr(self, name)
            if isinstance(value, Mapping):
                setattr(self, name, section_type.from_mapping(value))
            elif not isinstance(value, section_type):
                raise TypeError(f"{name} must be a {section_type.__name__} or a mapping.")

    @property
    def seed(self) -> int:
        return self.trees.seed

    def ensure_directories(self) -> None:
        """Ensure that data and model directories exist."""

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.models_dir.mkdir(parents=True, exist_ok=True)

    def price_path_for(self, symbol: str) -> Path:
        return self.data_dir / f"{symbol.upper()}.csv"

    @property
    def ensemble_path(self) -> Path:
        return self.models_dir / f"{self.features.target_symbol.lower()}_{self.features.schema}_ensemble.joblib"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["data_dir"] = str(self.data_dir)
        payload["models_dir"] = str(self.models_dir)
        payload["features"]["market_holidays"] = [day.isoformat() for day in self.features.market_holidays]
        payload["features"]["earnings_season_starts"] = [
            f"{month:02d}-{day:02d}" for month, day in self.features.earnings_season_starts
        ]
        return payload


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def load_environment() -> None:
    """Load environment variables from a ``.env`` file if present."""

    load_dotenv()


def _env(name: str) -> Optional[str]:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


def build_config(
    *,
    data_dir: Optional[str | Path] = None,
    models_dir: Optional[str | Path] = None,
    schema: Optional[str] = None,
    symbols: Optional[Iterable[str] | str] = None,
    target_symbol: Optional[str] = None,
    target_offset: Optional[int] = None,
    seed: Optional[int] = None,
    model: Optional[str] = None,
    strategy: Optional[str] = None,
    initial_train_size: Optional[int] = None,
    validation_window: Optional[int] = None,
    step_size: Optional[int] = None,
    market_holidays: Optional[Iterable[Any] | str] = None,
) -> RangePredictorConfig:
    """Build a :class:`RangePredictorConfig` from overrides and ``RANGE_PREDICTOR_*`` variables.

    Explicit arguments win over environment variables, which win over the
    dataclass defaults.
    """

    def pick(value: Any, env_name: str) -> Any:
        return value if value is not None else _env(env_name)

    feature_payload: dict[str, Any] = {}
    for key, value in (
        ("schema", pick(schema, "SCHEMA")),
        ("symbols", pick(symbols, "SYMBOLS")),
        ("target_symbol", pick(target_symbol, "TARGET_SYMBOL")),
        ("target_offset", pick(target_offset, "TARGET_OFFSET")),
        ("market_holidays", pick(market_holidays, "MARKET_HOLIDAYS")),
    ):
        if value is not None:
            feature_payload[key] = value

    tree_payload: dict[str, Any] = {}
    seed_value = pick(seed, "SEED")
    if seed_value is not None:
        tree_payload["seed"] = seed_value

    ensemble_payload: dict[str, Any] = {}
    strategy_value = pick(strategy, "ENSEMBLE_STRATEGY")
    if strategy_value is not None:
        ensemble_payload["strategy"] = strategy_value

    walk_payload: dict[str, Any] = {}
    for key, value in (
        ("initial_train_size", pick(initial_train_size, "INITIAL_TRAIN_SIZE")),
        ("validation_window", pick(validation_window, "VALIDATION_WINDOW")),
        ("step_size", pick(step_size, "STEP_SIZE")),
        ("model", pick(model, "MODEL")),
    ):
        if value is not None:
            walk_payload[key] = value

    return RangePredictorConfig(
        data_dir=Path(pick(data_dir, "DATA_DIR") or DEFAULT_DATA_DIR),
        models_dir=Path(pick(models_dir, "MODELS_DIR") or DEFAULT_MODELS_DIR),
        features=FeatureSettings.from_mapping(feature_payload),
        trees=TreeEnsembleSettings.from_mapping(tree_payload),
        ensemble=EnsembleSettings.from_mapping(ensemble_payload),
        walk_forward=WalkForwardSettings.from_mapping(walk_payload),
    )


def load_config_from_mapping(payload: Mapping[str, Any]) -> RangePredictorConfig:
    """Create a configuration from a nested mapping such as a parsed JSON file."""

    if not isinstance(payload, Mapping):
        raise TypeError("Configuration payload must be a mapping.")
    data = dict(payload)
    return RangePredictorConfig(
        data_dir=Path(data.get("data_dir") or DEFAULT_DATA_DIR),
        models_dir=Path(data.get("models_dir") or DEFAULT_MODELS_DIR),
        features=FeatureSettings.from_mapping(data.get("features")),
        calibration=CalibrationSettings.from_mapping(data.get("calibration")),
        trees=TreeEnsembleSettings.from_mapping(data.get("trees")),
        ensemble=EnsembleSettings.from_mapping(data.get("ensemble")),
        walk_forward=WalkForwardSettings.from_mapping(data.get("walk_forward")),
    )


def load_config_from_file(path: str | Path) -> RangePredictorConfig:
    """Load configuration from a JSON file."""

    resolved = Path(path).expanduser().resolve()
    with resolved.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, Mapping):
        raise TypeError("Configuration file must define a mapping of values.")
    return load_config_from_mapping(payload)


__all__ = [
    "CalibrationSettings",
    "DEFAULT_DATA_DIR",
    "DEFAULT_MODELS_DIR",
    "EnsembleSettings",
    "FeatureSettings",
    "MODEL_KINDS",
    "RangePredictorConfig",
    "RegimeThresholds",
    "SCHEMA_NAMES",
    "TreeEnsembleSettings",
    "TreeModelParams",
    "WalkForwardSettings",
    "build_config",
    "load_config_from_file",
    "load_config_from_mapping",
    "load_environment",
]
