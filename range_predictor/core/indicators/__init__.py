"""Collection of modular indicator helpers used across the project."""

from __future__ import annotations

from .cross_asset import DEFAULT_CORRELATION, rolling_return_correlation
from .momentum import relative_strength_index, stochastic_oscillator
from .trend import (
    ema_ratio,
    exponential_moving_average,
    macd_line,
    price_momentum,
    price_position,
    rate_of_change,
    rolling_difference,
    simple_moving_average,
)
from .utils import IndicatorInputs, history_length, safe_divide, simple_returns
from .volatility import (
    average_true_range,
    bollinger_position,
    bollinger_squeeze,
    intraday_volatility,
    intraday_volatility_ratio,
    rolling_return_volatility,
    true_range,
    true_range_ratio,
    volatility_breakout,
    volatility_ratio,
)
from .volume import (
    normalized_volume,
    on_balance_volume,
    price_volume_trend,
    volume_rate_of_change,
    volume_weighted_average_price,
)

__all__ = [
    "DEFAULT_CORRELATION",
    "IndicatorInputs",
    "average_true_range",
    "bollinger_position",
    "bollinger_squeeze",
    "ema_ratio",
    "exponential_moving_average",
    "history_length",
    "intraday_volatility",
    "intraday_volatility_ratio",
    "macd_line",
    "normalized_volume",
    "on_balance_volume",
    "price_momentum",
    "price_position",
    "price_volume_trend",
    "rate_of_change",
    "relative_strength_index",
    "rolling_difference",
    "rolling_return_correlation",
    "rolling_return_volatility",
    "safe_divide",
    "simple_moving_average",
    "simple_returns",
    "stochastic_oscillator",
    "true_range",
    "true_range_ratio",
    "volatility_breakout",
    "volatility_ratio",
    "volume_rate_of_change",
    "volume_weighted_average_price",
]
