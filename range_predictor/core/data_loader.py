"""Load daily OHLCV price files from disk."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from .features.provider import prepare_price_frame
from .modeling.exceptions import MissingSeriesError

LOGGER = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "date": "Date",
    "timestamp": "Date",
    "open": "Open",
    "high": "High",
    "low": "Low",
    "close": "Close",
    "adj close": "Adj Close",
    "adj_close": "Adj Close",
    "volume": "Volume",
}


def _normalise_columns(frame: pd.DataFrame) -> pd.DataFrame:
    renamed = {
        column: COLUMN_ALIASES.get(str(column).strip().lower(), str(column).strip())
        for column in frame.columns
    }
    return frame.rename(columns=renamed)


def load_price_frame(path: str | Path) -> pd.DataFrame:
    """Read a single price CSV into a date-indexed, sorted frame."""

    resolved = Path(path).expanduser()
    if not resolved.exists():
        raise FileNotFoundError(resolved)
    frame = _normalise_columns(pd.read_csv(resolved))
    if "Date" not in frame.columns:
        raise ValueError(f"Price file {resolved} has no Date column.")
    prepared = prepare_price_frame(frame)
    LOGGER.debug("Loaded %d rows from %s", len(prepared), resolved)
    return prepared


def load_market_data(data_dir: str | Path, symbols: Iterable[str]) -> dict[str, pd.DataFrame]:
    """Load ``<SYMBOL>.csv`` for every symbol under ``data_dir``.

    Raises :class:`MissingSeriesError` listing every symbol without a file.
    """

    directory = Path(data_dir).expanduser()
    frames: dict[str, pd.DataFrame] = {}
    missing: list[str] = []
    for symbol in symbols:
        key = str(symbol).upper()
        candidates = [directory / f"{key}.csv", directory / f"{key.lower()}.csv"]
        path = next((candidate for candidate in candidates if candidate.exists()), None)
        if path is None:
            missing.append(key)
            continue
        frames[key] = load_price_frame(path)
    if missing:
        LOGGER.error("Missing price files for %s in %s", ", ".join(missing), directory)
        raise MissingSeriesError(missing)
    LOGGER.info("Loaded %d price series from %s", len(frames), directory)
    return frames


__all__ = ["load_market_data", "load_price_frame"]
