"""Command line entry point for the range predictor."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from range_predictor.app import RangePredictorApplication
from range_predictor.core.config import MODEL_KINDS, SCHEMA_NAMES
from range_predictor.core.modeling.exceptions import (
    InsufficientSamplesError,
    MissingSeriesError,
    NumericalFailureError,
)

EXIT_MISSING_SERIES = 2
EXIT_INSUFFICIENT_SAMPLES = 3
EXIT_NUMERICAL_FAILURE = 4


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Predict next-session low/high prices and validate the models walk-forward.",
    )
    parser.add_argument(
        "--mode",
        choices=list(RangePredictorApplication.MODES),
        default=os.getenv("RANGE_PREDICTOR_DEFAULT_MODE", "walk-forward"),
        help="Pipeline mode to run (default: %(default)s).",
    )
    parser.add_argument("--data-dir", help="Directory holding <SYMBOL>.csv price files.")
    parser.add_argument("--models-dir", help="Directory for saved ensembles.")
    parser.add_argument("--schema", choices=list(SCHEMA_NAMES), help="Feature schema to build.")
    parser.add_argument("--model", choices=list(MODEL_KINDS), help="Model to train.")
    parser.add_argument("--symbols", help="Comma separated symbols; the target symbol comes last.")
    parser.add_argument("--target-symbol", help="Symbol whose low/high is predicted.")
    parser.add_argument(
        "--target-offset",
        type=int,
        help="Sessions between features and targets. With 0, predict mode scores the latest session as a "
        "one-step backtest; with 1 or more it forecasts past the end of the data.",
    )
    parser.add_argument("--seed", type=int, help="Seed for the tree models.")
    parser.add_argument("--initial-train-size", type=int, help="Walk-forward initial training size.")
    parser.add_argument("--validation-window", type=int, help="Walk-forward validation window.")
    parser.add_argument("--step-size", type=int, help="Walk-forward step size.")
    parser.add_argument(
        "--train-fraction",
        type=float,
        default=0.8,
        help="Leading share of samples used for training in evaluate mode (default: %(default)s).",
    )
    parser.add_argument("--save", action="store_true", help="Persist the trained ensemble in predict mode.")
    parser.add_argument("--output", help="Write the JSON result to this file instead of stdout.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "data_dir": args.data_dir,
        "models_dir": args.models_dir,
        "schema": args.schema,
        "model": args.model,
        "symbols": args.symbols,
        "target_symbol": args.target_symbol,
        "target_offset": args.target_offset,
        "seed": args.seed,
        "initial_train_size": args.initial_train_size,
        "validation_window": args.validation_window,
        "step_size": args.step_size,
    }


def _error(message: str, code: int) -> int:
    print(json.dumps({"status": "error", "message": message}), file=sys.stderr)
    return code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        app = RangePredictorApplication.from_environment(**_overrides(args))
        result = app.run(args.mode, train_fraction=args.train_fraction, save=args.save)
    except MissingSeriesError as exc:
        logging.error("Required price series missing: %s", exc)
        return _error(str(exc), EXIT_MISSING_SERIES)
    except InsufficientSamplesError as exc:
        logging.error("Not enough samples: %s", exc)
        return _error(str(exc), EXIT_INSUFFICIENT_SAMPLES)
    except NumericalFailureError as exc:
        logging.error("Numerical failure during training: %s", exc)
        return _error(str(exc), EXIT_NUMERICAL_FAILURE)
    except (ValueError, RuntimeError, FileNotFoundError) as exc:
        logging.exception("Pipeline execution failed")
        return _error(str(exc), 1)

    output = json.dumps({"status": result.status, **result.payload}, indent=2, default=str)
    if args.output:
        destination = Path(args.output).expanduser()
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(output, encoding="utf-8")
        logging.info("Wrote results to %s", destination)
    else:
        print(output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
