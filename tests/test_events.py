from __future__ import annotations

import logging
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from range_predictor.core.events import EventRecorder, LoggingEventSink, ModelEvent, emit


def test_recorder_keeps_events_in_order() -> None:
    recorder = EventRecorder()
    emit(recorder, "bayesian.trained", samples=10)
    emit(recorder, "bayesian.swap", level=logging.WARNING, row=0)
    emit(recorder, "bayesian.swap", level=logging.WARNING, row=3)

    assert len(recorder) == 3
    assert [event.name for event in recorder] == ["bayesian.trained", "bayesian.swap", "bayesian.swap"]
    assert recorder.count("bayesian.swap") == 2
    assert recorder.named("bayesian.swap")[1].payload["row"] == 3
    assert recorder.events[0].to_dict() == {"name": "bayesian.trained", "samples": 10}

    recorder.clear()
    assert len(recorder) == 0


def test_recorder_forwards_to_another_sink() -> None:
    downstream = EventRecorder()
    recorder = EventRecorder(forward_to=downstream)
    emit(recorder, "walk_forward.fold", step=1)

    assert downstream.count("walk_forward.fold") == 1


def test_logging_sink_formats_payload(caplog) -> None:
    sink = LoggingEventSink(logging.getLogger("range_predictor.test"))
    with caplog.at_level(logging.INFO, logger="range_predictor.test"):
        sink.emit(ModelEvent("ensemble.weights_updated", {"bayesian": 0.123456, "count": 2}, logging.INFO))
        sink.emit(ModelEvent("ensemble.prediction", {"low": 1.0}))

    assert len(caplog.records) == 1
    assert caplog.records[0].getMessage() == "ensemble.weights_updated bayesian=0.1235, count=2"


def test_emit_without_sink_uses_module_logger(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="range_predictor.core.events"):
        emit(None, "walk_forward.skipped", level=logging.WARNING, step=0)

    assert "walk_forward.skipped step=0" in caplog.text
