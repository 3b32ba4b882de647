"""Structured event emission for model training and inference."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Protocol

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelEvent:
    """A single observation emitted by a model component."""

    name: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    level: int = logging.DEBUG

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, **dict(self.payload)}


class EventSink(Protocol):
    """Receiver for :class:`ModelEvent` instances."""

    def emit(self, event: ModelEvent) -> None:  # pragma: no cover - protocol
        ...


class LoggingEventSink:
    """Forward events to the standard :mod:`logging` machinery."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOGGER

    def emit(self, event: ModelEvent) -> None:
        if not self.logger.isEnabledFor(event.level):
            return
        details = ", ".join(f"{key}={_format_value(value)}" for key, value in event.payload.items())
        self.logger.log(event.level, "%s %s", event.name, details)


class EventRecorder:
    """Keep emitted events in memory, optionally forwarding them."""

    def __init__(self, forward_to: EventSink | None = None) -> None:
        self._events: list[ModelEvent] = []
        self._forward_to = forward_to

    def emit(self, event: ModelEvent) -> None:
        self._events.append(event)
        if self._forward_to is not None:
            self._forward_to.emit(event)

    @property
    def events(self) -> tuple[ModelEvent, ...]:
        return tuple(self._events)

    def named(self, name: str) -> list[ModelEvent]:
        return [event for event in self._events if event.name == name]

    def count(self, name: str) -> int:
        return len(self.named(name))

    def clear(self) -> None:
        self._events.clear()

    def __iter__(self) -> Iterator[ModelEvent]:
        return iter(tuple(self._events))

    def __len__(self) -> int:
        return len(self._events)


def emit(
    sink: EventSink | None,
    name: str,
    *,
    level: int = logging.DEBUG,
    **payload: Any,
) -> None:
    """Emit ``name`` with ``payload`` to ``sink`` or to the default logger."""

    event = ModelEvent(name=name, payload=payload, level=level)
    (sink or _DEFAULT_SINK).emit(event)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


_DEFAULT_SINK = LoggingEventSink()


__all__ = ["EventRecorder", "EventSink", "LoggingEventSink", "ModelEvent", "emit"]
