"""Structured event sinks.

Components never reach for a module-level logger. Each one is handed an
``EventSink`` and reports what happened as a named event with keyword fields:

    events.emit("channel.state_changed", old="ready", new="reconnecting")

``LoggingEventSink`` renders these through the deskpilot logger; tests use
``RecordingEventSink`` to assert on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from deskpilot.logging import get_logger


@runtime_checkable
class EventSink(Protocol):
    """Receiver for structured diagnostic events."""

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        """Record a single event.

        Args:
            event: Dotted event name, e.g. "channel.send"
            level: Standard logging level for the event
            **fields: Event attributes
        """
        ...


def _format_value(value: Any) -> str:
    text = str(value)
    if len(text) > 200:
        text = text[:197] + "..."
    if " " in text:
        return repr(text)
    return text


class LoggingEventSink:
    """Event sink that writes ``event key=value ...`` lines to a logger."""

    def __init__(self, name: str | None = None, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger(name)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        exc = fields.pop("exc_info", None)
        parts = [event]
        parts.extend(f"{key}={_format_value(value)}" for key, value in fields.items())
        self._logger.log(level, " ".join(parts), exc_info=exc)


class NullEventSink:
    """Discards every event."""

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        return None


@dataclass(frozen=True, slots=True)
class RecordedEvent:
    """An event captured by RecordingEventSink."""

    name: str
    level: int
    fields: dict[str, Any]


@dataclass
class RecordingEventSink:
    """Keeps every event in memory; optionally forwards to another sink."""

    forward: EventSink | None = None
    events: list[RecordedEvent] = field(default_factory=list)

    def emit(self, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
        self.events.append(RecordedEvent(name=event, level=level, fields=dict(fields)))
        if self.forward is not None:
            self.forward.emit(event, level=level, **fields)

    def named(self, name: str) -> list[RecordedEvent]:
        """Return all recorded events with the given name."""
        return [e for e in self.events if e.name == name]

    def clear(self) -> None:
        self.events.clear()


def default_sink(name: str) -> EventSink:
    """Sink used when a component is constructed without one."""
    return LoggingEventSink(name)


__all__ = [
    "EventSink",
    "LoggingEventSink",
    "NullEventSink",
    "RecordedEvent",
    "RecordingEventSink",
    "default_sink",
]
