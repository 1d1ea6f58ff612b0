"""Structured event sinks for rounds and turns."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
import json
import logging
from pathlib import Path
import sys
from threading import Lock
import time
from typing import Any, Protocol, TextIO

from pydantic import BaseModel

PathLike = str | Path

LOGGER = logging.getLogger(__name__)

ROUND_START = "round-start"
VOTER_PENDING = "voter-pending"
VOTER_SETTLED = "voter-settled"
ROUND_DECIDED = "round-decided"
ROUND_FAILED = "round-failed"
EARLY_WINNER_REJECTED = "early-winner-rejected"
CONSENSUS_SKIPPED = "consensus-skipped"
TURN_START = "turn-start"
TURN_STALLED = "turn-stalled"
TURN_COMPLETE = "turn-complete"

_WARNING_EVENTS = frozenset({ROUND_FAILED, EARLY_WINNER_REJECTED, TURN_STALLED})
_INFO_EVENTS = frozenset({ROUND_DECIDED, CONSENSUS_SKIPPED, TURN_START, TURN_COMPLETE})


class EventLogger(Protocol):
    """Protocol for structured event loggers."""

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        """Persist ``record`` for ``event_type``."""


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def encode_event(event_type: str, record: Mapping[str, Any], **extra: Any) -> str:
    """One JSON line; actions, enums and errors are reduced to plain values."""

    payload = {**record, **extra}
    payload.setdefault("event", event_type)
    return json.dumps(payload, ensure_ascii=False, default=_json_default)


class _LineLogger:
    def __init__(self) -> None:
        self._lock = Lock()

    def _write(self, line: str) -> None:
        raise NotImplementedError

    def _encode(self, event_type: str, record: Mapping[str, Any]) -> str:
        return encode_event(event_type, record)

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        line = self._encode(event_type, record)
        with self._lock:
            self._write(line)


class JsonlLogger(_LineLogger):
    """Append events to a JSONL file, stamping each with wall-clock ``ts``."""

    def __init__(self, path: PathLike, *, timestamps: bool = True) -> None:
        super().__init__()
        self._path = Path(path)
        self._timestamps = timestamps

    @property
    def path(self) -> Path:
        return self._path

    def _encode(self, event_type: str, record: Mapping[str, Any]) -> str:
        if not self._timestamps:
            return encode_event(event_type, record)
        return encode_event(event_type, record, ts=round(time.time(), 3))

    def _write(self, line: str) -> None:
        parent = self._path.parent
        if parent != Path(""):
            parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class StdLogger(_LineLogger):
    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self._stream = stream or sys.stdout

    def _write(self, line: str) -> None:
        self._stream.write(line + "\n")
        self._stream.flush()


class LoggingEventLogger:
    """Forward events to a stdlib logger.

    Failures and stalls log at WARNING, decisions and turn boundaries at
    INFO, per-voter chatter at DEBUG.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("card_consensus.events")

    @staticmethod
    def level_for(event_type: str) -> int:
        if event_type in _WARNING_EVENTS:
            return logging.WARNING
        if event_type in _INFO_EVENTS:
            return logging.INFO
        return logging.DEBUG

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        level = self.level_for(event_type)
        if self._logger.isEnabledFor(level):
            self._logger.log(level, "%s %s", event_type, encode_event(event_type, record))


class RecordingLogger:
    """Keep events in memory; handy for progress views and tests."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = Lock()

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            self.events.append((event_type, dict(record)))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [record for kind, record in self.events if kind == event_type]

    def kinds(self) -> list[str]:
        with self._lock:
            return [kind for kind, _ in self.events]


class CompositeLogger:
    """Fan out to several sinks; one failing sink never starves the others."""

    def __init__(self, loggers: Iterable[EventLogger] | None = None) -> None:
        self._loggers: list[EventLogger] = list(loggers or ())
        self._lock = Lock()

    def add(self, logger: EventLogger) -> None:
        with self._lock:
            self._loggers.append(logger)

    def emit(self, event_type: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            loggers = tuple(self._loggers)
        for logger in loggers:
            emit_event(logger, event_type, record)


def emit_event(
    event_logger: EventLogger | None, event_type: str, record: Mapping[str, Any]
) -> None:
    """Deliver one event; sink errors are logged and never reach the round."""

    if event_logger is None:
        return
    try:
        event_logger.emit(event_type, record)
    except Exception:  # noqa: BLE001
        LOGGER.exception("event sink %r failed for %s", event_logger, event_type)


__all__ = [
    "CONSENSUS_SKIPPED",
    "CompositeLogger",
    "EARLY_WINNER_REJECTED",
    "EventLogger",
    "JsonlLogger",
    "LoggingEventLogger",
    "PathLike",
    "ROUND_DECIDED",
    "ROUND_FAILED",
    "ROUND_START",
    "RecordingLogger",
    "StdLogger",
    "TURN_COMPLETE",
    "TURN_STALLED",
    "TURN_START",
    "VOTER_PENDING",
    "VOTER_SETTLED",
    "emit_event",
    "encode_event",
]
