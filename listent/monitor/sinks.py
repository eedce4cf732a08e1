"""Output sinks — where detected processes go.

One event at a time, synchronously, best effort. The monitor picks a
sink by configuration: human text or JSON lines on stdout for
interactive runs, structured log records for the daemon.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, Protocol, TextIO

import orjson
import structlog
from rich.console import Console

from listent.constants import EVENT_PROCESS_DETECTED
from listent.monitor.models import MonitoredProcess, ProcessDetectionEvent


class SinkKind(str, Enum):
    HUMAN = "human"
    JSON = "json"
    LOG = "log"


class ProcessSink(Protocol):
    def emit(self, process: MonitoredProcess) -> None: ...


def format_event_human(event: ProcessDetectionEvent) -> str:
    entitlements = ", ".join(event.entitlements) if event.entitlements else "(none)"
    return (
        f"[{event.timestamp}] New process detected: {event.name} (PID: {event.pid})\n"
        f"  Path: {event.path}\n"
        f"  Entitlements: {entitlements}"
    )


def format_event_json(event: ProcessDetectionEvent) -> str:
    return orjson.dumps(event.model_dump()).decode()


class HumanSink:
    """Readable multi-line blocks, separated by a blank line."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    def emit(self, process: MonitoredProcess) -> None:
        event = ProcessDetectionEvent.from_process(process)
        self._console.print(format_event_human(event), markup=False, highlight=False, soft_wrap=True)
        self._console.print()


class JsonLineSink:
    """One JSON object per line."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def emit(self, process: MonitoredProcess) -> None:
        stream = self._stream or sys.stdout
        stream.write(format_event_json(ProcessDetectionEvent.from_process(process)) + "\n")
        stream.flush()


class LogSink:
    """Structured log records; the log backend decides where they land."""

    def __init__(self, logger: Any = None) -> None:
        self._logger = logger or structlog.get_logger("listent.detections")

    def emit(self, process: MonitoredProcess) -> None:
        event = ProcessDetectionEvent.from_process(process)
        self._logger.info(
            EVENT_PROCESS_DETECTED,
            detected_at=event.timestamp,
            pid=event.pid,
            name=event.name,
            path=event.path,
            entitlement_count=event.entitlement_count,
            entitlements=event.entitlements,
        )


def make_sink(kind: SinkKind | str, **kwargs: Any) -> ProcessSink:
    """Build the sink for an output kind."""
    kind = SinkKind(kind)
    if kind is SinkKind.JSON:
        return JsonLineSink(**kwargs)
    if kind is SinkKind.LOG:
        return LogSink(**kwargs)
    return HumanSink(**kwargs)
