"""Shared test fixtures — scripted process tables, extractors and sinks."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from listent.exceptions import ExtractionError
from listent.monitor.models import MonitoredProcess, ProcessRecord

APP_PATH = "/Applications/App.app/Contents/MacOS/App"


class FakeEnumerator:
    """Serves a scripted sequence of process tables, repeating the last one.

    An exception in the script is raised instead of returning a table.
    """

    def __init__(self, tables: list[Any]):
        self._tables = list(tables)
        self.calls = 0

    def __call__(self) -> list[ProcessRecord]:
        table = self._tables[min(self.calls, len(self._tables) - 1)]
        self.calls += 1
        if isinstance(table, BaseException):
            raise table
        return list(table)


class FakeExtractor:
    """Entitlements by executable path; listed paths raise instead."""

    def __init__(self, by_path: dict[str, dict[str, Any]] | None = None, failing: tuple[str, ...] = ()):
        self._by_path = by_path or {}
        self._failing = set(failing)
        self.calls: list[Path] = []

    def __call__(self, path: Path) -> dict[str, Any]:
        self.calls.append(path)
        if str(path) in self._failing:
            raise ExtractionError(f"cannot read {path}")
        return dict(self._by_path.get(str(path), {}))


class RecordingSink:
    def __init__(self, fail_on: set[int] | None = None):
        self.processes: list[MonitoredProcess] = []
        self._fail_on = fail_on or set()

    def emit(self, process: MonitoredProcess) -> None:
        if process.pid in self._fail_on:
            raise BrokenPipeError("sink closed")
        self.processes.append(process)

    @property
    def pids(self) -> list[int]:
        return [p.pid for p in self.processes]


class CapturingLogger:
    """Stands in for a structlog logger; records (level, event, fields)."""

    def __init__(self):
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _log(self, level: str, event: str, **kw: Any) -> None:
        self.records.append((level, event, kw))

    def debug(self, event: str, **kw: Any) -> None:
        self._log("debug", event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._log("info", event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._log("warning", event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._log("error", event, **kw)

    def events(self, level: str | None = None) -> list[str]:
        return [e for lvl, e, _ in self.records if level is None or lvl == level]


@pytest.fixture
def make_record():
    def _factory(pid: int, start_time: float = 1000.0, path: str = APP_PATH, name: str | None = None) -> ProcessRecord:
        exe = Path(path)
        return ProcessRecord(pid=pid, start_time=start_time, name=name or exe.name, executable_path=exe)
    return _factory


@pytest.fixture
def make_process():
    def _factory(
        pid: int,
        start_time: float = 1000.0,
        entitlements: dict[str, Any] | list[str] | None = None,
        path: str = APP_PATH,
    ) -> MonitoredProcess:
        if isinstance(entitlements, list):
            entitlements = {key: True for key in entitlements}
        exe = Path(path)
        return MonitoredProcess(
            pid=pid,
            start_time=start_time,
            name=exe.name,
            executable_path=exe,
            entitlements=entitlements or {},
        )
    return _factory


@pytest.fixture
def fake_enumerator():
    return FakeEnumerator


@pytest.fixture
def fake_extractor():
    return FakeExtractor


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def capturing_logger():
    return CapturingLogger()


@pytest.fixture
def sink_factory():
    return RecordingSink
