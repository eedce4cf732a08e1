"""Tests for output sinks and event formatting."""

import io
from datetime import datetime, timezone

import orjson
import pytest
from rich.console import Console

from listent.monitor.models import ProcessDetectionEvent
from listent.monitor.sinks import (
    HumanSink,
    JsonLineSink,
    LogSink,
    SinkKind,
    format_event_human,
    make_sink,
)

DISCOVERED = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def process(make_process):
    return make_process(
        321,
        entitlements=["com.apple.security.network.client", "com.apple.security.app-sandbox"],
    ).model_copy(update={"discovery_timestamp": DISCOVERED})


def test_human_format(process):
    text = format_event_human(ProcessDetectionEvent.from_process(process))
    assert text == (
        "[2025-06-01T12:00:00+00:00] New process detected: App (PID: 321)\n"
        "  Path: /Applications/App.app/Contents/MacOS/App\n"
        "  Entitlements: com.apple.security.app-sandbox, com.apple.security.network.client"
    )


def test_human_format_without_entitlements(make_process):
    text = format_event_human(ProcessDetectionEvent.from_process(make_process(1)))
    assert text.endswith("  Entitlements: (none)")


def test_human_sink_writes_block_and_blank_line(process):
    buffer = io.StringIO()
    sink = HumanSink(Console(file=buffer, width=200, color_system=None))

    sink.emit(process)

    output = buffer.getvalue()
    assert "New process detected: App (PID: 321)" in output
    # Square brackets are printed literally, not parsed as markup
    assert output.startswith("[2025-06-01T12:00:00+00:00]")
    assert output.endswith("\n\n")


def test_json_sink_one_object_per_line(process, make_process):
    buffer = io.StringIO()
    sink = JsonLineSink(buffer)

    sink.emit(process)
    sink.emit(make_process(2))

    lines = buffer.getvalue().splitlines()
    assert len(lines) == 2
    record = orjson.loads(lines[0])
    assert record == {
        "timestamp": "2025-06-01T12:00:00+00:00",
        "event_type": "process_detected",
        "pid": 321,
        "name": "App",
        "path": "/Applications/App.app/Contents/MacOS/App",
        "entitlement_count": 2,
        "entitlements": [
            "com.apple.security.app-sandbox",
            "com.apple.security.network.client",
        ],
    }
    assert orjson.loads(lines[1])["entitlements"] == []


def test_json_sink_defaults_to_stdout(process, capsys):
    JsonLineSink().emit(process)
    assert orjson.loads(capsys.readouterr().out)["pid"] == 321


def test_log_sink_fields(process, capturing_logger):
    LogSink(capturing_logger).emit(process)

    level, event, fields = capturing_logger.records[0]
    assert (level, event) == ("info", "process_detected")
    assert fields["pid"] == 321
    assert fields["name"] == "App"
    assert fields["detected_at"] == "2025-06-01T12:00:00+00:00"
    assert fields["entitlement_count"] == 2
    assert fields["entitlements"][0] == "com.apple.security.app-sandbox"


def test_make_sink():
    assert isinstance(make_sink(SinkKind.HUMAN), HumanSink)
    assert isinstance(make_sink("json", stream=io.StringIO()), JsonLineSink)
    assert isinstance(make_sink(SinkKind.LOG), LogSink)
    with pytest.raises(ValueError):
        make_sink("xml")
