"""Tests for the daemon worker lifecycle."""

import asyncio
import io
import os
import signal

import pytest

from listent.daemon.config import DaemonConfiguration
from listent.daemon.supervisor import DaemonState
from listent.daemon.worker import DaemonWorker, ShutdownReason, is_worker_process
from listent.exceptions import InvalidIntervalError, SchedulerStateError, ShutdownSignalError


@pytest.fixture
def daemon_config(tmp_path):
    config = DaemonConfiguration.default()
    config.daemon.polling_interval = 0.1
    config.monitoring.path_filters = [tmp_path]
    return config


@pytest.fixture
def make_worker(daemon_config, fake_enumerator, recording_sink, capturing_logger):
    def _make(config=None, **kwargs):
        kwargs.setdefault("enumerator", fake_enumerator([[]]))
        kwargs.setdefault("extractor", lambda path: {})
        kwargs.setdefault("ready_stream", io.StringIO())
        return DaemonWorker(
            config or daemon_config,
            sink=recording_sink,
            detach_stdout=False,
            logger=capturing_logger,
            **kwargs,
        )
    return _make


async def _wait_for_state(worker, state, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while worker.state is not state:
        assert loop.time() < deadline, f"worker stuck in {worker.state}"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_ready_then_shutdown_on_request(make_worker, capturing_logger):
    stream = io.StringIO()
    worker = make_worker(ready_stream=stream)
    assert worker.state is DaemonState.SPAWNING

    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)
    assert stream.getvalue() == "READY\n"

    worker.request_shutdown(signal.SIGTERM)
    reason = await asyncio.wait_for(task, timeout=5)

    assert reason is ShutdownReason.SIGNAL
    assert worker.state is DaemonState.STOPPED
    assert worker.received_signal is signal.SIGTERM
    info = capturing_logger.events("info")
    assert info[0] == "daemon_startup"
    assert info[-1] == "daemon_shutdown"
    assert capturing_logger.records[-1][2]["signal"] == "SIGTERM"


@pytest.mark.asyncio
async def test_real_sigterm_stops_worker(make_worker):
    worker = make_worker()
    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)

    os.kill(os.getpid(), signal.SIGTERM)
    reason = await asyncio.wait_for(task, timeout=5)

    assert reason is ShutdownReason.SIGNAL
    assert worker.received_signal == signal.SIGTERM


@pytest.mark.asyncio
async def test_shutdown_is_prompt_with_long_interval(make_worker, daemon_config):
    daemon_config.daemon.polling_interval = 300.0
    worker = make_worker(daemon_config)
    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)
    await asyncio.sleep(0.2)

    loop = asyncio.get_running_loop()
    started = loop.time()
    worker.request_shutdown()
    await asyncio.wait_for(task, timeout=5)
    assert loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_scheduler_exit_without_signal(make_worker):
    worker = make_worker()
    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)

    worker.scheduler.cancel()
    reason = await asyncio.wait_for(task, timeout=5)

    assert reason is ShutdownReason.SCHEDULER_EXITED
    assert worker.received_signal is None
    assert worker.state is DaemonState.STOPPED


@pytest.mark.asyncio
async def test_scheduler_failure(make_worker, capturing_logger):
    def failing_info(event, **kw):
        capturing_logger.records.append(("info", event, kw))
        if event == "monitoring_started":
            raise RuntimeError("logger broke")

    capturing_logger.info = failing_info
    worker = make_worker()

    reason = await asyncio.wait_for(worker.run(), timeout=5)

    assert reason is ShutdownReason.SCHEDULER_FAILED
    assert "monitoring_loop_failed" in capturing_logger.events("error")
    assert worker.state is DaemonState.STOPPED


@pytest.mark.asyncio
async def test_signal_handler_failure(make_worker, monkeypatch):
    loop = asyncio.get_running_loop()

    def refuse(*args, **kwargs):
        raise NotImplementedError("no signals here")

    monkeypatch.setattr(loop, "add_signal_handler", refuse)
    stream = io.StringIO()
    worker = make_worker(ready_stream=stream)

    with pytest.raises(ShutdownSignalError) as exc_info:
        await worker.run()

    assert exc_info.value.exit_code == 7
    assert worker.state is DaemonState.STOPPED
    # READY went out before the handlers were attempted
    assert stream.getvalue() == "READY\n"


@pytest.mark.asyncio
async def test_invalid_configuration_fails_before_ready(make_worker, daemon_config):
    daemon_config.daemon.polling_interval = 0.01
    stream = io.StringIO()
    worker = make_worker(daemon_config, ready_stream=stream)

    with pytest.raises(InvalidIntervalError):
        await worker.run()
    assert stream.getvalue() == ""


@pytest.mark.asyncio
async def test_ready_write_failure_is_not_fatal(make_worker):
    class ClosedStream(io.StringIO):
        def write(self, text):
            raise BrokenPipeError("parent went away")

    worker = make_worker(ready_stream=ClosedStream())
    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)
    worker.request_shutdown()
    assert await asyncio.wait_for(task, timeout=5) is ShutdownReason.SIGNAL


@pytest.mark.asyncio
async def test_replace_configuration(make_worker, daemon_config):
    worker = make_worker()
    with pytest.raises(SchedulerStateError):
        await worker.replace_configuration(daemon_config)

    task = asyncio.create_task(worker.run())
    await _wait_for_state(worker, DaemonState.RUNNING)

    updated = daemon_config.model_copy(deep=True)
    updated.daemon.polling_interval = 2.0
    await worker.replace_configuration(updated)
    assert worker.configuration.daemon.polling_interval == 2.0
    assert worker.scheduler.configuration.interval == 2.0

    worker.request_shutdown()
    await asyncio.wait_for(task, timeout=5)


@pytest.mark.asyncio
async def test_detections_reach_the_sink(daemon_config, fake_enumerator, make_record, recording_sink, capturing_logger, tmp_path):
    exe = str(tmp_path / "Tool")
    worker = DaemonWorker(
        daemon_config,
        sink=recording_sink,
        enumerator=fake_enumerator([[], [make_record(77, path=exe)]]),
        extractor=lambda path: {"com.apple.security.network.client": True},
        ready_stream=io.StringIO(),
        detach_stdout=False,
        logger=capturing_logger,
    )
    task = asyncio.create_task(worker.run())
    loop = asyncio.get_running_loop()
    deadline = loop.time() + 5
    while not recording_sink.processes and loop.time() < deadline:
        await asyncio.sleep(0.05)
    worker.request_shutdown()
    await asyncio.wait_for(task, timeout=5)

    assert recording_sink.pids == [77]


@pytest.mark.parametrize("env, expected", [
    ({}, False),
    ({"LISTENT_DAEMON_CHILD": "1"}, True),
    ({"XPC_SERVICE_NAME": "0"}, False),
    ({"XPC_SERVICE_NAME": "com.github.listent.daemon"}, True),
])
def test_is_worker_process(monkeypatch, env, expected):
    monkeypatch.delenv("LISTENT_DAEMON_CHILD", raising=False)
    monkeypatch.delenv("XPC_SERVICE_NAME", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    assert is_worker_process() is expected
