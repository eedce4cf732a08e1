"""Custom exception hierarchy for listent.

Startup and supervision errors carry the process exit code the CLI
reports. Per-cycle errors (extraction, enumeration) are absorbed by the
scheduler and never reach the caller.
"""

from __future__ import annotations


class ListentError(Exception):
    """Base for all listent errors."""

    exit_code = 1


class ConfigurationError(ListentError):
    """Configuration file missing, unreadable or invalid."""

    exit_code = 2


class InvalidIntervalError(ConfigurationError):
    """Polling interval outside the allowed bounds."""

    def __init__(self, interval: float, minimum: float, maximum: float) -> None:
        self.interval = interval
        super().__init__(
            f"Invalid polling interval: {interval}. "
            f"Must be between {minimum} and {maximum} seconds"
        )


class InvalidFilterPatternError(ConfigurationError):
    """An entitlement filter looks like a glob but does not compile."""

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid glob pattern '{pattern}': {reason}")


class ExtractionError(ListentError):
    """An extractor could not read one process; the scheduler skips it for the cycle."""


class EnumerationError(ListentError):
    """The process table could not be read for one cycle."""


class SchedulerStateError(ListentError):
    """Invalid scheduler lifecycle transition."""


class SupervisionError(ListentError):
    """The daemon launch did not reach a healthy running state."""


class AlreadyRunningError(SupervisionError):
    """Another daemon instance is already running."""

    exit_code = 3

    def __init__(self, pids: list[int]) -> None:
        self.pids = pids
        listed = ", ".join(str(p) for p in pids)
        super().__init__(f"Daemon already running (PID {listed}), please stop it first.")


class CrashedBeforeReadyError(SupervisionError):
    """The worker exited before signalling readiness."""

    exit_code = 4

    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        status = "unknown" if returncode is None else str(returncode)
        super().__init__(
            f"The daemon process exited before becoming ready (exit: {status})"
        )


class ProtocolViolationError(SupervisionError):
    """The worker wrote something other than the readiness sentinel."""

    exit_code = 5

    def __init__(self, output: str) -> None:
        self.output = output
        super().__init__(f"Unexpected daemon output: {output!r}")


class StartupTimeoutError(SupervisionError):
    """The worker neither signalled readiness nor exited in time."""

    exit_code = 6

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Daemon did not become ready within {timeout:g} seconds")


class ShutdownSignalError(SupervisionError):
    """Shutdown signal handlers could not be installed."""

    exit_code = 7


class SpawnError(SupervisionError):
    """The worker process could not be started at all."""

    exit_code = 8

    def __init__(self, command: list[str], error: OSError) -> None:
        self.command = command
        self.error = error
        super().__init__(f"Failed to start daemon process {command[0]!r}: {error}")
