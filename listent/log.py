"""Logging setup — structlog on top of the stdlib logging module.

The daemon writes to the system log (which feeds the unified log on
macOS); interactive runs write to stderr. stdout is reserved for
detection output and, in the daemon worker, the readiness sentinel.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys

import structlog

from listent.constants import APP_SUBSYSTEM

STREAM_BACKEND = "stream"
SYSLOG_BACKEND = "syslog"
BACKENDS = (STREAM_BACKEND, SYSLOG_BACKEND)

_SYSLOG_SOCKETS = ("/var/run/syslog", "/dev/log")


def default_backend() -> str:
    """System log on macOS, stderr elsewhere."""
    return SYSLOG_BACKEND if sys.platform == "darwin" else STREAM_BACKEND


def _syslog_address() -> str | tuple[str, int]:
    for path in _SYSLOG_SOCKETS:
        if os.path.exists(path):
            return path
    return ("localhost", logging.handlers.SYSLOG_UDP_PORT)


def _make_handler(backend: str) -> logging.Handler:
    if backend == SYSLOG_BACKEND:
        handler: logging.Handler = logging.handlers.SysLogHandler(address=_syslog_address())
        handler.ident = f"{APP_SUBSYSTEM}: "
        return handler
    if backend == STREAM_BACKEND:
        return logging.StreamHandler(sys.stderr)
    raise ValueError(f"Unknown log backend: {backend!r} (expected one of {', '.join(BACKENDS)})")


def configure_logging(backend: str | None = None, level: str = "INFO") -> logging.Handler:
    """Route structlog events through a single stdlib handler.

    Returns the installed handler so callers can detach it again.
    """
    handler = _make_handler(backend or default_backend())
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return handler
