"""Application-wide constants."""

from __future__ import annotations

APP_SUBSYSTEM = "com.microsoft.sysinternals.listent"

# Polling interval bounds, in seconds
POLLING_INTERVAL_MIN = 0.1
POLLING_INTERVAL_MAX = 300.0
DEFAULT_POLLING_INTERVAL = 1.0

# Longest single sleep between cancellation checks
SLEEP_CHUNK_SECONDS = 0.1

# Daemon startup handshake
READY_SENTINEL = "READY"
READY_TIMEOUT_SECONDS = 30.0
DAEMON_CHILD_ENV = "LISTENT_DAEMON_CHILD"
LAUNCHD_ENV = "XPC_SERVICE_NAME"
DAEMON_SUBCOMMAND = "daemon"
DAEMON_RUN_SUBCOMMAND = "run"
PROGRAM_NAME = "listent"

# codesign invocation for entitlement extraction
CODESIGN_COMMAND = "codesign"
CODESIGN_ENTITLEMENT_ARGS = ("-d", "--entitlements", "-", "--xml")
EXTRACT_TIMEOUT_SECONDS = 10.0

EVENT_PROCESS_DETECTED = "process_detected"
