"""Entitlement extraction through the `codesign` tool.

`codesign -d --entitlements - --xml <binary>` prints the embedded
entitlements plist. Anything we cannot read (unsigned binaries, missing
tool, timeouts, malformed output) yields an empty mapping: the extractor
never raises.
"""

from __future__ import annotations

import logging
import plistlib
import subprocess
from pathlib import Path
from typing import Any, Callable, Mapping
from xml.parsers.expat import ExpatError

from listent.constants import (
    CODESIGN_COMMAND,
    CODESIGN_ENTITLEMENT_ARGS,
    EXTRACT_TIMEOUT_SECONDS,
)

_logger = logging.getLogger(__name__)

EntitlementExtractor = Callable[[Path], Mapping[str, Any]]


def parse_entitlements_plist(data: bytes) -> dict[str, Any]:
    """Parse codesign's XML plist output into a key -> value dict."""
    if not data.strip():
        return {}
    try:
        parsed = plistlib.loads(data)
    except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
        _logger.debug("Unparseable entitlements plist: %s", e)
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(key): value for key, value in parsed.items()}


def extract_entitlements(
    path: Path, timeout: float = EXTRACT_TIMEOUT_SECONDS
) -> dict[str, Any]:
    """Entitlements of the binary at `path`, or {} if there are none to read."""
    try:
        result = subprocess.run(
            [CODESIGN_COMMAND, *CODESIGN_ENTITLEMENT_ARGS, str(path)],
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        _logger.debug("codesign failed for %s: %s", path, e)
        return {}

    if result.returncode != 0:
        # Unsigned, or no entitlements blob
        return {}
    return parse_entitlements_plist(result.stdout)


def make_extractor(timeout: float = EXTRACT_TIMEOUT_SECONDS) -> EntitlementExtractor:
    """Bind a codesign timeout into an extractor callable."""

    def _extract(path: Path) -> dict[str, Any]:
        return extract_entitlements(path, timeout=timeout)

    return _extract
