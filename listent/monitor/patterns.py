"""Entitlement filter matching.

A filter is either an exact entitlement key or a shell-style glob. Globs
are auto-detected by their wildcard characters and compiled once; exact
filters compare with plain, case-sensitive equality.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable

from listent.exceptions import InvalidFilterPatternError

_GLOB_CHARS = ("*", "?", "[")


def is_glob(filter: str) -> bool:
    """True if the filter contains `*`, `?` or `[`."""
    return any(ch in filter for ch in _GLOB_CHARS)


def _translate_class(pattern: str, start: int) -> tuple[int, str]:
    """Translate the `[...]` class opening at `start`.

    Returns the index just past the closing bracket and the regex class.
    """
    n = len(pattern)
    i = start + 1
    negate = i < n and pattern[i] == "!"
    if negate:
        i += 1

    items: list[str] = []
    first = True
    while i < n and (first or pattern[i] != "]"):
        first = False
        ch = pattern[i]
        if i + 2 < n and pattern[i + 1] == "-" and pattern[i + 2] != "]":
            items.append(f"{re.escape(ch)}-{re.escape(pattern[i + 2])}")
            i += 3
        else:
            items.append(re.escape(ch))
            i += 1

    if i >= n:
        raise InvalidFilterPatternError(pattern, "unclosed character class")
    return i + 1, "[" + ("^" if negate else "") + "".join(items) + "]"


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a shell-style glob into an anchored regex.

    Raises InvalidFilterPatternError for an unclosed `[`, a run of three or
    more `*`, or a `**` that is not a whole `/`-separated component.
    """
    parts: list[str] = []
    n = len(pattern)
    i = 0
    while i < n:
        ch = pattern[i]
        if ch == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            run = j - i
            if run > 2:
                raise InvalidFilterPatternError(
                    pattern, "wildcards are either regular `*` or recursive `**`"
                )
            if run == 2:
                if not ((i == 0 or pattern[i - 1] == "/") and (j == n or pattern[j] == "/")):
                    raise InvalidFilterPatternError(
                        pattern, "recursive wildcards must form a single path component"
                    )
                if j < n:
                    # `**/` also matches zero components
                    parts.append("(?:.*/)?")
                    j += 1
                else:
                    parts.append(".*")
            else:
                parts.append(".*")
            i = j
        elif ch == "?":
            parts.append(".")
            i += 1
        elif ch == "[":
            i, cls = _translate_class(pattern, i)
            parts.append(cls)
        else:
            parts.append(re.escape(ch))
            i += 1

    try:
        return re.compile("".join(parts) + r"\Z", re.DOTALL)
    except re.error as e:
        raise InvalidFilterPatternError(pattern, str(e)) from e


def matches(key: str, filter: str) -> bool:
    """Match one entitlement key against one filter. Never raises."""
    if not is_glob(filter):
        return key == filter
    try:
        return compile_glob(filter).match(key) is not None
    except InvalidFilterPatternError:
        return key == filter


def matches_any(keys: Iterable[str], filters: Iterable[str]) -> bool:
    """OR across filters and keys.

    With no filters, a process matches only if it has some entitlement.
    """
    keys = list(keys)
    filters = list(filters)
    if not filters:
        return bool(keys)
    return any(matches(key, f) for f in filters for key in keys)


def validate(filters: Iterable[str]) -> None:
    """Pre-compile every glob filter, failing on the first broken one."""
    for f in filters:
        if is_glob(f):
            compile_glob(f)
