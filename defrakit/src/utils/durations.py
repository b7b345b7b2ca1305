"""
defrakit - Duration Parsing
============================
Parses Go-style duration strings (``"500ms"``, ``"10s"``, ``"1m30s"``,
``"1.5h"``) as accepted by the query runner's ``--timeout`` flag.

A bare number is read as seconds.
"""

from __future__ import annotations

import re

# ── Unit table (seconds per unit) ─────────────────────────────────────
_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_RE_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_RE_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def parse_duration(value: str) -> float:
    """
    Convert a duration string into seconds.

    Raises:
        ValueError: If the string is empty, negative, or contains an
                    unknown unit.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    if text.startswith("-"):
        raise ValueError(f"negative duration: {value!r}")
    text = text.lstrip("+")

    if _RE_NUMBER.fullmatch(text):
        return float(text)

    total = 0.0
    pos = 0
    for match in _RE_COMPONENT.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total
