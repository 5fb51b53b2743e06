from __future__ import annotations

import re
from datetime import timedelta
from typing import Union

Duration = Union[int, float, str, timedelta]

_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")


def parse_duration(value: Duration) -> timedelta:
    """Convert seconds, a ``timedelta`` or strings like ``"1.5s"``/``"3d"`` to a ``timedelta``."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        number, unit = match.groups()
        seconds = float(number) * _UNITS[unit or "s"]
    if seconds < 0:
        raise ValueError(f"Duration must not be negative: {value!r}")
    return timedelta(seconds=seconds)
