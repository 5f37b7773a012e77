"""Duration helpers accepting the ``1h30m0s`` notation used by the fixture and the CLI."""
from __future__ import annotations

import re
from datetime import timedelta

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``10m``, ``0s``, ``1.5h`` or ``01h30m0s``.

    A bare ``0`` is accepted; every other value needs a unit on each component.
    Raises :class:`ValueError` for empty or malformed input.
    """

    candidate = text.strip()
    if not candidate:
        raise ValueError("invalid duration ''")
    sign = 1.0
    if candidate[0] in "+-":
        sign = -1.0 if candidate[0] == "-" else 1.0
        candidate = candidate[1:]
    if candidate == "0":
        return timedelta(0)
    position = 0
    seconds = 0.0
    while position < len(candidate):
        match = _COMPONENT.match(candidate, position)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()
    if position == 0:
        raise ValueError(f"invalid duration {text!r}")
    return timedelta(seconds=sign * seconds)


def format_duration(value: timedelta) -> str:
    """Render *value* back into ``XhYmZs`` form for log lines."""

    total = value.total_seconds()
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, remainder = divmod(int(total), 3600)
    minutes, seconds = divmod(remainder, 60)
    fraction = total - int(total)
    seconds_text = f"{seconds + fraction:g}"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds_text}s"
    if minutes:
        return f"{sign}{minutes}m{seconds_text}s"
    return f"{sign}{seconds_text}s"
