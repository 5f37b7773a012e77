"""Command and response grammar of the fixture's telnet line shell."""
from __future__ import annotations

import re
from typing import List, Sequence

from ..errors import ProtocolError

PROMPT = b">"
GREETING_TERMINATOR = b"\n>"

GET_WAVELENGTHS = "getWl"
GET_ALL_POWER = "getAllRelPower"
SET_ONE_POWER = "setWlRelPower"
SET_ALL_POWER = "setWlsRelPower"

_OK = re.compile(r"\bOK\b")
_INTS = re.compile(r"\b(\d+)\b")
_WORDS = re.compile(r"\b(\w+)\b")


def format_command(name: str, *args: int | str) -> bytes:
    """Encode ``name arg1 arg2`` terminated by a newline."""

    parts = [name, *(str(arg) for arg in args)]
    return (" ".join(parts) + "\n").encode("ascii")


def is_ok(body: str) -> bool:
    return _OK.search(body) is not None


def check_ok(command: str, body: str) -> str:
    """Return *body* if the shell acknowledged *command*, else raise :class:`ProtocolError`."""

    if not is_ok(body):
        detail = body.strip().rstrip(">").strip() or "<empty response>"
        raise ProtocolError(f"{command} failed: {detail}")
    return body


def parse_words(body: str) -> List[str]:
    """Word tokens following the leading ``OK``."""

    match = _OK.search(body)
    if match is None:
        return []
    return _WORDS.findall(body[match.end():])


def parse_ints(body: str) -> List[int]:
    """Every standalone decimal integer in *body*, in order."""

    return [int(token) for token in _INTS.findall(body)]


def set_all_command(values: Sequence[int]) -> bytes:
    return format_command(SET_ALL_POWER, *values)


def set_one_command(wavelength_nm: int, value: int) -> bytes:
    return format_command(SET_ONE_POWER, wavelength_nm, value)
