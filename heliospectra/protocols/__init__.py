"""Wire formats spoken by Heliospectra fixtures."""
from __future__ import annotations

from .shell import check_ok, format_command, parse_ints, parse_words
from .status import StatusSnapshot, decode_status_xml

__all__ = [
    "StatusSnapshot",
    "check_ok",
    "decode_status_xml",
    "format_command",
    "parse_ints",
    "parse_words",
]
