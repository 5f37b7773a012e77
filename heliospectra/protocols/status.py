"""Decoder for the fixture's ``status.xml`` document.

The fixture reports its state as a flat bag of single-letter elements whose
contents each use their own ad-hoc encoding (mixed delimiters, mixed units,
days folded into the uptime, ``normal`` meaning *on*).  Each element is decoded
independently: a malformed element is logged and left at its zero value, only
a document that is not XML at all is rejected.
"""
from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..errors import DecodeError
from ..timeutil import parse_duration

logger = logging.getLogger(__name__)

LIGHT_TIME_FORMAT = "%Y:%m:%d:%H:%M:%S"
LAST_CHANGE_TIME_FORMAT = "%Y-%m-%d   %H:%M:%S"

_INTEGER = re.compile(r"[+-]?\d+")

STATUS_ELEMENTS = ("a", "b", "c", "d", "e", "f", "g", "h", "i", "j", "m", "n", "o", "q")


@dataclass(slots=True)
class StatusSnapshot:
    """Normalised view of one status read."""

    light_time: Optional[datetime] = None
    schedule_running: bool = False
    light_ok: bool = False
    uptime: timedelta = timedelta(0)
    last_change_time: Optional[datetime] = None
    last_change_reason: str = ""
    last_change_ip: str = ""
    last_change_type: str = ""
    panel_temperatures_c: List[float] = field(default_factory=list)
    intensities: List[int] = field(default_factory=list)
    target_intensities: List[int] = field(default_factory=list)
    control_mode: str = ""
    ui_lights_on_at_powerup: bool = False
    ui_status_indicator_led: bool = False
    ui_schedule_lock_on: bool = False
    ui_schedule_lock_message: str = ""
    ui_schedule_lock_password: str = ""
    ntp_on: bool = False
    ntp_address: str = ""
    tz_offset: str = ""
    executed_timepoint: bool = False
    channel_labels: Tuple[str, ...] = ()


def decode_status_xml(data: bytes | str) -> StatusSnapshot:
    """Decode a ``status.xml`` payload into a :class:`StatusSnapshot`.

    Raises :class:`DecodeError` only when *data* is not well-formed XML.
    """

    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        logger.error("error decoding status.xml: %s", exc)
        raise DecodeError(f"status.xml is not well-formed: {exc}") from exc

    raw = _collect_elements(root)
    snapshot = StatusSnapshot()

    if raw["a"]:
        try:
            snapshot.light_time = datetime.strptime(raw["a"], LIGHT_TIME_FORMAT)
        except ValueError as exc:
            logger.warning("error decoding status.xml light time %r: %s", raw["a"], exc)

    if raw["b"]:
        snapshot.schedule_running = raw["b"] == "Running"

    if raw["c"]:
        snapshot.light_ok = raw["c"] == "OK"

    if raw["d"]:
        uptime = parse_uptime(raw["d"])
        if uptime is not None:
            snapshot.uptime = uptime

    if raw["e"]:
        try:
            snapshot.last_change_time = datetime.strptime(raw["e"], LAST_CHANGE_TIME_FORMAT)
        except ValueError as exc:
            logger.warning("error decoding status.xml last change time %r: %s", raw["e"], exc)

    snapshot.last_change_reason = raw["f"]
    snapshot.last_change_ip = raw["g"]
    snapshot.last_change_type = raw["h"]

    if raw["i"]:
        snapshot.panel_temperatures_c = parse_panel_temperatures(raw["i"])

    if raw["j"]:
        snapshot.intensities = parse_intensities(raw["j"])

    snapshot.control_mode = raw["m"]

    if raw["n"]:
        _, powerup, indicator = _padded_split(raw["n"], ":")
        # field 0 is the display temperature unit
        if powerup == "on":
            snapshot.ui_lights_on_at_powerup = True
        elif powerup == "off":
            snapshot.ui_lights_on_at_powerup = False
        if indicator == "normal":
            snapshot.ui_status_indicator_led = True
        elif indicator == "off":
            snapshot.ui_status_indicator_led = False

    if raw["o"]:
        lock, message, password = _padded_split(raw["o"], ":")
        if lock == "on":
            snapshot.ui_schedule_lock_on = True
        elif lock == "off":
            snapshot.ui_schedule_lock_on = False
        if message:
            snapshot.ui_schedule_lock_message = message
        if password:
            snapshot.ui_schedule_lock_password = password

    if raw["q"]:
        ntp, address, offset = _padded_split(raw["q"], ", ")
        if ntp == "on":
            snapshot.ntp_on = True
        elif ntp == "off":
            snapshot.ntp_on = False
        if address:
            snapshot.ntp_address = address
        if offset:
            snapshot.tz_offset = offset

    return snapshot


def parse_uptime(text: str) -> Optional[timedelta]:
    """Parse ``2d 01h30m0s`` style uptime; ``None`` when unusable or not positive."""

    parts = text.replace(" ", "").split("d")
    try:
        uptime = parse_duration(parts[-1])
    except ValueError as exc:
        logger.warning("error decoding status.xml uptime %r: %s", text, exc)
        return None
    if len(parts) > 1:
        try:
            days = _parse_int(parts[0])
        except ValueError as exc:
            logger.warning("error decoding status.xml uptime days %r: %s", text, exc)
            return None
        uptime += timedelta(days=days)
    if uptime <= timedelta(0):
        return None
    return uptime


def parse_panel_temperatures(text: str) -> List[float]:
    """Parse ``label:77.0F,label:25.0C,`` into Celsius values, skipping bad items."""

    values: List[float] = []
    for item in _trim_suffix(text, ",").split(","):
        reading = item.split(":")[-1]
        unit = reading[-1:]
        try:
            value = float(reading[:-2])
        except ValueError as exc:
            logger.warning("error decoding status.xml panel temperature %r: %s", item, exc)
            continue
        if unit == "F":
            value = (value - 32.0) * 5.0 / 9.0
        values.append(value)
    return values


def parse_intensities(text: str) -> List[int]:
    """Parse ``1:100,2:200,`` into channel intensities.

    Any bad token discards the whole list so a partial vector is never commanded.
    """

    values: List[int] = []
    for item in _trim_suffix(text, ",").split(","):
        token = item.split(":")[-1]
        try:
            values.append(_parse_int(token))
        except ValueError as exc:
            logger.warning("error decoding status.xml intensity %r: %s", item, exc)
            return []
    return values


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    return int(text)


def _collect_elements(root: ET.Element) -> Dict[str, str]:
    raw = {name: "" for name in STATUS_ELEMENTS}
    for child in root:
        if child.tag in raw and not raw[child.tag]:
            raw[child.tag] = child.text or ""
    return raw


def _padded_split(text: str, separator: str, width: int = 3) -> List[str]:
    parts = text.split(separator)[:width]
    return parts + [""] * (width - len(parts))


def _trim_suffix(text: str, suffix: str) -> str:
    if text.endswith(suffix):
        return text[: -len(suffix)]
    return text
