"""Status snapshots as line-protocol measurements sent to a UDP collector."""
from __future__ import annotations

import logging
import math
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from ..config import MetricsConfig, parse_host_port
from ..errors import MetricsError
from ..hardware.fixtures import metric_field_for_label
from ..protocols.status import StatusSnapshot

logger = logging.getLogger(__name__)

FieldValue = Union[bool, int, float, str]


def _escape_key(text: str) -> str:
    return text.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def _escape_measurement(text: str) -> str:
    return text.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def _format_field(value: FieldValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(slots=True)
class Measurement:
    name: str
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, FieldValue] = field(default_factory=dict)
    timestamp_ns: Optional[int] = None

    def add_tag(self, key: str, value: str) -> None:
        if value:
            self.tags[key] = value

    def add_field(self, key: str, value: FieldValue) -> None:
        if isinstance(value, float) and not math.isfinite(value):
            logger.debug("dropping non-finite field %s=%r", key, value)
            return
        self.fields[key] = value

    def to_line(self) -> str:
        if not self.fields:
            raise MetricsError(f"measurement '{self.name}' has no fields")
        head = _escape_measurement(self.name)
        for key in sorted(self.tags):
            head += f",{_escape_key(key)}={_escape_key(self.tags[key])}"
        body = ",".join(f"{_escape_key(key)}={_format_field(value)}" for key, value in self.fields.items())
        line = f"{head} {body}"
        if self.timestamp_ns is not None:
            line += f" {self.timestamp_ns}"
        return line


def _add_indexed(measurement: Measurement, basename: str, values: Sequence[FieldValue]) -> None:
    for index, value in enumerate(values):
        measurement.add_field(f"{basename}_{index}", value)


def _add_timestamp(measurement: Measurement, key: str, value: Optional[datetime]) -> None:
    if value is not None:
        measurement.add_field(key, int(value.timestamp()))


def to_measurement(
    snapshot: StatusSnapshot,
    name: str,
    host_tag: str = "",
    group_tag: str = "",
    did_tag: str = "",
    timestamp_ns: Optional[int] = None,
) -> Measurement:
    """Map every snapshot field onto a measurement.

    Snapshots carrying device-reported ``channel_labels`` come from the line shell,
    which reports only channel powers; those are named after their wavelength.
    """

    measurement = Measurement(name, timestamp_ns=timestamp_ns if timestamp_ns is not None else time.time_ns())
    measurement.add_tag("host", host_tag)
    measurement.add_tag("group", group_tag)
    measurement.add_tag("did", did_tag)

    if snapshot.channel_labels:
        for label, value in zip(snapshot.channel_labels, snapshot.intensities):
            measurement.add_field(metric_field_for_label(label), value)
        _add_indexed(measurement, "target_intensity", snapshot.target_intensities)
        measurement.add_field("executed_timepoint", snapshot.executed_timepoint)
        return measurement

    _add_timestamp(measurement, "light_time", snapshot.light_time)
    measurement.add_field("schedule_running", snapshot.schedule_running)
    measurement.add_field("light_ok", snapshot.light_ok)
    measurement.add_field("uptime", int(snapshot.uptime.total_seconds()))
    _add_timestamp(measurement, "last_change_time", snapshot.last_change_time)
    measurement.add_field("last_change_reason", snapshot.last_change_reason)
    measurement.add_field("last_change_ip", snapshot.last_change_ip)
    measurement.add_field("last_change_type", snapshot.last_change_type)
    _add_indexed(measurement, "panel_temperature_c", snapshot.panel_temperatures_c)
    _add_indexed(measurement, "intensity", snapshot.intensities)
    _add_indexed(measurement, "target_intensity", snapshot.target_intensities)
    measurement.add_field("control_mode", snapshot.control_mode)
    measurement.add_field("ui_lights_on_at_powerup", snapshot.ui_lights_on_at_powerup)
    measurement.add_field("ui_status_indicator_led", snapshot.ui_status_indicator_led)
    measurement.add_field("ui_schedule_lock_on", snapshot.ui_schedule_lock_on)
    measurement.add_field("ui_schedule_lock_message", snapshot.ui_schedule_lock_message)
    measurement.add_field("ui_schedule_lock_password", snapshot.ui_schedule_lock_password)
    measurement.add_field("ntp_on", snapshot.ntp_on)
    measurement.add_field("ntp_address", snapshot.ntp_address)
    measurement.add_field("tz_offset", snapshot.tz_offset)
    measurement.add_field("executed_timepoint", snapshot.executed_timepoint)
    return measurement


class MetricsPublisher:
    """Synchronous UDP line-protocol client; one datagram per snapshot."""

    def __init__(
        self,
        config: MetricsConfig,
        measurement: str,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._measurement = measurement
        self._sleep = sleep
        self._host, self._port = parse_host_port(config.telegraf_host)
        self.sent = 0

    @property
    def target(self) -> Tuple[str, int]:
        return self._host, self._port

    def build_line(self, snapshot: StatusSnapshot) -> str:
        return to_measurement(
            snapshot,
            self._measurement,
            host_tag=self._config.host_tag,
            group_tag=self._config.group_tag,
            did_tag=self._config.did_tag,
        ).to_line()

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Send *snapshot*; raise :class:`MetricsError` if it cannot be delivered."""

        payload = (self.build_line(snapshot) + "\n").encode("utf-8")
        try:
            family, socktype, proto, _, address = socket.getaddrinfo(
                self._host, self._port, type=socket.SOCK_DGRAM
            )[0]
            with socket.socket(family, socktype, proto) as sock:
                sock.sendto(payload, address)
        except OSError as exc:
            raise MetricsError(f"could not send metrics to {self._host}:{self._port}: {exc}") from exc
        self.sent += 1

    def publish_with_retry(self, snapshot: StatusSnapshot) -> bool:
        """Try :meth:`publish` up to ``max_attempts`` times; ``False`` once exhausted."""

        attempts = self._config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.publish(snapshot)
                return True
            except MetricsError as exc:
                logger.error("metrics attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts and self._config.retry_backoff_s > 0:
                    self._sleep(self._config.retry_backoff_s)
        return False
