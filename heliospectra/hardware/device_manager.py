"""Device adapters for Heliospectra fixtures across their control surfaces."""
from __future__ import annotations

import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Protocol, Sequence

from ..config import DeviceConfig
from ..errors import DecodeError, ProtocolError, TransportError
from ..protocols.shell import (
    GET_ALL_POWER,
    GET_WAVELENGTHS,
    format_command,
    parse_ints,
    parse_words,
    set_all_command,
    set_one_command,
)
from ..protocols.status import StatusSnapshot, decode_status_xml
from .fixtures import FixtureFamily, channel_index_for_wavelength, family_for_channel_count
from .telnet import ShellConnection, SocketFactory

logger = logging.getLogger(__name__)

MIN_SETPOINT = 0
MAX_SETPOINT = 1000

Opener = Callable[..., Any]


class DeviceInterface(Protocol):
    """Common interface for fixture adapters.

    Transport and protocol failures surface as :class:`~heliospectra.errors.DeviceError`.
    """

    def read_status(self) -> StatusSnapshot:  # pragma: no cover - protocol signature
        ...

    def set_all(self, values: Sequence[int]) -> None:  # pragma: no cover - protocol signature
        ...

    def set_one(self, wavelength_nm: int, value: int) -> None:  # pragma: no cover - protocol signature
        ...


def check_setpoints(values: Sequence[int]) -> List[int]:
    """Reject anything that is not an integer in ``[0, 1000]``; callers clamp first."""

    checked: List[int] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"setpoints must be integers, got {type(value).__name__}")
        if not MIN_SETPOINT <= value <= MAX_SETPOINT:
            raise ValueError(f"setpoint {value} outside [{MIN_SETPOINT}, {MAX_SETPOINT}]")
        checked.append(value)
    return checked


def base_url(address: str) -> str:
    """Normalise ``192.168.1.3``, ``host:8080`` or ``http://host/x`` to ``http://host``."""

    candidate = address.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    parts = urllib.parse.urlsplit(candidate)
    if not parts.netloc:
        raise ValueError(f"Cannot derive a host from address '{address}'")
    return f"http://{parts.netloc}"


class HttpXmlInterface(DeviceInterface):
    """Status over ``GET /status.xml``, setpoints over ``GET /intensity.cgi``."""

    def __init__(self, config: DeviceConfig, opener: Optional[Opener] = None) -> None:
        self._config = config
        self._base = base_url(config.address)
        self._opener = opener or urllib.request.urlopen

    @property
    def status_url(self) -> str:
        return f"{self._base}/status.xml"

    def intensity_url(self, values: Sequence[int]) -> str:
        query = urllib.parse.urlencode({"int": ":".join(str(value) for value in values)}, safe=":")
        return f"{self._base}/intensity.cgi?{query}"

    def read_status(self) -> StatusSnapshot:
        payload = self._get(self.status_url)
        try:
            return decode_status_xml(payload)
        except DecodeError as exc:
            raise ProtocolError(str(exc)) from exc

    def set_all(self, values: Sequence[int]) -> None:
        checked = check_setpoints(values)
        if not checked:
            raise ValueError("set_all requires at least one setpoint")
        self._get(self.intensity_url(checked))

    def set_one(self, wavelength_nm: int, value: int) -> None:
        check_setpoints([value])
        current = self.read_status()
        family = family_for_channel_count(len(current.intensities))
        if family is FixtureFamily.UNKNOWN:
            raise ProtocolError(f"cannot address {wavelength_nm}nm on a fixture with {len(current.intensities)} channels")
        index = channel_index_for_wavelength(family.labels, wavelength_nm)
        if index is None:
            raise ProtocolError(f"fixture family {family.name} has no {wavelength_nm} channel")
        values = list(current.intensities)
        values[index] = value
        self.set_all(values)

    def _get(self, url: str) -> bytes:
        logger.debug("GET %s", url)
        try:
            with self._opener(url, timeout=self._config.timeout_s) as response:
                status = getattr(response, "status", 200)
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise TransportError(f"GET {url} returned HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        if not 200 <= status < 300:
            raise TransportError(f"GET {url} returned HTTP {status}")
        return body


class TelnetInterface(DeviceInterface):
    """Line-shell control surface; dials a fresh connection for every action."""

    def __init__(
        self,
        config: DeviceConfig,
        socket_factory: Optional[SocketFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._host = _host_only(config.address)
        self._socket_factory = socket_factory
        self._sleep = sleep

    def _connect(self) -> ShellConnection:
        return ShellConnection(
            self._host,
            self._config.port,
            timeout_s=self._config.timeout_s,
            settle_s=self._config.settle_s,
            socket_factory=self._socket_factory,
            sleep=self._sleep,
        )

    def read_status(self) -> StatusSnapshot:
        with self._connect() as shell:
            labels = parse_words(shell.checked_command(format_command(GET_WAVELENGTHS)))
            body = shell.checked_command(format_command(GET_ALL_POWER))
        powers = parse_ints(body)
        if not labels:
            raise ProtocolError("getWl returned no wavelengths")
        if len(powers) != len(labels):
            raise ProtocolError(f"getAllRelPower returned {len(powers)} values for {len(labels)} wavelengths")
        return StatusSnapshot(intensities=powers, channel_labels=tuple(labels))

    def set_all(self, values: Sequence[int]) -> None:
        checked = check_setpoints(values)
        with self._connect() as shell:
            shell.checked_command(set_all_command(checked))

    def set_one(self, wavelength_nm: int, value: int) -> None:
        check_setpoints([value])
        with self._connect() as shell:
            shell.checked_command(set_one_command(wavelength_nm, value))


class SimulatedInterface(DeviceInterface):
    """In-memory fixture used for bench runs and tests."""

    def __init__(self, config: DeviceConfig) -> None:
        self._config = config
        family = family_for_channel_count(config.sim_channels)
        if family is FixtureFamily.UNKNOWN:
            raise ValueError(f"no fixture family has {config.sim_channels} channels")
        self._family = family
        self._intensities = [0] * family.channel_count
        self._started = datetime.now()
        self.writes: List[List[int]] = []

    @property
    def intensities(self) -> List[int]:
        return list(self._intensities)

    def read_status(self) -> StatusSnapshot:
        now = datetime.now()
        uptime = now - self._started
        return StatusSnapshot(
            light_time=now.replace(microsecond=0),
            light_ok=True,
            uptime=uptime if uptime > timedelta(0) else timedelta(0),
            panel_temperatures_c=[25.0],
            intensities=list(self._intensities),
            control_mode="sim",
        )

    def set_all(self, values: Sequence[int]) -> None:
        checked = check_setpoints(values)
        if len(checked) != len(self._intensities):
            raise ProtocolError(f"expected {len(self._intensities)} setpoints, got {len(checked)}")
        self._intensities = checked
        self.writes.append(list(checked))

    def set_one(self, wavelength_nm: int, value: int) -> None:
        check_setpoints([value])
        index = channel_index_for_wavelength(self._family.labels, wavelength_nm)
        if index is None:
            raise ProtocolError(f"fixture family {self._family.name} has no {wavelength_nm} channel")
        self._intensities[index] = value
        self.writes.append(list(self._intensities))


def create_interface(
    config: DeviceConfig,
    *,
    opener: Optional[Opener] = None,
    socket_factory: Optional[SocketFactory] = None,
) -> DeviceInterface:
    """Create an interface instance based on *config.transport*."""

    transport = (config.transport or "http").lower()
    if transport == "http":
        return HttpXmlInterface(config, opener=opener)
    if transport == "telnet":
        return TelnetInterface(config, socket_factory=socket_factory)
    if transport == "sim":
        return SimulatedInterface(config)
    raise ValueError(f"Unsupported transport '{config.transport}'")


def _host_only(address: str) -> str:
    candidate = address.strip()
    if "://" in candidate:
        candidate = urllib.parse.urlsplit(candidate).hostname or ""
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]
    if not candidate:
        raise ValueError(f"Cannot derive a host from address '{address}'")
    return candidate
