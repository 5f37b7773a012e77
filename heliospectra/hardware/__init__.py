"""Hardware abstraction helpers."""
from __future__ import annotations

from .device_manager import (
    DeviceInterface,
    HttpXmlInterface,
    SimulatedInterface,
    TelnetInterface,
    check_setpoints,
    create_interface,
)
from .fixtures import FixtureFamily, family_for_channel_count, metric_field_for_label, wavelength_from_label

__all__ = [
    "DeviceInterface",
    "FixtureFamily",
    "HttpXmlInterface",
    "SimulatedInterface",
    "TelnetInterface",
    "check_setpoints",
    "create_interface",
    "family_for_channel_count",
    "metric_field_for_label",
    "wavelength_from_label",
]
