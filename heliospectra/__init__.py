"""Control agent for Heliospectra multi-channel horticultural lights."""
from __future__ import annotations

from .config import AgentConfig, DeviceConfig, MetricsConfig, ScheduleConfig, load_config

__all__ = ["AgentConfig", "DeviceConfig", "MetricsConfig", "ScheduleConfig", "load_config"]
