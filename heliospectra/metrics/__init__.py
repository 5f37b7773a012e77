"""Metrics publishing."""
from __future__ import annotations

from .publisher import Measurement, MetricsPublisher, to_measurement

__all__ = ["Measurement", "MetricsPublisher", "to_measurement"]
