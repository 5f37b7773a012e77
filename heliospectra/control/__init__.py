"""Setpoint projection and the control loop."""
from __future__ import annotations

from .service import ControlService, ServiceStats, TimepointStage
from .setpoints import SetpointPlan, apply_setpoints, project_setpoints

__all__ = [
    "ControlService",
    "ServiceStats",
    "SetpointPlan",
    "TimepointStage",
    "apply_setpoints",
    "project_setpoints",
]
