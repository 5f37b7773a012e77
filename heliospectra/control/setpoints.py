"""Projection of schedule rows onto fixture setpoints."""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ..errors import DeviceError
from ..hardware.device_manager import MAX_SETPOINT, MIN_SETPOINT, DeviceInterface
from ..hardware.fixtures import wavelength_from_label
from ..schedule.conditions import NULL_TARGET_FLOAT

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLIER = 10.0
DEFAULT_COMMAND_GAP_S = 0.2


@dataclass(slots=True)
class SetpointPlan:
    """Targets for one timepoint and how they have to be written."""

    targets: List[int] = field(default_factory=list)
    commanded: List[bool] = field(default_factory=list)
    has_fallback: bool = False
    length_mismatch: Optional[str] = None

    @property
    def use_set_all(self) -> bool:
        return not self.has_fallback and self.length_mismatch is None


def is_null_target(value: float) -> bool:
    """True for the schedule's "leave unchanged" sentinel and any negative value."""

    return value == NULL_TARGET_FLOAT or value < 0 or math.isnan(value)


def clamp(value: int, lower: int = MIN_SETPOINT, upper: int = MAX_SETPOINT) -> int:
    return max(lower, min(upper, value))


def scale_target(value: float, multiplier: float) -> int:
    """Scale, truncate toward zero and clamp into the fixture's range."""

    scaled = value * multiplier
    if math.isnan(scaled) or scaled <= MIN_SETPOINT:
        return MIN_SETPOINT
    if scaled >= MAX_SETPOINT:
        return MAX_SETPOINT
    return clamp(int(scaled))


def project_setpoints(
    channels: Sequence[float],
    intensities: Sequence[int],
    multiplier: float = DEFAULT_MULTIPLIER,
) -> SetpointPlan:
    """Build the target vector for *channels* against the fixture's current *intensities*.

    The result covers ``min(len(channels), len(intensities))`` channels.  Null or
    negative targets keep the current intensity and are flagged as not commanded.
    """

    plan = SetpointPlan()
    if len(channels) < len(intensities):
        plan.length_mismatch = "fewer"
        logger.warning(
            "fewer targets than channels (%d < %d), only the first %d will be commanded",
            len(channels),
            len(intensities),
            len(channels),
        )
    elif len(channels) > len(intensities):
        plan.length_mismatch = "more"
        logger.warning(
            "more targets than channels (%d > %d), extra targets discarded",
            len(channels),
            len(intensities),
        )

    for target, current in zip(channels, intensities):
        if is_null_target(target):
            plan.targets.append(int(current))
            plan.commanded.append(False)
            plan.has_fallback = True
            continue
        plan.targets.append(scale_target(target, multiplier))
        plan.commanded.append(True)
    return plan


def apply_setpoints(
    interface: DeviceInterface,
    plan: SetpointPlan,
    labels: Sequence[str],
    gap_s: float = DEFAULT_COMMAND_GAP_S,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Write *plan* to *interface*; return the number of channels written.

    A plain plan goes out as one ``set_all`` whose failure propagates.  Plans with
    fallbacks or a length mismatch are written channel by channel, *gap_s* apart,
    and a failing channel is logged and skipped.
    """

    if plan.use_set_all:
        interface.set_all(plan.targets)
        return len(plan.targets)

    written = 0
    first = True
    for index, (value, commanded) in enumerate(zip(plan.targets, plan.commanded)):
        if not commanded:
            continue
        try:
            wavelength = wavelength_from_label(labels[index])
        except (IndexError, ValueError) as exc:
            logger.error("no wavelength for channel %d: %s", index + 1, exc)
            continue
        if not first and gap_s > 0:
            sleep(gap_s)
        first = False
        try:
            interface.set_one(wavelength, value)
        except DeviceError as exc:
            logger.error("failed to set channel %d (%s) to %d: %s", index + 1, labels[index], value, exc)
            continue
        written += 1
    return written
