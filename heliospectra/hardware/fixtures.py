"""Fixture families and their channel wavelength labels.

The control surface does not report which wavelength sits on which channel, so
the family is inferred from the number of channels in the status read.
"""
from __future__ import annotations

import enum
import re
from typing import Optional, Tuple

KELVIN_LABELS = {"5700", "6500"}

_DIGITS = re.compile(r"\d+")


class FixtureFamily(enum.Enum):
    S7 = ("400nm", "420nm", "450nm", "530nm", "630nm", "660nm", "735nm")
    DYNA = ("380nm", "400nm", "420nm", "450nm", "530nm", "620nm", "660nm", "735nm", "5700K")
    S10 = ("370nm", "400nm", "420nm", "450nm", "530nm", "620nm", "660nm", "735nm", "850nm", "6500k")
    UNKNOWN = ()

    @property
    def labels(self) -> Tuple[str, ...]:
        return self.value

    @property
    def channel_count(self) -> int:
        return len(self.value)


def family_for_channel_count(count: int) -> FixtureFamily:
    for family in (FixtureFamily.S7, FixtureFamily.DYNA, FixtureFamily.S10):
        if family.channel_count == count:
            return family
    return FixtureFamily.UNKNOWN


def wavelength_from_label(label: str) -> int:
    """``450nm`` -> 450, ``6500k`` -> 6500."""

    match = _DIGITS.match(label.strip())
    if match is None:
        raise ValueError(f"label {label!r} does not start with a number")
    return int(match.group(0))


def metric_field_for_label(label: str) -> str:
    """Field name for a channel: ``<n>k`` for colour temperatures, ``<n>nm`` otherwise."""

    number = str(wavelength_from_label(label))
    if number in KELVIN_LABELS:
        return f"{number}k"
    return f"{number}nm"


def channel_index_for_wavelength(labels: Tuple[str, ...], wavelength_nm: int) -> Optional[int]:
    for index, label in enumerate(labels):
        try:
            if wavelength_from_label(label) == wavelength_nm:
                return index
        except ValueError:
            continue
    return None
