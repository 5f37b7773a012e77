"""Conditions schedules."""
from __future__ import annotations

from .conditions import NULL_TARGET_FLOAT, NULL_TARGET_INT, ConditionsRunner, TimePoint, load_conditions

__all__ = ["ConditionsRunner", "NULL_TARGET_FLOAT", "NULL_TARGET_INT", "TimePoint", "load_conditions"]
