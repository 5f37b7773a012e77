"""Conditions files and the runner that walks them in wall-clock time."""
from __future__ import annotations

import csv
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from ..errors import ConfigError

logger = logging.getLogger(__name__)

# -max(float32) / min(int32): far outside anything a fixture channel can take
NULL_TARGET_FLOAT = -3.4028234663852886e38
NULL_TARGET_INT = -(2**31)

DATETIME_COLUMNS = ("datetime", "date", "timestamp")
NULL_CELLS = {"", "nan", "null", "none"}

_CHANNEL_COLUMN = re.compile(r"channel[-_ ]?(\d+)$")

_FALLBACK_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
)


@dataclass(slots=True, frozen=True)
class TimePoint:
    """One row of a conditions file."""

    datetime: datetime
    channels: Tuple[float, ...]


TimepointCallback = Callable[[TimePoint], bool]


def parse_datetime(text: str) -> datetime:
    candidate = text.strip()
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        parsed = None
        for fmt in _FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(candidate, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            raise ValueError(f"unrecognised datetime {text!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_target(text: str) -> float:
    candidate = text.strip()
    if candidate.lower() in NULL_CELLS:
        return NULL_TARGET_FLOAT
    return float(candidate)


def load_conditions(path: Path) -> List[TimePoint]:
    """Read a conditions CSV into chronologically ordered timepoints.

    The header must name a ``datetime`` column and one or more ``channel-N``
    columns; channels are ordered by N regardless of column order.
    """

    resolved = Path(path).expanduser()
    if not resolved.exists():
        raise ConfigError(f"Conditions file not found: {resolved}")
    with resolved.open("r", newline="", encoding="utf-8-sig") as handle:
        reader = csv.reader(handle)
        header = next(reader, None)
        if not header:
            raise ConfigError(f"{resolved}: missing header row")
        columns = [column.strip().lower() for column in header]
        date_index = next((columns.index(name) for name in DATETIME_COLUMNS if name in columns), None)
        if date_index is None:
            raise ConfigError(f"{resolved}: no datetime column in header")
        channel_columns = sorted(
            (int(match.group(1)), index)
            for index, column in enumerate(columns)
            if (match := _CHANNEL_COLUMN.match(column))
        )
        if not channel_columns:
            raise ConfigError(f"{resolved}: no channel columns in header")

        points: List[TimePoint] = []
        for line_number, row in enumerate(reader, start=2):
            if not row or all(not cell.strip() for cell in row):
                continue
            try:
                when = parse_datetime(row[date_index])
                channels = tuple(
                    parse_target(row[index] if index < len(row) else "") for _, index in channel_columns
                )
            except (IndexError, ValueError) as exc:
                raise ConfigError(f"{resolved}:{line_number}: {exc}") from exc
            if points and when < points[-1].datetime:
                raise ConfigError(f"{resolved}:{line_number}: timepoints are not in chronological order")
            points.append(TimePoint(when, channels))

    if not points:
        raise ConfigError(f"{resolved}: no timepoints")
    logger.info("loaded %d timepoints with %d channels from %s", len(points), len(channel_columns), resolved)
    return points


class ConditionsRunner:
    """Call *callback* for each timepoint once its wall-clock time arrives.

    A ``False`` from the callback retries the same timepoint after
    *retry_backoff_s* until it succeeds or the next timepoint falls due.
    """

    def __init__(
        self,
        timepoints: Sequence[TimePoint],
        callback: TimepointCallback,
        loop_first_day: bool = False,
        retry_backoff_s: float = 10.0,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Optional[Callable[[float], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if not timepoints:
            raise ValueError("ConditionsRunner needs at least one timepoint")
        self._timepoints = list(timepoints)
        self._callback = callback
        self._loop_first_day = loop_first_day
        self._retry_backoff_s = max(retry_backoff_s, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._stop = stop_event or threading.Event()
        self.executed = 0
        self.abandoned = 0

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def schedule(self) -> Iterator[TimePoint]:
        """Timepoints in order; with looping, the first day repeated forever."""

        if not self._loop_first_day:
            yield from self._timepoints
            return
        first_midnight = datetime.combine(self._timepoints[0].datetime.date(), datetime.min.time())
        first_day = [
            point for point in self._timepoints if point.datetime - first_midnight < timedelta(days=1)
        ]
        day = datetime.combine(self._clock().date(), datetime.min.time()) - timedelta(days=1)
        while True:
            for point in first_day:
                yield TimePoint(day + (point.datetime - first_midnight), point.channels)
            day += timedelta(days=1)

    def run(self) -> int:
        """Walk the schedule; return the number of timepoints executed."""

        upcoming = self.schedule()
        current = next(upcoming, None)
        following = next(upcoming, None)
        while current is not None and not self.stopped:
            now = self._clock()
            # catch up to the most recent timepoint that is already due
            while following is not None and following.datetime <= now:
                logger.debug("skipping stale timepoint %s", current.datetime.isoformat())
                current, following = following, next(upcoming, None)

            delay = (current.datetime - now).total_seconds()
            if delay > 0:
                logger.info("next timepoint %s in %.0fs", current.datetime.isoformat(), delay)
                if self._wait(delay):
                    break

            if not self._execute(current, following):
                break
            current, following = following, next(upcoming, None)
        return self.executed

    def _execute(self, point: TimePoint, following: Optional[TimePoint]) -> bool:
        """Run *point* until it succeeds or is superseded; ``False`` when stopped."""

        while not self.stopped:
            if self._callback(point):
                self.executed += 1
                return True
            if following is not None and following.datetime <= self._clock():
                logger.warning(
                    "abandoning timepoint %s, next timepoint %s is already due",
                    point.datetime.isoformat(),
                    following.datetime.isoformat(),
                )
                self.abandoned += 1
                return True
            logger.warning(
                "timepoint %s failed, retrying in %.1fs", point.datetime.isoformat(), self._retry_backoff_s
            )
            if self._wait(self._retry_backoff_s):
                return False
        return False

    def _wait(self, seconds: float) -> bool:
        """Sleep for *seconds*; return ``True`` if a stop was requested."""

        if self._sleep is not None:
            if seconds > 0:
                self._sleep(seconds)
            return self.stopped
        return self._stop.wait(seconds) if seconds > 0 else self.stopped
