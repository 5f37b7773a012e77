from __future__ import annotations

import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import List

import pytest

from heliospectra.errors import ConfigError
from heliospectra.schedule import NULL_TARGET_FLOAT, ConditionsRunner, TimePoint, load_conditions
from heliospectra.schedule.conditions import parse_datetime, parse_target


class FakeClock:
    """Wall clock that only moves when the runner sleeps."""

    def __init__(self, now: datetime) -> None:
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> datetime:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "conditions.csv"
    path.write_text(text, encoding="utf-8")
    return path


def _hourly(day: datetime, hours: List[int]) -> List[TimePoint]:
    return [TimePoint(day.replace(hour=hour), (float(hour),)) for hour in hours]


def test_load_conditions_orders_channels_by_number(tmp_path) -> None:
    path = _write(
        tmp_path,
        "datetime,channel-2,temperature,channel-1,channel-3\n"
        "2024-05-10 06:00:00,20,22.5,10,\n"
        "2024-05-10 18:00:00,0,22.5,5.5,null\n",
    )

    points = load_conditions(path)

    assert [point.datetime for point in points] == [datetime(2024, 5, 10, 6), datetime(2024, 5, 10, 18)]
    assert points[0].channels == (10.0, 20.0, NULL_TARGET_FLOAT)
    assert points[1].channels == (5.5, 0.0, NULL_TARGET_FLOAT)


def test_load_conditions_accepts_day_first_dates_and_bom(tmp_path) -> None:
    path = tmp_path / "conditions.csv"
    path.write_text("\ufeffDate,Channel_1\n10/05/2024 06:00,12\n\n", encoding="utf-8")

    points = load_conditions(path)

    assert points == [TimePoint(datetime(2024, 5, 10, 6), (12.0,))]


@pytest.mark.parametrize(
    "text, message",
    [
        ("when,channel-1\n2024-05-10 06:00,1\n", "no datetime column"),
        ("datetime,temperature\n2024-05-10 06:00,1\n", "no channel columns"),
        ("datetime,channel-1\n2024-05-10 06:00,warm\n", ":2:"),
        ("datetime,channel-1\nyesterday,1\n", ":2:"),
        ("datetime,channel-1\n2024-05-10 07:00,1\n2024-05-10 06:00,1\n", "chronological"),
        ("datetime,channel-1\n", "no timepoints"),
    ],
)
def test_load_conditions_rejects_bad_files(tmp_path, text: str, message: str) -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_conditions(_write(tmp_path, text))
    assert message in str(exc_info.value)


def test_load_conditions_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_conditions(tmp_path / "missing.csv")


def test_parse_helpers() -> None:
    assert parse_datetime("2024-05-10T06:00:00") == datetime(2024, 5, 10, 6)
    assert parse_datetime("2024/05/10 06:30") == datetime(2024, 5, 10, 6, 30)
    assert parse_target(" NaN ") == NULL_TARGET_FLOAT
    assert parse_target("") == NULL_TARGET_FLOAT
    assert parse_target("-1") == -1.0
    with pytest.raises(ValueError):
        parse_datetime("tomorrow")


def test_runner_starts_at_most_recent_due_timepoint() -> None:
    day = datetime(2024, 5, 10)
    clock = FakeClock(day.replace(hour=9, minute=30))
    ran: List[datetime] = []

    runner = ConditionsRunner(
        _hourly(day, [8, 9, 10, 11]),
        lambda point: ran.append(point.datetime) or True,
        clock=clock,
        sleep=clock.sleep,
    )

    assert runner.run() == 3
    assert ran == [day.replace(hour=9), day.replace(hour=10), day.replace(hour=11)]
    assert clock.sleeps == [1800.0, 3600.0]


def test_runner_retries_failed_timepoint_after_backoff() -> None:
    day = datetime(2024, 5, 10)
    clock = FakeClock(day.replace(hour=9))
    results = [False, False, True]
    calls: List[datetime] = []

    def callback(point: TimePoint) -> bool:
        calls.append(point.datetime)
        return results.pop(0)

    runner = ConditionsRunner(_hourly(day, [9]), callback, retry_backoff_s=10.0, clock=clock, sleep=clock.sleep)

    assert runner.run() == 1
    assert calls == [day.replace(hour=9)] * 3
    assert clock.sleeps == [10.0, 10.0]


def test_runner_abandons_timepoint_once_next_is_due(caplog) -> None:
    caplog.set_level("WARNING")
    day = datetime(2024, 5, 10)
    clock = FakeClock(day.replace(hour=9, minute=30))
    ran: List[datetime] = []

    def callback(point: TimePoint) -> bool:
        if point.datetime.hour == 9:
            return False
        ran.append(point.datetime)
        return True

    runner = ConditionsRunner(
        _hourly(day, [8, 9, 10, 11]), callback, retry_backoff_s=1200.0, clock=clock, sleep=clock.sleep
    )

    assert runner.run() == 2
    assert runner.abandoned == 1
    assert ran == [day.replace(hour=10), day.replace(hour=11)]
    assert clock.sleeps == [1200.0, 1200.0, 3000.0]
    assert "abandoning timepoint" in caplog.text


def test_runner_loops_first_day_from_today() -> None:
    first_day = datetime(2020, 1, 1)
    timepoints = [
        TimePoint(first_day.replace(hour=6), (1.0,)),
        TimePoint(first_day.replace(hour=18), (2.0,)),
        TimePoint(datetime(2020, 1, 2, 6), (3.0,)),
    ]
    clock = FakeClock(datetime(2024, 5, 10, 12))
    ran: List[TimePoint] = []
    runner: ConditionsRunner

    def callback(point: TimePoint) -> bool:
        ran.append(point)
        if len(ran) == 3:
            runner.stop()
        return True

    runner = ConditionsRunner(timepoints, callback, loop_first_day=True, clock=clock, sleep=clock.sleep)

    assert runner.run() == 3
    assert ran == [
        TimePoint(datetime(2024, 5, 10, 6), (1.0,)),
        TimePoint(datetime(2024, 5, 10, 18), (2.0,)),
        TimePoint(datetime(2024, 5, 11, 6), (1.0,)),
    ]


def test_runner_returns_when_stopped_while_waiting() -> None:
    stop = threading.Event()
    future = datetime.now() + timedelta(hours=1)
    runner = ConditionsRunner([TimePoint(future, (1.0,))], lambda point: True, stop_event=stop)

    timer = threading.Timer(0.05, stop.set)
    timer.start()
    try:
        assert runner.run() == 0
    finally:
        timer.cancel()


def test_runner_requires_timepoints() -> None:
    with pytest.raises(ValueError):
        ConditionsRunner([], lambda point: True)
