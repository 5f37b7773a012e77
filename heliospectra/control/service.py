"""Control loop: periodic metrics and schedule-driven setpoint dispatch."""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import AgentConfig
from ..errors import DeviceError, ValidationError
from ..hardware import DeviceInterface, create_interface
from ..hardware.fixtures import FixtureFamily, family_for_channel_count
from ..metrics.publisher import MetricsPublisher
from ..protocols.status import StatusSnapshot
from ..schedule.conditions import ConditionsRunner, TimePoint, load_conditions
from ..timeutil import format_duration
from .setpoints import apply_setpoints, project_setpoints

logger = logging.getLogger(__name__)


class TimepointStage(enum.Enum):
    READ = "read"
    PROJECT = "project"
    WRITE = "write"
    PUBLISH = "publish"
    DONE = "done"
    RETRY = "retry"


@dataclass(slots=True)
class ServiceStats:
    ticks: int = 0
    read_failures: int = 0
    publishes: int = 0
    publish_failures: int = 0
    timepoints_executed: int = 0
    timepoints_skipped: int = 0
    timepoints_retried: int = 0
    last_stage: Optional[TimepointStage] = None
    last_timepoint_at: Optional[datetime] = None
    last_targets: List[int] = field(default_factory=list)


class ControlService:
    """Run the agent in the mode selected by its configuration."""

    def __init__(
        self,
        config: AgentConfig,
        interface_factory: Optional[Callable[[], DeviceInterface]] = None,
        publisher: Optional[MetricsPublisher] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._interface_factory = interface_factory or (lambda: create_interface(config.device))
        self._interface: Optional[DeviceInterface] = None
        if publisher is None and config.metrics.enabled:
            publisher = MetricsPublisher(config.metrics, config.measurement_name, sleep=sleep)
        self._publisher = publisher if config.metrics.enabled else None
        self._sleep = sleep
        self._stop = threading.Event()
        self._stats = ServiceStats()
        self._ticker: Optional[threading.Thread] = None

    @property
    def stats(self) -> ServiceStats:
        return self._stats

    @property
    def interface(self) -> DeviceInterface:
        if self._interface is None:
            self._interface = self._interface_factory()
        return self._interface

    def request_stop(self) -> None:
        self._stop.set()

    def run(self) -> None:
        mode = self._config.mode
        if mode == "schedule":
            self.run_schedule()
        elif mode == "metrics":
            self.run_metrics_loop()
        else:
            logger.warning("metrics disabled and no conditions to run, nothing to do")

    # metrics-only mode

    def collect_metrics(self) -> bool:
        """One metrics tick: read the fixture and publish; never raises."""

        self._stats.ticks += 1
        try:
            snapshot = self.interface.read_status()
        except DeviceError as exc:
            self._stats.read_failures += 1
            logger.error("status read failed: %s", exc)
            return False
        return self._publish(snapshot)

    def run_metrics_loop(self) -> None:
        """Tick now, then every ``interval_s`` on a worker thread until stopped.

        An interval of zero reads one metric and returns.
        """

        interval = self._config.schedule.interval_s
        self.collect_metrics()
        if interval <= 0:
            return
        logger.info("collecting metrics every %s", format_duration(timedelta(seconds=interval)))
        self._ticker = threading.Thread(target=self._tick_loop, args=(interval,), name="metrics-ticker", daemon=True)
        self._ticker.start()
        try:
            while self._ticker.is_alive():
                self._ticker.join(timeout=0.5)
        finally:
            self._stop.set()

    def _tick_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.collect_metrics()

    # schedule-driven mode

    def run_schedule(self, timepoints: Optional[Sequence[TimePoint]] = None) -> int:
        schedule = self._config.schedule
        if timepoints is None:
            assert schedule.conditions_path is not None
            timepoints = load_conditions(schedule.conditions_path)
        runner = ConditionsRunner(
            timepoints,
            self.run_timepoint,
            loop_first_day=schedule.loop_first_day,
            retry_backoff_s=schedule.retry_backoff_s,
            stop_event=self._stop,
        )
        return runner.run()

    def run_timepoint(self, point: TimePoint) -> bool:
        """Apply *point* to the fixture.

        Returns ``True`` when the schedule should advance and ``False`` when the
        timepoint should be retried.
        """

        stats = self._stats
        stats.last_stage = TimepointStage.READ
        try:
            snapshot = self.interface.read_status()
        except DeviceError as exc:
            logger.error("status read failed, retrying timepoint %s: %s", point.datetime.isoformat(), exc)
            return self._retry(self._config.schedule.read_retry_delay_s)

        stats.last_stage = TimepointStage.PROJECT
        labels = self._channel_labels(snapshot)
        if not labels:
            logger.error("got incorrect number of intensities from device: %d", len(snapshot.intensities))
            return self._retry(0.0)
        try:
            self._check_width(point, labels)
        except ValidationError as exc:
            logger.error("%s, ignoring timepoint", exc)
            stats.timepoints_skipped += 1
            stats.last_stage = TimepointStage.DONE
            return True

        plan = project_setpoints(point.channels, snapshot.intensities, self._config.schedule.multiplier)

        stats.last_stage = TimepointStage.WRITE
        try:
            apply_setpoints(
                self.interface,
                plan,
                labels,
                gap_s=self._config.device.command_gap_s,
                sleep=self._sleep,
            )
        except DeviceError as exc:
            logger.error("setting intensities failed: %s", exc)
            return self._retry(0.0)

        snapshot.executed_timepoint = True
        snapshot.target_intensities = list(plan.targets)
        stats.last_timepoint_at = point.datetime
        stats.last_targets = list(plan.targets)
        logger.info("ran %s %s", point.datetime.isoformat(), plan.targets)

        stats.last_stage = TimepointStage.PUBLISH
        self._publish(snapshot)

        stats.timepoints_executed += 1
        stats.last_stage = TimepointStage.DONE
        return True

    def _channel_labels(self, snapshot: StatusSnapshot) -> Tuple[str, ...]:
        """Labels to address channels by; empty when the fixture family is unknown."""

        family = family_for_channel_count(len(snapshot.intensities))
        if family is FixtureFamily.UNKNOWN:
            return ()
        if snapshot.channel_labels:
            return tuple(snapshot.channel_labels)
        return family.labels

    def _check_width(self, point: TimePoint, labels: Sequence[str]) -> None:
        if len(point.channels) == len(labels):
            return
        message = f"timepoint/device {len(point.channels)}/{len(labels)} channel number mismatch"
        if self._config.schedule.strict_channel_count:
            raise ValidationError(message)
        logger.warning("%s, commanding the overlapping channels", message)

    def _retry(self, delay_s: float) -> bool:
        self._stats.timepoints_retried += 1
        self._stats.last_stage = TimepointStage.RETRY
        if delay_s > 0:
            self._sleep(delay_s)
        return False

    def _publish(self, snapshot: StatusSnapshot) -> bool:
        if self._publisher is None:
            return True
        if self._publisher.publish_with_retry(snapshot):
            self._stats.publishes += 1
            return True
        self._stats.publish_failures += 1
        return False

