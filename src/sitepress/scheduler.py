"""Cron-driven scheduling of pipeline stages.

Each stage runs on its own cadence (a 5- or 6-field cron expression) in
a worker thread, with an optional run at process startup.  A stage whose
previous run is still going is not started again.

Cron fields, 6-field form::

    second minute hour day-of-month month day-of-week

The 5-field form omits ``second`` (treated as ``0``).  Each field accepts
``*``, ``*/n``, ``a``, ``a-b``, ``a-b/n``, ``a/n`` and comma lists.
Day-of-week is 0-6 with Sunday as 0 (7 is also Sunday).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sitepress.config import SitepressConfig
from sitepress.pipeline.publish import PublishPipeline
from sitepress.pipeline.stages import StageDefinition, StageResult

logger = logging.getLogger(__name__)

MAX_CATCH_UP_SECONDS = 300

_FIELD_RANGES = (
    ("second", 0, 59),
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)


class CronError(ValueError):
    """Raised for an unparseable cron expression."""


def _parse_number(raw: str, name: str, low: int, high: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise CronError(f"Invalid {name} value: {raw!r}") from None
    if not low <= value <= high:
        raise CronError(f"{name} value {value} out of range {low}-{high}")
    return value


def _parse_field(raw: str, name: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in raw.split(","):
        if not part:
            raise CronError(f"Empty entry in {name} field: {raw!r}")
        step = 1
        if "/" in part:
            part, step_raw = part.split("/", 1)
            step = _parse_number(step_raw, f"{name} step", 1, high - low + 1)
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_raw, end_raw = part.split("-", 1)
            start = _parse_number(start_raw, name, low, high)
            end = _parse_number(end_raw, name, low, high)
            if start > end:
                raise CronError(f"Invalid {name} range: {part!r}")
        else:
            start = _parse_number(part, name, low, high)
            end = high if step > 1 else start
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """A parsed cron expression; ``matches`` checks a datetime to the second."""

    expression: str
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        fields = expression.split()
        if len(fields) == 5:
            fields = ["0", *fields]
        if len(fields) != 6:
            raise CronError(
                f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"
            )
        parsed = [
            _parse_field(raw, name, low, high)
            for raw, (name, low, high) in zip(fields, _FIELD_RANGES, strict=True)
        ]
        weekdays = frozenset(0 if d == 7 else d for d in parsed[5])
        return cls(
            expression=expression,
            seconds=parsed[0],
            minutes=parsed[1],
            hours=parsed[2],
            days=parsed[3],
            months=parsed[4],
            weekdays=weekdays,
            day_restricted=fields[3] != "*",
            weekday_restricted=fields[5] != "*",
        )

    def matches(self, moment: datetime) -> bool:
        if (
            moment.second not in self.seconds
            or moment.minute not in self.minutes
            or moment.hour not in self.hours
            or moment.month not in self.months
        ):
            return False
        day_ok = moment.day in self.days
        weekday_ok = (moment.weekday() + 1) % 7 in self.weekdays
        # Classic cron: when both day fields are restricted either may match.
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok


@dataclass(frozen=True)
class ScheduleEntry:
    stage: str
    cadence: CronExpression
    run_on_startup: bool = False
    enabled: bool = True


def schedule_entries(
    stages: list[StageDefinition], config: SitepressConfig | None = None
) -> list[ScheduleEntry]:
    """One entry per stage; ``[schedule.<stage>] enabled = false`` disables it.

    Raises:
        CronError: If a cadence does not parse.
    """
    entries = []
    for stage in stages:
        override = config.schedule.get(stage.name) if config else None
        entries.append(
            ScheduleEntry(
                stage=stage.name,
                cadence=CronExpression.parse(stage.cadence),
                run_on_startup=stage.run_on_startup,
                enabled=override.enabled if override else True,
            )
        )
    return entries


class StageScheduler:
    """Drives a PublishPipeline from cron cadences."""

    def __init__(
        self,
        pipeline: PublishPipeline,
        entries: list[ScheduleEntry] | None = None,
        *,
        timeout: float | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._entries = {
            e.stage: e for e in (entries or schedule_entries(pipeline.stages))
        }
        self._timeout = timeout
        self._now_fn = now_fn or (lambda: datetime.now(tz=UTC))
        self._threads: dict[str, threading.Thread] = {}
        self._last_fired: dict[str, datetime] = {}
        self._last_checked: datetime | None = None

    @property
    def entries(self) -> list[ScheduleEntry]:
        return list(self._entries.values())

    def startup_stages(self) -> list[str]:
        return [e.stage for e in self._entries.values() if e.enabled and e.run_on_startup]

    def job(self, name: str) -> Callable[[], StageResult]:
        """A zero-argument callable running ``name`` through the pipeline."""
        self._pipeline.get(name)
        timeout = self._timeout

        def _run() -> StageResult:
            return self._pipeline.run_stage(name, timeout=timeout)

        _run.__name__ = f"run_{name}"
        return _run

    def due(self, now: datetime) -> list[str]:
        moment = now.replace(microsecond=0)
        return [
            e.stage for e in self._entries.values() if e.enabled and e.cadence.matches(moment)
        ]

    def is_running(self, name: str) -> bool:
        thread = self._threads.get(name)
        return thread is not None and thread.is_alive()

    def _launch(self, name: str) -> bool:
        if self.is_running(name):
            logger.info("Stage %s still running, not starting another run", name)
            return False
        thread = threading.Thread(
            target=self.job(name), name=f"sitepress-schedule-{name}", daemon=True
        )
        self._threads[name] = thread
        thread.start()
        return True

    def _window(self, moment: datetime) -> list[datetime]:
        last = self._last_checked
        if last is None or moment <= last:
            return [moment]
        start = max(last + timedelta(seconds=1), moment - timedelta(seconds=MAX_CATCH_UP_SECONDS))
        span = int((moment - start).total_seconds())
        return [start + timedelta(seconds=i) for i in range(span + 1)]

    def run_pending(self, now: datetime | None = None) -> list[str]:
        """Start every stage due since the previous check, up to ``now``.

        Seconds skipped between two checks (a slow tick, a clock that
        crossed a boundary late) are evaluated too, back to at most
        MAX_CATCH_UP_SECONDS.  A stage due in several of them starts once.
        Returns the names started.
        """
        moment = (now or self._now_fn()).replace(microsecond=0)
        started: list[str] = []
        for second in self._window(moment):
            for name in self.due(second):
                if name in started or self._last_fired.get(name) == second:
                    continue
                self._last_fired[name] = second
                if self._launch(name):
                    started.append(name)
        if self._last_checked is None or moment > self._last_checked:
            self._last_checked = moment
        return started

    def run_startup(self) -> list[StageResult]:
        """Run the startup stages synchronously, in stage order."""
        return [self.job(name)() for name in self.startup_stages()]

    def join(self, timeout: float | None = None) -> None:
        for thread in list(self._threads.values()):
            thread.join(timeout)

    def run_forever(
        self,
        stop_event: threading.Event,
        *,
        run_startup: bool = True,
        tick_seconds: float = 1.0,
    ) -> None:
        """Check cadences every tick until ``stop_event`` is set."""
        logger.info("Scheduler started with %d stage(s)", len(self._entries))
        if run_startup:
            self.run_startup()
        while not stop_event.is_set():
            self.run_pending()
            stop_event.wait(tick_seconds)
        logger.info("Scheduler stopping")
