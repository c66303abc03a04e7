"""Recurring monitor trigger.

The user picks a check interval in milliseconds. It is mapped to a five-field
cron expression, and a single asyncio task sleeps until each next matching
minute and dispatches a check run. Runs are spawned as their own tasks, so
``stop()`` cancels future ticks without interrupting a run in progress.
"""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from changewatch.models.monitor import MonitoringState
from changewatch.preferences import EMAIL_NOTIFICATIONS_ENABLED, NOTIFICATION_CHECK_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

log = structlog.get_logger()

# minutes → cron expression
_PRESET_EXPRESSIONS: dict[int, str] = {
    1: "* * * * *",  # every minute
    5: "*/5 * * * *",
    15: "*/15 * * * *",
    30: "*/30 * * * *",
    60: "0 * * * *",  # hourly
    360: "0 */6 * * *",
    720: "0 */12 * * *",
    1440: "0 0 * * *",  # daily at midnight
    10080: "0 0 * * 0",  # weekly, Sunday midnight
    20160: "0 0 1,15 * *",  # 1st and 15th of the month
}

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def interval_to_cron(interval_ms: int) -> str | None:
    """Map a check interval to a cron expression. Returns None for ``<= 0``."""
    minutes = interval_ms / 60000
    if minutes <= 0:
        return None
    if minutes.is_integer() and int(minutes) in _PRESET_EXPRESSIONS:
        return _PRESET_EXPRESSIONS[int(minutes)]
    # Round half up to the nearest whole minute.
    return f"*/{max(1, math.floor(minutes + 0.5))} * * * *"


def parse_interval(raw: str | None) -> int:
    """Parse a stored interval leniently: leading integer digits, anything else is 0."""
    if raw is None:
        return 0
    match = _LEADING_INT_RE.match(raw)
    return int(match.group(1)) if match else 0


def derive_monitoring_state(settings: Mapping[str, str]) -> MonitoringState:
    """Desired scheduler state from both monitoring settings combined."""
    enabled = settings.get(EMAIL_NOTIFICATIONS_ENABLED) == "true"
    interval_ms = parse_interval(settings.get(NOTIFICATION_CHECK_INTERVAL))
    return MonitoringState(should_run=enabled and interval_ms > 0, interval_ms=interval_ms)


# ---------------------------------------------------------------------------
# Cron expressions
# ---------------------------------------------------------------------------


def _parse_field(field: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in field.split(","):
        base, _, step_raw = part.partition("/")
        step = int(step_raw) if step_raw else 1
        if step < 1:
            raise ValueError(f"Invalid cron step in {field!r}")
        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_raw, end_raw = base.split("-", 1)
            start, end = int(start_raw), int(end_raw)
        else:
            start = int(base)
            end = high if step_raw else start
        if start < low or end > high or start > end:
            raise ValueError(f"Cron field {field!r} out of range {low}-{high}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """Five-field cron expression: minute hour day-of-month month day-of-week."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0 = Sunday
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Expected 5 cron fields, got {len(fields)}: {expression!r}")
        minute, hour, day, month, weekday = fields
        weekdays = _parse_field(weekday, 0, 7)
        return cls(
            expression=expression,
            minutes=_parse_field(minute, 0, 59),
            hours=_parse_field(hour, 0, 23),
            days=_parse_field(day, 1, 31),
            months=_parse_field(month, 1, 12),
            weekdays=frozenset(d % 7 for d in weekdays),
            day_restricted=day != "*",
            weekday_restricted=weekday != "*",
        )

    def _day_matches(self, moment: datetime) -> bool:
        if moment.month not in self.months:
            return False
        day_ok = moment.day in self.days
        weekday_ok = (moment.isoweekday() % 7) in self.weekdays
        # Standard cron: when both day fields are restricted, either may match.
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after ``moment``."""
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + timedelta(days=366 * 5)
        while candidate < limit:
            if not self._day_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if candidate.hour not in self.hours:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue
            return candidate
        raise ValueError(f"Cron expression {self.expression!r} never fires")


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class MonitorScheduler:
    """Owns the single recurring trigger. ``start``/``stop`` are its only mutators."""

    def __init__(
        self,
        run_check: Callable[[], Awaitable[object]],
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._run_check = run_check
        self._clock = clock
        self._trigger: asyncio.Task[None] | None = None
        self._expression: str | None = None
        self._runs: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._trigger is not None

    @property
    def expression(self) -> str | None:
        return self._expression

    def start(self, interval_ms: int) -> bool:
        """Replace any existing trigger, run a check now, and schedule the rest.

        Returns False (and leaves the scheduler stopped) when the interval
        disables monitoring.
        """
        self.stop()

        expression = interval_to_cron(interval_ms)
        if expression is None:
            log.info("monitor_disabled", reason="no_valid_interval", interval_ms=interval_ms)
            return False

        schedule = CronSchedule.parse(expression)
        self._expression = expression
        self.dispatch("start")
        self._trigger = asyncio.create_task(self._trigger_loop(schedule))
        log.info("monitor_started", expression=expression, interval_minutes=interval_ms / 60000)
        return True

    def stop(self) -> None:
        """Cancel future ticks. Idempotent; in-flight runs keep going."""
        if self._trigger is None:
            return
        self._trigger.cancel()
        self._trigger = None
        self._expression = None
        log.info("monitor_stopped")

    def apply(self, state: MonitoringState) -> None:
        if state.should_run:
            self.start(state.interval_ms)
        else:
            self.stop()

    def dispatch(self, reason: str) -> asyncio.Task[None]:
        """Spawn a check run as a background task with its own error boundary."""
        task = asyncio.create_task(self._guarded_run(reason))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def shutdown(self) -> None:
        """Stop the trigger and cancel in-flight runs. Called on server exit."""
        self.stop()
        runs = list(self._runs)
        for task in runs:
            task.cancel()
        await asyncio.gather(*runs, return_exceptions=True)

    async def _guarded_run(self, reason: str) -> None:
        try:
            await self._run_check()
        except Exception:
            log.warning("monitor_tick_failed", reason=reason, exc_info=True)

    async def _trigger_loop(self, schedule: CronSchedule) -> None:
        fire_at = schedule.next_after(self._clock())
        while True:
            await asyncio.sleep(max(0.0, (fire_at - self._clock()).total_seconds()))
            log.info("monitor_tick", expression=schedule.expression, at=fire_at.isoformat())
            self.dispatch("tick")
            # An early wake-up must not fire the same minute twice.
            fire_at = schedule.next_after(max(fire_at, self._clock()))
