"""Unit tests for the monitor trigger in scheduler.py.

Cron evaluation is tested against fixed datetimes. MonitorScheduler tests
use an AsyncMock run_check and a patched asyncio.sleep so no real time passes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from changewatch.models.monitor import MonitoringState
from changewatch.scheduler import (
    CronSchedule,
    MonitorScheduler,
    derive_monitoring_state,
    interval_to_cron,
    parse_interval,
)

MINUTE = 60_000

# ---------------------------------------------------------------------------
# interval_to_cron
# ---------------------------------------------------------------------------


class TestIntervalToCron:
    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [
            (1, "* * * * *"),
            (5, "*/5 * * * *"),
            (15, "*/15 * * * *"),
            (30, "*/30 * * * *"),
            (60, "0 * * * *"),
            (360, "0 */6 * * *"),
            (720, "0 */12 * * *"),
            (1440, "0 0 * * *"),
            (10080, "0 0 * * 0"),
            (20160, "0 0 1,15 * *"),
        ],
    )
    def test_presets(self, minutes: int, expected: str) -> None:
        assert interval_to_cron(minutes * MINUTE) == expected

    def test_zero_disables(self) -> None:
        assert interval_to_cron(0) is None

    def test_negative_disables(self) -> None:
        assert interval_to_cron(-MINUTE) is None

    def test_fallback_rounds_to_whole_minutes(self) -> None:
        assert interval_to_cron(7 * MINUTE) == "*/7 * * * *"
        assert interval_to_cron(90_000) == "*/2 * * * *"  # 1.5 minutes rounds up
        assert interval_to_cron(80_000) == "*/1 * * * *"

    def test_fallback_never_below_one(self) -> None:
        assert interval_to_cron(1000) == "*/1 * * * *"


class TestParseInterval:
    def test_plain_integer(self) -> None:
        assert parse_interval("300000") == 300000

    def test_leading_digits(self) -> None:
        assert parse_interval("60000ms") == 60000

    def test_garbage_is_zero(self) -> None:
        assert parse_interval("soon") == 0

    def test_missing_is_zero(self) -> None:
        assert parse_interval(None) == 0


class TestDeriveMonitoringState:
    def test_enabled_with_interval(self) -> None:
        state = derive_monitoring_state(
            {"emailNotificationsEnabled": "true", "notificationCheckInterval": "300000"}
        )
        assert state == MonitoringState(should_run=True, interval_ms=300000)

    def test_disabled_flag(self) -> None:
        state = derive_monitoring_state(
            {"emailNotificationsEnabled": "false", "notificationCheckInterval": "300000"}
        )
        assert state.should_run is False
        assert state.interval_ms == 300000

    def test_zero_interval(self) -> None:
        state = derive_monitoring_state(
            {"emailNotificationsEnabled": "true", "notificationCheckInterval": "0"}
        )
        assert state.should_run is False

    def test_no_settings(self) -> None:
        assert derive_monitoring_state({}) == MonitoringState(should_run=False, interval_ms=0)

    def test_only_literal_true_enables(self) -> None:
        state = derive_monitoring_state(
            {"emailNotificationsEnabled": "TRUE", "notificationCheckInterval": "60000"}
        )
        assert state.should_run is False


# ---------------------------------------------------------------------------
# CronSchedule
# ---------------------------------------------------------------------------


class TestCronSchedule:
    def test_every_minute(self) -> None:
        schedule = CronSchedule.parse("* * * * *")
        assert schedule.next_after(datetime(2024, 1, 1, 10, 0, 30)) == datetime(
            2024, 1, 1, 10, 1
        )

    def test_step_minutes(self) -> None:
        schedule = CronSchedule.parse("*/15 * * * *")
        assert schedule.next_after(datetime(2024, 1, 1, 10, 7)) == datetime(2024, 1, 1, 10, 15)
        assert schedule.next_after(datetime(2024, 1, 1, 10, 45)) == datetime(2024, 1, 1, 11, 0)

    def test_strictly_after(self) -> None:
        schedule = CronSchedule.parse("0 * * * *")
        assert schedule.next_after(datetime(2024, 1, 1, 10, 0)) == datetime(2024, 1, 1, 11, 0)

    def test_every_six_hours(self) -> None:
        schedule = CronSchedule.parse("0 */6 * * *")
        assert schedule.next_after(datetime(2024, 1, 1, 7, 30)) == datetime(2024, 1, 1, 12, 0)

    def test_daily_crosses_month(self) -> None:
        schedule = CronSchedule.parse("0 0 * * *")
        assert schedule.next_after(datetime(2024, 1, 31, 23, 59)) == datetime(2024, 2, 1, 0, 0)

    def test_weekly_sunday(self) -> None:
        schedule = CronSchedule.parse("0 0 * * 0")
        # 2024-01-03 is a Wednesday; the following Sunday is the 7th.
        assert schedule.next_after(datetime(2024, 1, 3, 12, 0)) == datetime(2024, 1, 7, 0, 0)

    def test_day_of_week_seven_is_sunday(self) -> None:
        schedule = CronSchedule.parse("0 0 * * 7")
        assert schedule.next_after(datetime(2024, 1, 3, 12, 0)) == datetime(2024, 1, 7, 0, 0)

    def test_first_and_fifteenth(self) -> None:
        schedule = CronSchedule.parse("0 0 1,15 * *")
        assert schedule.next_after(datetime(2024, 1, 2, 0, 0)) == datetime(2024, 1, 15, 0, 0)
        assert schedule.next_after(datetime(2024, 1, 15, 0, 0)) == datetime(2024, 2, 1, 0, 0)

    def test_large_step_fires_only_at_zero(self) -> None:
        schedule = CronSchedule.parse("*/90 * * * *")
        assert schedule.minutes == frozenset({0})

    def test_range_with_step(self) -> None:
        schedule = CronSchedule.parse("10-30/10 * * * *")
        assert schedule.minutes == frozenset({10, 20, 30})

    def test_wrong_field_count(self) -> None:
        with pytest.raises(ValueError, match="5 cron fields"):
            CronSchedule.parse("* * * *")

    def test_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            CronSchedule.parse("61 * * * *")


# ---------------------------------------------------------------------------
# MonitorScheduler
# ---------------------------------------------------------------------------


async def _drain() -> None:
    """Let spawned tasks run until they block."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestMonitorScheduler:
    async def test_start_runs_immediately(self) -> None:
        run_check = AsyncMock(return_value={})
        scheduler = MonitorScheduler(run_check)

        assert scheduler.start(5 * MINUTE) is True
        await _drain()

        run_check.assert_awaited_once()
        assert scheduler.is_running is True
        assert scheduler.expression == "*/5 * * * *"
        await scheduler.shutdown()

    async def test_start_with_zero_interval_stays_stopped(self) -> None:
        run_check = AsyncMock()
        scheduler = MonitorScheduler(run_check)

        assert scheduler.start(0) is False
        await _drain()

        run_check.assert_not_awaited()
        assert scheduler.is_running is False
        assert scheduler.expression is None

    async def test_restart_replaces_trigger(self) -> None:
        run_check = AsyncMock(return_value={})
        scheduler = MonitorScheduler(run_check)

        scheduler.start(5 * MINUTE)
        scheduler.start(60 * MINUTE)
        await _drain()

        assert scheduler.expression == "0 * * * *"
        assert run_check.await_count == 2
        await scheduler.shutdown()

    async def test_stop_is_idempotent(self) -> None:
        scheduler = MonitorScheduler(AsyncMock(return_value={}))
        scheduler.stop()
        scheduler.start(MINUTE)
        scheduler.stop()
        scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler.expression is None
        await scheduler.shutdown()

    async def test_apply_follows_state(self) -> None:
        scheduler = MonitorScheduler(AsyncMock(return_value={}))

        scheduler.apply(MonitoringState(should_run=True, interval_ms=15 * MINUTE))
        assert scheduler.is_running is True

        scheduler.apply(MonitoringState(should_run=False, interval_ms=15 * MINUTE))
        assert scheduler.is_running is False
        await scheduler.shutdown()

    async def test_run_failure_is_contained(self) -> None:
        run_check = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = MonitorScheduler(run_check)

        scheduler.start(MINUTE)
        await _drain()

        run_check.assert_awaited_once()
        assert scheduler.is_running is True
        await scheduler.shutdown()

    async def test_trigger_sleeps_until_next_fire(self) -> None:
        run_check = AsyncMock(return_value={})
        now = datetime(2024, 1, 1, 10, 2, 30)
        sleeps: list[float] = []

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)
            if len(sleeps) >= 2:
                raise asyncio.CancelledError

        scheduler = MonitorScheduler(run_check, clock=lambda: now)
        with patch("changewatch.scheduler.asyncio.sleep", fake_sleep):
            scheduler.start(5 * MINUTE)
            trigger = scheduler._trigger
            assert trigger is not None
            with pytest.raises(asyncio.CancelledError):
                await trigger

        # 10:02:30 -> 10:05:00
        assert sleeps[0] == 150.0
        await _drain()
        # One run at start plus one tick.
        assert run_check.await_count == 2
        await scheduler.shutdown()

    async def test_early_wake_fires_each_minute_once(self) -> None:
        run_check = AsyncMock(return_value={})
        current = [datetime(2024, 1, 1, 10, 2, 30)]
        sleeps: list[float] = []

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)
            if len(sleeps) >= 2:
                raise asyncio.CancelledError
            current[0] = datetime(2024, 1, 1, 10, 4, 59, 900000)

        scheduler = MonitorScheduler(run_check, clock=lambda: current[0])
        with patch("changewatch.scheduler.asyncio.sleep", fake_sleep):
            scheduler.start(5 * MINUTE)
            trigger = scheduler._trigger
            assert trigger is not None
            with pytest.raises(asyncio.CancelledError):
                await trigger

        assert sleeps[0] == 150.0
        # 10:04:59.9 -> 10:10:00, not 10:05:00 again
        assert sleeps[1] == pytest.approx(300.1)
        await scheduler.shutdown()

    async def test_stop_does_not_cancel_in_flight_run(self) -> None:
        release = asyncio.Event()
        finished = asyncio.Event()

        async def slow_check() -> None:
            await release.wait()
            finished.set()

        scheduler = MonitorScheduler(slow_check)
        scheduler.start(MINUTE)
        await _drain()

        scheduler.stop()
        release.set()
        await asyncio.wait_for(finished.wait(), timeout=1)
        assert finished.is_set()
        await scheduler.shutdown()
