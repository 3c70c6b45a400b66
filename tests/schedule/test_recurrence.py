# tests/schedule/test_recurrence.py
"""Test the daily time-of-day + weekday recurrence."""
from datetime import date, datetime, timedelta, timezone

from videogen.schedule.clock import local_components, to_instant
from videogen.schedule.models import ChannelAutomation, CheckReason
from videogen.schedule.recurrence import next_fire_instant, should_fire, slot_instant

TZ = "Asia/Tashkent"  # UTC+5, no DST


def _automation(**overrides) -> ChannelAutomation:
    values = {"enabled": True, "days_of_week": ["Mon"], "times": ["10:00"], "time_zone": TZ}
    values.update(overrides)
    return ChannelAutomation(**values)


def _local(day: int, hour: int, minute: int, tz: str = TZ) -> datetime:
    """January 2024; the 1st is a Monday."""
    return to_instant(2024, 1, day, hour, minute, tz)


class TestShouldFireGates:
    """Checks that stop before the time window is evaluated."""

    def test_missing_config_is_disabled(self):
        decision = should_fire(None, _local(1, 10, 0))
        assert not decision.fire
        assert decision.reason == CheckReason.DISABLED

    def test_disabled(self):
        decision = should_fire(_automation(enabled=False), _local(1, 10, 0))
        assert decision.reason == CheckReason.DISABLED

    def test_already_running(self):
        decision = should_fire(_automation(is_running=True, run_id="r-1"), _local(1, 10, 0))
        assert decision.reason == CheckReason.ALREADY_RUNNING
        assert decision.diagnostics["run_id"] == "r-1"

    def test_day_not_allowed(self):
        decision = should_fire(_automation(days_of_week=["Wed"]), _local(1, 10, 0))
        assert decision.reason == CheckReason.DAY_NOT_ALLOWED
        assert decision.diagnostics["current_day"] == "Mon"

    def test_no_days_configured_never_fires(self):
        decision = should_fire(_automation(days_of_week=[]), _local(1, 10, 0))
        assert decision.reason == CheckReason.DAY_NOT_ALLOWED

    def test_frequency_limit(self):
        decision = should_fire(_automation(max_active_tasks=2), _local(1, 10, 0), active_jobs=2)
        assert decision.reason == CheckReason.FREQUENCY_LIMIT
        assert decision.diagnostics["active_jobs"] == 2

    def test_frequency_limit_checked_before_time(self):
        decision = should_fire(_automation(max_active_tasks=1), _local(1, 15, 0), active_jobs=1)
        assert decision.reason == CheckReason.FREQUENCY_LIMIT


class TestShouldFireTimeWindow:
    """Same-day slots and their window."""

    def test_fires_inside_window(self):
        decision = should_fire(_automation(), _local(1, 10, 5))
        assert decision.fire
        assert decision.reason == CheckReason.OK
        assert decision.slot.time == "10:00"
        assert decision.slot.diff_minutes == 5
        assert decision.slot.target_day == date(2024, 1, 1)
        assert not decision.slot.is_catchup

    def test_window_edge_is_inclusive(self):
        assert should_fire(_automation(), _local(1, 10, 10)).fire

    def test_outside_window(self):
        decision = should_fire(_automation(), _local(1, 10, 11))
        assert not decision.fire
        assert decision.reason == CheckReason.TIME_NOT_MATCHED

    def test_before_slot(self):
        decision = should_fire(_automation(), _local(1, 9, 55))
        assert decision.reason == CheckReason.TIME_NOT_MATCHED

    def test_consumed_slot_does_not_fire_again(self):
        """last_run_at equal to the slot instant means the slot already fired."""
        automation = _automation(last_run_at=_local(1, 10, 0))
        decision = should_fire(automation, _local(1, 10, 4))
        assert decision.reason == CheckReason.TIME_NOT_MATCHED
        assert decision.diagnostics["slots"][0]["already_fired"] is True

    def test_second_slot_fires_after_first_consumed(self):
        automation = _automation(times=["10:00", "10:05"], last_run_at=_local(1, 10, 0))
        decision = should_fire(automation, _local(1, 10, 7))
        assert decision.fire
        assert decision.slot.time == "10:05"

    def test_slot_from_last_week_does_not_block(self):
        automation = _automation(last_run_at=to_instant(2023, 12, 25, 10, 0, TZ))
        assert should_fire(automation, _local(1, 10, 1)).fire

    def test_custom_interval(self):
        decision = should_fire(_automation(), _local(1, 10, 20), interval_minutes=30)
        assert decision.fire
        assert decision.slot.diff_minutes == 20


class TestCatchUp:
    """Yesterday's late slots rolled past midnight."""

    def test_missed_late_slot_fires_after_midnight(self):
        """Monday 22:30 in Almaty, checked Tuesday 01:50 local: 200 minutes late."""
        automation = ChannelAutomation(enabled=True, days_of_week=["Mon"], times=["22:30"], time_zone="Asia/Almaty")
        now = to_instant(2024, 1, 2, 1, 50, "Asia/Almaty")

        decision = should_fire(automation, now)

        assert decision.fire
        assert decision.slot.is_catchup
        assert decision.slot.diff_minutes == 200
        assert decision.slot.target_day == date(2024, 1, 1)
        assert slot_instant(decision.slot, "Asia/Almaty") == to_instant(2024, 1, 1, 22, 30, "Asia/Almaty")

    def test_caught_up_slot_is_consumed(self):
        automation = ChannelAutomation(
            enabled=True,
            days_of_week=["Mon"],
            times=["22:30"],
            time_zone="Asia/Almaty",
            last_run_at=to_instant(2024, 1, 1, 22, 30, "Asia/Almaty"),
        )
        decision = should_fire(automation, to_instant(2024, 1, 2, 1, 50, "Asia/Almaty"))
        assert not decision.fire
        assert decision.reason == CheckReason.TIME_NOT_MATCHED

    def test_catchup_window_expires(self):
        automation = _automation(times=["22:30"])
        decision = should_fire(automation, _local(2, 4, 31))  # 361 minutes after the slot
        assert not decision.fire
        assert decision.reason == CheckReason.DAY_NOT_ALLOWED

    def test_catchup_uses_yesterdays_weekday(self):
        """A Sunday 23:00 slot is not caught up on Monday when only Monday is allowed."""
        automation = _automation(times=["23:00"])
        decision = should_fire(automation, _local(1, 0, 30))
        assert not decision.fire
        assert decision.reason == CheckReason.TIME_NOT_MATCHED
        assert decision.diagnostics["slots"][0]["day_allowed"] is False


class TestDecisionProperties:
    def test_repeated_checks_agree(self):
        automation = _automation(times=["10:00", "22:30"])
        now = _local(1, 10, 3)
        first = should_fire(automation, now, active_jobs=1)
        second = should_fire(automation, now, active_jobs=1)
        assert first == second

    def test_naive_now_is_read_as_utc(self):
        aware = _local(1, 10, 2)
        naive = aware.replace(tzinfo=None)
        assert should_fire(_automation(), naive).fire

    def test_diagnostics_explain_decision(self):
        decision = should_fire(_automation(), _local(1, 10, 2))
        assert decision.diagnostics["timezone"] == TZ
        assert decision.diagnostics["day_matched"] is True
        assert decision.diagnostics["matched"]["time"] == "10:00"


class TestNextFireInstant:
    """Test next_fire_instant()."""

    def test_later_today(self):
        assert next_fire_instant(_automation(), _local(1, 8, 0)) == _local(1, 10, 0)

    def test_weekly_slot_already_passed_resolves_to_next_week(self):
        assert next_fire_instant(_automation(), _local(1, 11, 0)) == _local(8, 10, 0)

    def test_consumed_slot_is_skipped(self):
        automation = _automation(last_run_at=_local(1, 10, 0))
        assert next_fire_instant(automation, _local(1, 9, 0)) == _local(8, 10, 0)

    def test_picks_earliest_across_days(self):
        automation = _automation(days_of_week=["Mon", "Wed"], times=["18:00", "09:00"])
        assert next_fire_instant(automation, _local(1, 19, 0)) == _local(3, 9, 0)

    def test_always_strictly_after_now(self):
        automation = _automation(days_of_week=["1", "2", "3", "4", "5", "6", "7"], times=["00:00", "12:00"])
        now = _local(1, 0, 0)
        for step in range(0, 7 * 24 * 60, 97):
            current = now + timedelta(minutes=step)
            result = next_fire_instant(automation, current)
            assert result is not None
            assert result > current
            assert result - current <= timedelta(hours=12)

    def test_lands_on_a_configured_local_time(self):
        """Converted back to the channel's zone, every result is an allowed day and time."""
        cases = [
            (TZ, datetime(2024, 1, 1, tzinfo=timezone.utc)),
            # Both DST transitions in Berlin
            ("Europe/Berlin", datetime(2024, 3, 25, tzinfo=timezone.utc)),
            ("Europe/Berlin", datetime(2024, 10, 21, tzinfo=timezone.utc)),
        ]
        times = ["09:15", "21:45", "00:05"]
        for tz, start in cases:
            automation = _automation(days_of_week=["Sun", "Mon", "Thu"], times=times, time_zone=tz)
            for step in range(0, 14 * 24 * 60, 97):
                current = start + timedelta(minutes=step)
                result = next_fire_instant(automation, current)
                local = local_components(result, tz)
                assert result > current
                assert f"{local.hour:02d}:{local.minute:02d}" in times, (tz, current, result)
                assert local.weekday in (7, 1, 4), (tz, current, result)

    def test_nothing_configured(self):
        assert next_fire_instant(_automation(times=[]), _local(1, 8, 0)) is None
        assert next_fire_instant(_automation(days_of_week=[]), _local(1, 8, 0)) is None

    def test_result_is_utc(self):
        result = next_fire_instant(_automation(), _local(1, 8, 0))
        assert result.tzinfo == timezone.utc
