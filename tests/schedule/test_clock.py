# tests/schedule/test_clock.py
from datetime import datetime, timezone

import pytest

from videogen.errors import ConfigError
from videogen.schedule.clock import (
    format_local,
    get_zone,
    local_components,
    parse_time,
    parse_weekday_token,
    to_instant,
    weekday,
)


class TestToInstant:
    """Test local wall-clock → UTC conversion."""

    def test_fixed_offset_zone(self):
        """Tashkent is UTC+5 all year."""
        instant = to_instant(2024, 1, 1, 10, 0, "Asia/Tashkent")
        assert instant == datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)

    def test_dst_zone_summer_and_winter(self):
        """Offsets follow the zone's DST rules."""
        assert to_instant(2024, 7, 1, 12, 0, "Europe/Berlin") == datetime(2024, 7, 1, 10, 0, tzinfo=timezone.utc)
        assert to_instant(2024, 1, 15, 12, 0, "Europe/Berlin") == datetime(2024, 1, 15, 11, 0, tzinfo=timezone.utc)

    def test_day_overflow_rolls_into_next_month(self):
        instant = to_instant(2024, 1, 32, 0, 0, "UTC")
        assert instant == datetime(2024, 2, 1, 0, 0, tzinfo=timezone.utc)

    def test_nonexistent_local_time_returns_closest_candidate(self):
        """02:30 does not exist in Berlin on the spring-forward night."""
        instant = to_instant(2024, 3, 31, 2, 30, "Europe/Berlin")
        assert instant in (
            datetime(2024, 3, 31, 0, 30, tzinfo=timezone.utc),
            datetime(2024, 3, 31, 1, 30, tzinfo=timezone.utc),
        )

    def test_round_trip_through_local_components(self):
        instant = to_instant(2024, 1, 2, 1, 50, "Asia/Almaty")
        local = local_components(instant, "Asia/Almaty")
        assert (local.year, local.month, local.day, local.hour, local.minute) == (2024, 1, 2, 1, 50)
        assert local.weekday == 2  # Tuesday


class TestZones:
    """Test zone resolution and formatting."""

    def test_unknown_zone_raises_config_error(self):
        with pytest.raises(ConfigError):
            get_zone("Mars/Olympus_Mons")

    def test_empty_zone_uses_default(self):
        assert get_zone("").key == get_zone(None).key

    def test_weekday_is_local(self):
        """23:30 UTC on Sunday is already Monday in Tashkent."""
        instant = datetime(2024, 1, 7, 23, 30, tzinfo=timezone.utc)
        assert weekday(instant, "Asia/Tashkent").name == "Mon"
        assert weekday(instant, "UTC").name == "Sun"

    def test_format_local(self):
        instant = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)
        assert format_local(instant, "Asia/Tashkent").startswith("2024-01-01 10:00:00")
        assert format_local(None) == "-"


class TestTokens:
    """Test weekday and time token parsing."""

    @pytest.mark.parametrize(
        "token,expected",
        [("Mon", 1), ("mon", 1), ("SUNDAY", 7), ("3", 3), ("0", 7), ("8", None), ("", None), (None, None), ("Funday", None)],
    )
    def test_parse_weekday_token(self, token, expected):
        assert parse_weekday_token(token) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [("07:30", (7, 30)), ("9:05", (9, 5)), ("23:59", (23, 59)), ("24:00", None), ("12:60", None), ("noon", None), ("", None)],
    )
    def test_parse_time(self, value, expected):
        assert parse_time(value) == expected
