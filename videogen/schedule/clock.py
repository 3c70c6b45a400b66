"""
Conversions between a named timezone's wall-clock and absolute UTC instants.

Schedules are configured in local time ("22:30 in Asia/Almaty") while every
instant is stored as a timezone-aware UTC datetime. Local -> UTC is solved
iteratively against the platform's zone database so DST-observing zones
resolve correctly without assuming a fixed offset.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from videogen.conf import DEFAULT_TIMEZONE
from videogen.errors import ConfigError

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MAX_ITERATIONS = 10


class LocalComponents(NamedTuple):
    year: int
    month: int  # 1-12
    day: int
    hour: int
    minute: int
    weekday: int  # ISO, Monday=1 .. Sunday=7

    @property
    def minutes_of_day(self) -> int:
        return self.hour * 60 + self.minute

    @property
    def as_date(self) -> date:
        return date(self.year, self.month, self.day)


class Weekday(NamedTuple):
    name: str
    iso_number: int


@lru_cache(maxsize=64)
def get_zone(tz: str | None = None) -> ZoneInfo:
    """Resolve an IANA zone id, falling back to the default zone when empty."""
    name = (tz or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone: {name}") from e


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_components(now: datetime, tz: str | None = None) -> LocalComponents:
    local = ensure_utc(now).astimezone(get_zone(tz))
    return LocalComponents(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        weekday=local.isoweekday(),
    )


def weekday(instant: datetime, tz: str | None = None) -> Weekday:
    iso = ensure_utc(instant).astimezone(get_zone(tz)).isoweekday()
    return Weekday(WEEKDAY_NAMES[iso - 1], iso)


def weekday_of(day: date) -> Weekday:
    iso = day.isoweekday()
    return Weekday(WEEKDAY_NAMES[iso - 1], iso)


def to_instant(
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    tz: str | None = None,
) -> datetime:
    """
    Convert a local wall-clock time in ``tz`` to a UTC instant.

    Starts from the wall-clock read as UTC, renders the candidate back into
    the zone, and corrects by the discrepancy until they agree. Local times
    that do not exist (DST gaps) never converge; the closest candidate seen
    is returned. ``day`` may overflow the month (day 32 rolls forward).
    """
    zone = get_zone(tz)
    target = datetime(year, month, 1) + timedelta(days=day - 1, hours=hour, minutes=minute)

    candidate = target.replace(tzinfo=timezone.utc)
    best, best_diff = candidate, None
    for _ in range(MAX_ITERATIONS):
        rendered = candidate.astimezone(zone).replace(tzinfo=None)
        diff = int((rendered - target).total_seconds() // 60)
        if best_diff is None or abs(diff) < abs(best_diff):
            best, best_diff = candidate, diff
        if diff == 0:
            return candidate
        candidate = candidate - timedelta(minutes=diff)

    logger.debug(
        "Local time %s did not resolve exactly in %s (off by %s min)",
        target.isoformat(),
        zone.key,
        best_diff,
    )
    return best


def format_local(instant: datetime | None, tz: str | None = None) -> str:
    if instant is None:
        return "-"
    local = ensure_utc(instant).astimezone(get_zone(tz))
    return local.strftime("%Y-%m-%d %H:%M:%S %Z")


def parse_weekday_token(token: object) -> int | None:
    """
    Parse a schedule weekday token into an ISO number (Monday=1 .. Sunday=7).

    Accepts three-letter names in any case ("Mon", "mon") and numbers 1-7.
    A legacy "0" is read as Sunday.
    """
    if token is None:
        return None
    text = str(token).strip()
    if not text:
        return None
    if text.isdigit():
        number = int(text)
        if number == 0:
            return 7
        return number if 1 <= number <= 7 else None
    name = text[:3].title()
    if name in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(name) + 1
    return None


def parse_time(value: object) -> tuple[int, int] | None:
    """Parse an ``HH:mm`` string; returns None for blank or malformed values."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or ":" not in text:
        return None
    hour_text, _, minute_text = text.partition(":")
    try:
        hour, minute = int(hour_text), int(minute_text[:2])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute
