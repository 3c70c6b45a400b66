"""
Daily time-of-day + day-of-week recurrence for channel automation.

``should_fire`` decides whether a channel is due right now; ``next_fire_instant``
computes when it will next be due. Both are pure functions of the channel's
automation record and the supplied ``now`` so repeated checks agree.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from videogen.conf import CATCHUP_WINDOW_MINUTES, SCHEDULE_INTERVAL_MINUTES
from videogen.schedule.clock import (
    LocalComponents,
    ensure_utc,
    format_local,
    local_components,
    to_instant,
    weekday_of,
)
from videogen.schedule.models import ChannelAutomation, CheckReason, FireDecision, SlotMatch

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
LOOKAHEAD_DAYS = 7


def _consumed(last_run: Optional[LocalComponents], day, hour: int, minute: int) -> bool:
    """True when ``last_run`` is exactly the given local slot."""
    return (
        last_run is not None
        and last_run.as_date == day
        and last_run.hour == hour
        and last_run.minute == minute
    )


def should_fire(
    automation: Optional[ChannelAutomation],
    now: datetime,
    active_jobs: int = 0,
    interval_minutes: int = SCHEDULE_INTERVAL_MINUTES,
    catchup_minutes: int = CATCHUP_WINDOW_MINUTES,
) -> FireDecision:
    """
    Decide whether a channel should fire at ``now``.

    Checks run in order and stop at the first failure: disabled, already
    running, weekday, active-job limit, time window. For the time window each
    configured slot at or before the current local time is "today's" slot and
    must be at most ``interval_minutes`` old; a slot later than the current
    time is yesterday's slot rolled past midnight and may still fire within
    ``catchup_minutes`` of it. The first in-window slot that ``last_run_at``
    has not already consumed wins.

    Args:
        automation: Normalized automation record (None means no config)
        now: Current instant (timezone-aware)
        active_jobs: Active job count for the channel

    Returns:
        FireDecision with the matched slot and diagnostics for auditing
    """
    diagnostics: Dict[str, Any] = {}

    if automation is None or not automation.enabled:
        return FireDecision(fire=False, reason=CheckReason.DISABLED, diagnostics=diagnostics)

    tz = automation.time_zone
    diagnostics["timezone"] = tz

    if automation.is_running:
        diagnostics["is_running"] = True
        diagnostics["run_id"] = automation.run_id
        return FireDecision(fire=False, reason=CheckReason.ALREADY_RUNNING, diagnostics=diagnostics)

    now = ensure_utc(now)
    current = local_components(now, tz)
    today = current.as_date
    yesterday = today - timedelta(days=1)
    allowed = automation.allowed_weekdays()

    today_allowed = current.weekday in allowed
    yesterday_allowed = yesterday.isoweekday() in allowed
    diagnostics.update(
        {
            "current_time": format_local(now, tz),
            "current_day": weekday_of(today).name,
            "current_day_number": current.weekday,
            "allowed_days": list(automation.days_of_week),
            "day_matched": today_allowed,
        }
    )

    # Yesterday's weekday still matters: its late slots may be caught up today.
    if not today_allowed and not yesterday_allowed:
        return FireDecision(fire=False, reason=CheckReason.DAY_NOT_ALLOWED, diagnostics=diagnostics)

    diagnostics["active_jobs"] = active_jobs
    diagnostics["max_active_tasks"] = automation.max_active_tasks
    if active_jobs >= automation.max_active_tasks:
        return FireDecision(fire=False, reason=CheckReason.FREQUENCY_LIMIT, diagnostics=diagnostics)

    last_run = local_components(automation.last_run_at, tz) if automation.last_run_at else None
    diagnostics["scheduled_times"] = list(automation.times)
    diagnostics["last_run_at"] = automation.last_run_at.isoformat() if automation.last_run_at else None

    now_minutes = current.minutes_of_day
    evaluated: List[Dict[str, Any]] = []
    eligible_seen = False
    matched: Optional[SlotMatch] = None

    for hour, minute in automation.parsed_times():
        slot_minutes = hour * 60 + minute
        if slot_minutes <= now_minutes:
            diff = now_minutes - slot_minutes
            is_catchup, window, target_day = False, interval_minutes, today
        else:
            diff = (MINUTES_PER_DAY - slot_minutes) + now_minutes
            is_catchup, window, target_day = True, catchup_minutes, yesterday

        entry: Dict[str, Any] = {
            "time": f"{hour:02d}:{minute:02d}",
            "diff_minutes": diff,
            "is_catchup": is_catchup,
            "target_day": target_day.isoformat(),
            "in_window": 0 <= diff <= window,
        }
        evaluated.append(entry)

        if not entry["in_window"]:
            continue
        if target_day.isoweekday() not in allowed:
            entry["day_allowed"] = False
            continue
        eligible_seen = True
        if _consumed(last_run, target_day, hour, minute):
            entry["already_fired"] = True
            continue

        matched = SlotMatch(
            time=entry["time"],
            hour=hour,
            minute=minute,
            target_day=target_day,
            is_catchup=is_catchup,
            diff_minutes=diff,
        )
        break

    diagnostics["slots"] = evaluated

    if matched is None:
        reason = CheckReason.TIME_NOT_MATCHED
        if not today_allowed and not eligible_seen:
            reason = CheckReason.DAY_NOT_ALLOWED
        return FireDecision(fire=False, reason=reason, diagnostics=diagnostics)

    diagnostics["matched"] = matched.model_dump(mode="json")
    return FireDecision(fire=True, reason=CheckReason.OK, slot=matched, diagnostics=diagnostics)


def slot_instant(slot: SlotMatch, tz: str) -> datetime:
    """The absolute instant of a matched slot in the channel's timezone."""
    day = slot.target_day
    return to_instant(day.year, day.month, day.day, slot.hour, slot.minute, tz)


def next_fire_instant(automation: ChannelAutomation, now: datetime) -> Optional[datetime]:
    """
    Next future instant at which the channel is scheduled.

    Scans today plus the following seven days so a single weekly slot that
    already elapsed today resolves to next week. Slots consumed by
    ``last_run_at`` are skipped.
    """
    times = automation.parsed_times()
    allowed = automation.allowed_weekdays()
    if not times or not allowed:
        return None

    tz = automation.time_zone
    now = ensure_utc(now)
    current = local_components(now, tz)
    last_run = local_components(automation.last_run_at, tz) if automation.last_run_at else None

    best: Optional[datetime] = None
    for offset in range(LOOKAHEAD_DAYS + 1):
        day = current.as_date + timedelta(days=offset)
        if day.isoweekday() not in allowed:
            continue
        for hour, minute in times:
            if _consumed(last_run, day, hour, minute):
                continue
            candidate = to_instant(day.year, day.month, day.day, hour, minute, tz)
            if candidate <= now:
                continue
            if best is None or candidate < best:
                best = candidate

    return best
