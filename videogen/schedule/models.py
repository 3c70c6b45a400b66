from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from videogen.conf import DEFAULT_TIMEZONE, MAX_ACTIVE_JOBS
from videogen.schedule.clock import ensure_utc, parse_time, parse_weekday_token


class AutomationStatus(str, Enum):
    """Last reported state of a channel's automation."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class CheckReason(str, Enum):
    """Closed taxonomy of per-channel schedule check outcomes."""

    TIME_NOT_MATCHED = "time_not_matched"
    DAY_NOT_ALLOWED = "day_not_allowed"
    FREQUENCY_LIMIT = "frequency_limit"
    ALREADY_RUNNING = "already_running"
    DISABLED = "disabled"
    OK = "ok"


class ChannelAutomation(BaseModel):
    """
    Fully-populated automation config and runtime state of one channel.

    Built once at the store boundary; validators coerce legacy values
    (string booleans, blank times, empty timezone) so nothing downstream
    deals with partial records.
    """

    enabled: bool = False
    days_of_week: List[str] = Field(default_factory=list)
    times: List[str] = Field(default_factory=list)
    time_zone: str = DEFAULT_TIMEZONE
    max_active_tasks: int = MAX_ACTIVE_JOBS
    auto_approve_and_upload: bool = False
    use_only_fresh_ideas: bool = False

    is_running: bool = False
    run_id: Optional[str] = None
    lease_acquired_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    status: AutomationStatus = AutomationStatus.IDLE
    status_message: Optional[str] = None
    current_step: Optional[str] = None
    manual_stopped_at: Optional[datetime] = None

    @field_validator("enabled", "is_running", "auto_approve_and_upload", "use_only_fresh_ideas", mode="before")
    @classmethod
    def coerce_bool(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes")
        return bool(v)

    @field_validator("days_of_week", mode="before")
    @classmethod
    def drop_unknown_days(cls, v: Any) -> List[str]:
        if not v:
            return []
        return [str(d).strip() for d in v if parse_weekday_token(d) is not None]

    @field_validator("times", mode="before")
    @classmethod
    def drop_invalid_times(cls, v: Any) -> List[str]:
        if not v:
            return []
        normalized = []
        for raw in v:
            parsed = parse_time(raw)
            if parsed is not None:
                normalized.append(f"{parsed[0]:02d}:{parsed[1]:02d}")
        return normalized

    @field_validator("time_zone", mode="before")
    @classmethod
    def default_time_zone(cls, v: Any) -> str:
        return str(v).strip() if v and str(v).strip() else DEFAULT_TIMEZONE

    @field_validator("max_active_tasks", mode="before")
    @classmethod
    def default_max_active(cls, v: Any) -> int:
        try:
            value = int(v)
        except (TypeError, ValueError):
            return MAX_ACTIVE_JOBS
        return value if value > 0 else MAX_ACTIVE_JOBS

    @field_validator("lease_acquired_at", "last_run_at", "next_run_at", "manual_stopped_at")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v: Any) -> Any:
        return v or AutomationStatus.IDLE

    def allowed_weekdays(self) -> set[int]:
        return {n for n in (parse_weekday_token(d) for d in self.days_of_week) if n is not None}

    def parsed_times(self) -> List[tuple[int, int]]:
        return [t for t in (parse_time(raw) for raw in self.times) if t is not None]


class SlotMatch(BaseModel):
    """The schedule slot a fire decision refers to."""

    time: str
    hour: int
    minute: int
    target_day: date
    is_catchup: bool = Field(False, description="Slot belongs to yesterday and rolled past midnight")
    diff_minutes: int


class FireDecision(BaseModel):
    """Outcome of a schedule check, explainable from its diagnostics."""

    fire: bool
    reason: CheckReason
    slot: Optional[SlotMatch] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)
