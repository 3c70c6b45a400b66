# automation_server/schemas/automation.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StopChannelRequest(BaseModel):
    channel_id: str = Field(..., description="Channel whose automation should stop")


class StopChannelResponse(BaseModel):
    channel_id: str
    cancelled_job_ids: List[str]
    stopped_at: Optional[datetime] = None


class ResetFlagsResponse(BaseModel):
    reset: int
    channel_ids: List[str]


class RunNowResponse(BaseModel):
    channel_id: str
    job_id: str
    status: str


class RunResponse(BaseModel):
    """Scheduled run record."""

    run_id: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    scheduler_invocation_at: Optional[datetime] = None
    channels_planned: int
    channels_processed: int
    jobs_created: int
    errors_count: int
    last_error_message: Optional[str] = None
    timezone: Optional[str] = None
    channels: Optional[List[Dict[str, Any]]] = None
    tasks: Optional[List[Dict[str, Any]]] = None


class RunListResponse(BaseModel):
    """List of runs with pagination."""

    runs: list[RunResponse]
    total: int
    limit: int
    offset: int


class EventResponse(BaseModel):
    event_id: str
    run_id: Optional[str] = None
    created_at: datetime
    level: str
    step: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    job_id: Optional[str] = None
    message: str
    details: Optional[Dict[str, Any]] = None


class EventListResponse(BaseModel):
    events: list[EventResponse]
