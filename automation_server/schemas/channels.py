# automation_server/schemas/channels.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChannelCreateRequest(BaseModel):
    """Request to create a channel."""

    channel_id: Optional[str] = Field(None, description="Channel id; generated when omitted")
    name: str = Field(..., min_length=1, description="Channel display name")
    description: Optional[str] = Field(None, description="What the channel is about")
    language: Literal["ru", "kk", "en"] = Field("ru", description="Language of generated content")
    duration_seconds: int = Field(8, ge=1, le=60, description="Video duration in seconds")
    idea_prompt_template: Optional[str] = Field(None, description="Idea prompt with {{DURATION}}/{{LANGUAGE}}/{{DESCRIPTION}}")
    video_prompt_template: Optional[str] = Field(None, description="Video prompt structure")
    drive_folder_id: Optional[str] = Field(None, description="Upload folder id or folder URL")
    external_url: Optional[str] = None

    automation_enabled: bool = False
    days_of_week: List[str] = Field(default_factory=list, description="Weekday tokens, e.g. ['Mon', 'Tue'] or ['1', '2']")
    times: List[str] = Field(default_factory=list, description="Local times 'HH:mm'")
    time_zone: Optional[str] = Field(None, description="IANA timezone id (default Asia/Almaty)")
    max_active_tasks: Optional[int] = Field(None, ge=1, description="Active job limit for the channel")
    auto_approve_and_upload: bool = False
    use_only_fresh_ideas: bool = False


class ChannelUpdateRequest(BaseModel):
    """Partial channel update; only provided fields change."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    language: Optional[Literal["ru", "kk", "en"]] = None
    duration_seconds: Optional[int] = Field(None, ge=1, le=60)
    idea_prompt_template: Optional[str] = None
    video_prompt_template: Optional[str] = None
    drive_folder_id: Optional[str] = None
    external_url: Optional[str] = None

    automation_enabled: Optional[bool] = None
    days_of_week: Optional[List[str]] = None
    times: Optional[List[str]] = None
    time_zone: Optional[str] = None
    max_active_tasks: Optional[int] = Field(None, ge=1)
    auto_approve_and_upload: Optional[bool] = None
    use_only_fresh_ideas: Optional[bool] = None


class ChannelResponse(BaseModel):
    """Channel with its automation config and runtime state."""

    channel_id: str
    name: str
    description: Optional[str] = None
    language: str
    duration_seconds: int
    drive_folder_id: Optional[str] = None
    external_url: Optional[str] = None

    automation_enabled: bool
    days_of_week: List[str]
    times: List[str]
    time_zone: str
    max_active_tasks: int
    auto_approve_and_upload: bool
    use_only_fresh_ideas: bool

    is_running: bool
    run_id: Optional[str] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    status: str
    status_message: Optional[str] = None
    current_step: Optional[str] = None
    manual_stopped_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ChannelListResponse(BaseModel):
    """List of channels."""

    channels: list[ChannelResponse]


class SchedulePreviewResponse(BaseModel):
    """Current schedule check and next fire time of a channel."""

    channel_id: str
    time_zone: str
    fire_now: bool
    reason: str
    next_run_at: Optional[datetime] = None
    next_run_local: Optional[str] = None
    diagnostics: dict
