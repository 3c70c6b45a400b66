# automation_server/schemas/jobs.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class JobCreateRequest(BaseModel):
    """Request to create a manual video job."""

    prompt: str = Field(..., min_length=1, description="Video generation prompt")
    channel_id: Optional[str] = Field(None, description="Owning channel; its active-job limit applies")
    idea_text: Optional[str] = None
    video_title: Optional[str] = Field(None, max_length=200)


class JobApproveRequest(BaseModel):
    video_title: Optional[str] = Field(None, max_length=200, description="Override the stored title")


class JobResponse(BaseModel):
    """Video job status and results."""

    job_id: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    is_auto: bool
    status: str
    prompt: str
    idea_text: Optional[str] = None
    video_title: Optional[str] = None
    result_path: Optional[str] = None
    external_request_ref: Optional[int] = None
    external_deliverable_ref: Optional[int] = None
    matching_method: Optional[str] = None
    error_message: Optional[str] = None
    drive_file_id: Optional[str] = None
    web_view_link: Optional[str] = None
    web_content_link: Optional[str] = None
    attempts: int
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """List of jobs with pagination."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class DeleteReportResponse(BaseModel):
    job_id: str
    deleted_files: List[str]
    missing_files: List[str]
    reservations_removed: int
    events_removed: int
    record_deleted: bool
    errors: dict


class ActiveJobsResponse(BaseModel):
    channel_id: Optional[str] = None
    active: int
    jobs: list[JobResponse]
