# automation_server/routers/jobs.py
from datetime import datetime
from typing import cast

from fastapi import APIRouter, Depends, Query, status

from automation_server.auth import verify_api_key
from automation_server.db.models import Job
from automation_server.schemas.jobs import (
    ActiveJobsResponse,
    DeleteReportResponse,
    JobApproveRequest,
    JobCreateRequest,
    JobListResponse,
    JobResponse,
)
from automation_server.services import jobs
from automation_server.services.worker import submit_job

router = APIRouter()


def _job_to_response(job: Job) -> JobResponse:
    """Convert Job model to JobResponse schema."""
    return JobResponse(
        job_id=cast(str, job.job_id),
        channel_id=cast(str | None, job.channel_id),
        channel_name=cast(str | None, job.channel_name),
        is_auto=cast(bool, job.is_auto),
        status=cast(str, job.status),
        prompt=cast(str, job.prompt),
        idea_text=cast(str | None, job.idea_text),
        video_title=cast(str | None, job.video_title),
        result_path=cast(str | None, job.result_path),
        external_request_ref=cast(int | None, job.external_request_ref),
        external_deliverable_ref=cast(int | None, job.external_deliverable_ref),
        matching_method=cast(str | None, job.matching_method),
        error_message=cast(str | None, job.error_message),
        drive_file_id=cast(str | None, job.drive_file_id),
        web_view_link=cast(str | None, job.web_view_link),
        web_content_link=cast(str | None, job.web_content_link),
        attempts=cast(int, job.attempts or 0),
        created_at=cast(datetime, job.created_at),
        updated_at=cast(datetime, job.updated_at),
    )


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
def create_job_endpoint(request: JobCreateRequest, api_key: str = Depends(verify_api_key)):
    """Create a manual job; its pipeline starts in the background."""
    job = jobs.create_job(
        prompt=request.prompt,
        channel_id=request.channel_id,
        idea_text=request.idea_text,
        video_title=request.video_title,
    )
    submit_job(cast(str, job.job_id))
    return _job_to_response(job)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs_endpoint(
    channel_id: str | None = Query(None, description="Filter by channel"),
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of jobs to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
):
    """List jobs with filtering."""
    items, total = jobs.list_jobs(channel_id=channel_id, status=status, limit=limit, offset=offset)
    return JobListResponse(jobs=[_job_to_response(job) for job in items], total=total, limit=limit, offset=offset)


@router.get("/jobs/active", response_model=ActiveJobsResponse)
def active_jobs_endpoint(
    channel_id: str | None = Query(None, description="Restrict to one channel"),
    api_key: str = Depends(verify_api_key),
):
    """Jobs currently counted against the active-job limit."""
    items = jobs.get_active_jobs(channel_id)
    return ActiveJobsResponse(channel_id=channel_id, active=len(items), jobs=[_job_to_response(j) for j in items])


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job_endpoint(job_id: str, api_key: str = Depends(verify_api_key)):
    """Get job status and results."""
    return _job_to_response(jobs.require_job(job_id))


@router.post("/jobs/{job_id}/approve", response_model=JobResponse)
def approve_job_endpoint(
    job_id: str,
    request: JobApproveRequest | None = None,
    api_key: str = Depends(verify_api_key),
):
    """Approve a ready job and upload it to remote storage."""
    title = request.video_title if request else None
    return _job_to_response(jobs.approve_job(job_id, video_title=title))


@router.post("/jobs/{job_id}/reject", response_model=DeleteReportResponse)
def reject_job_endpoint(job_id: str, api_key: str = Depends(verify_api_key)):
    """Reject a job and delete it with its files."""
    return DeleteReportResponse(**jobs.reject_job(job_id).model_dump())


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
def retry_job_endpoint(job_id: str, api_key: str = Depends(verify_api_key)):
    """Re-queue a failed job."""
    job = jobs.retry_job(job_id)
    submit_job(job_id)
    return _job_to_response(job)


@router.delete("/jobs/{job_id}", response_model=DeleteReportResponse)
def delete_job_endpoint(job_id: str, api_key: str = Depends(verify_api_key)):
    """Delete a job with every artifact it owns."""
    return DeleteReportResponse(**jobs.delete_job(job_id).model_dump())
