# automation_server/routers/automation.py
from datetime import datetime
from typing import Any, cast

from fastapi import APIRouter, Depends, Query

from automation_server.auth import verify_api_key
from automation_server.db.models import Event, Run
from automation_server.schemas.automation import (
    EventListResponse,
    EventResponse,
    ResetFlagsResponse,
    RunListResponse,
    RunNowResponse,
    RunResponse,
    StopChannelRequest,
    StopChannelResponse,
)
from automation_server.services import audit, orchestrator
from automation_server.services.orchestrator import RunSummary
from videogen.errors import RunNotFound

router = APIRouter(prefix="/automation")


def _run_to_response(run: Run) -> RunResponse:
    """Convert Run model to RunResponse schema."""
    return RunResponse(
        run_id=cast(str, run.run_id),
        status=cast(str, run.status),
        started_at=cast(datetime, run.started_at),
        finished_at=cast(datetime | None, run.finished_at),
        scheduler_invocation_at=cast(datetime | None, run.scheduler_invocation_at),
        channels_planned=cast(int, run.channels_planned or 0),
        channels_processed=cast(int, run.channels_processed or 0),
        jobs_created=cast(int, run.jobs_created or 0),
        errors_count=cast(int, run.errors_count or 0),
        last_error_message=cast(str | None, run.last_error_message),
        timezone=cast(str | None, run.timezone),
        channels=cast(list[dict[str, Any]] | None, run.channels),
        tasks=cast(list[dict[str, Any]] | None, run.tasks),
    )


def _event_to_response(event: Event) -> EventResponse:
    return EventResponse(
        event_id=cast(str, event.event_id),
        run_id=cast(str | None, event.run_id),
        created_at=cast(datetime, event.created_at),
        level=cast(str, event.level),
        step=cast(str, event.step),
        channel_id=cast(str | None, event.channel_id),
        channel_name=cast(str | None, event.channel_name),
        job_id=cast(str | None, event.job_id),
        message=cast(str, event.message),
        details=cast(dict[str, Any] | None, event.details),
    )


@router.post("/run-scheduled", response_model=RunSummary)
def run_scheduled_endpoint(api_key: str = Depends(verify_api_key)):
    """Run one scheduled pass over all channels (called by an external cron)."""
    return orchestrator.run_scheduled()


@router.post("/channels/{channel_id}/run-now", response_model=RunNowResponse)
def run_now_endpoint(channel_id: str, api_key: str = Depends(verify_api_key)):
    """Fire a channel immediately, ignoring its schedule."""
    job = orchestrator.run_channel_now(channel_id)
    return RunNowResponse(channel_id=channel_id, job_id=cast(str, job.job_id), status=cast(str, job.status))


@router.post("/reset-running-flags", response_model=ResetFlagsResponse)
def reset_running_flags_endpoint(api_key: str = Depends(verify_api_key)):
    """Clear the running flag on every channel."""
    channel_ids = orchestrator.reset_running_flags()
    return ResetFlagsResponse(reset=len(channel_ids), channel_ids=channel_ids)


@router.post("/stop-channel", response_model=StopChannelResponse)
def stop_channel_endpoint(request: StopChannelRequest, api_key: str = Depends(verify_api_key)):
    """Disable a channel's automation and cancel its unfinished auto jobs."""
    return StopChannelResponse(**orchestrator.stop_channel(request.channel_id))


@router.get("/runs", response_model=RunListResponse)
def list_runs_endpoint(
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of runs to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
):
    """List scheduled runs, newest first."""
    runs, total = audit.list_runs(status=status, limit=limit, offset=offset)
    return RunListResponse(runs=[_run_to_response(run) for run in runs], total=total, limit=limit, offset=offset)


@router.get("/runs/{run_id}", response_model=RunResponse)
def get_run_endpoint(run_id: str, api_key: str = Depends(verify_api_key)):
    """Get one run with its per-channel check records."""
    run = audit.get_run(run_id)
    if not run:
        raise RunNotFound(run_id)
    return _run_to_response(run)


@router.get("/runs/{run_id}/events", response_model=EventListResponse)
def list_run_events_endpoint(
    run_id: str,
    limit: int = Query(500, ge=1, le=5000),
    api_key: str = Depends(verify_api_key),
):
    """Audit events of a run in chronological order."""
    events = audit.list_events(run_id=run_id, limit=limit)
    return EventListResponse(events=[_event_to_response(e) for e in events])
