# automation_server/routers/channels.py
from datetime import datetime
from typing import cast

from fastapi import APIRouter, Depends, status

from automation_server.auth import verify_api_key
from automation_server.db.models import Channel
from automation_server.schemas.channels import (
    ChannelCreateRequest,
    ChannelListResponse,
    ChannelResponse,
    ChannelUpdateRequest,
    SchedulePreviewResponse,
)
from automation_server.services import channels as channel_store
from automation_server.services.jobs import count_active_jobs
from videogen.errors import ChannelNotFound
from videogen.schedule.clock import format_local, utcnow
from videogen.schedule.recurrence import next_fire_instant, should_fire

router = APIRouter()


def _channel_to_response(channel: Channel) -> ChannelResponse:
    """Convert Channel model to ChannelResponse schema; automation fields come normalized."""
    automation = channel_store.to_automation(channel)
    return ChannelResponse(
        channel_id=cast(str, channel.channel_id),
        name=cast(str, channel.name),
        description=cast(str | None, channel.description),
        language=cast(str, channel.language),
        duration_seconds=cast(int, channel.duration_seconds),
        drive_folder_id=cast(str | None, channel.drive_folder_id),
        external_url=cast(str | None, channel.external_url),
        automation_enabled=automation.enabled,
        days_of_week=automation.days_of_week,
        times=automation.times,
        time_zone=automation.time_zone,
        max_active_tasks=automation.max_active_tasks,
        auto_approve_and_upload=automation.auto_approve_and_upload,
        use_only_fresh_ideas=automation.use_only_fresh_ideas,
        is_running=automation.is_running,
        run_id=automation.run_id,
        last_run_at=automation.last_run_at,
        next_run_at=automation.next_run_at,
        status=automation.status.value,
        status_message=automation.status_message,
        current_step=automation.current_step,
        manual_stopped_at=automation.manual_stopped_at,
        created_at=cast(datetime, channel.created_at),
        updated_at=cast(datetime, channel.updated_at),
    )


def _refresh_next_run(channel: Channel) -> Channel:
    automation = channel_store.to_automation(channel)
    next_at = next_fire_instant(automation, utcnow()) if automation.enabled else None
    channel_store.set_run_marks(cast(str, channel.channel_id), next_run_at=next_at)
    return channel_store.require_channel(cast(str, channel.channel_id))


@router.post("/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
def create_channel_endpoint(request: ChannelCreateRequest, api_key: str = Depends(verify_api_key)):
    """Create a channel."""
    channel = channel_store.create_channel(request.model_dump(exclude_none=True))
    return _channel_to_response(_refresh_next_run(channel))


@router.get("/channels", response_model=ChannelListResponse)
def list_channels_endpoint(api_key: str = Depends(verify_api_key)):
    """List all channels."""
    return ChannelListResponse(channels=[_channel_to_response(c) for c in channel_store.list_channels()])


@router.get("/channels/{channel_id}", response_model=ChannelResponse)
def get_channel_endpoint(channel_id: str, api_key: str = Depends(verify_api_key)):
    """Get a specific channel."""
    return _channel_to_response(channel_store.require_channel(channel_id))


@router.patch("/channels/{channel_id}", response_model=ChannelResponse)
def update_channel_endpoint(channel_id: str, request: ChannelUpdateRequest, api_key: str = Depends(verify_api_key)):
    """Update channel fields; the next run is recomputed."""
    channel = channel_store.update_channel(channel_id, request.model_dump(exclude_unset=True))
    return _channel_to_response(_refresh_next_run(channel))


@router.delete("/channels/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_channel_endpoint(channel_id: str, api_key: str = Depends(verify_api_key)):
    """Delete a channel."""
    if not channel_store.delete_channel(channel_id):
        raise ChannelNotFound(channel_id)


@router.get("/channels/{channel_id}/schedule", response_model=SchedulePreviewResponse)
def schedule_preview_endpoint(channel_id: str, api_key: str = Depends(verify_api_key)):
    """Explain whether the channel would fire right now and when it fires next."""
    channel = channel_store.require_channel(channel_id)
    automation = channel_store.to_automation(channel)
    now = utcnow()
    decision = should_fire(automation, now, count_active_jobs(channel_id, now=now))
    next_at = next_fire_instant(automation, now)
    return SchedulePreviewResponse(
        channel_id=channel_id,
        time_zone=automation.time_zone,
        fire_now=decision.fire,
        reason=decision.reason.value,
        next_run_at=next_at,
        next_run_local=format_local(next_at, automation.time_zone) if next_at else None,
        diagnostics=decision.diagnostics,
    )
