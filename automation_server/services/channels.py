# automation_server/services/channels.py
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import or_, update

from automation_server.db.engine import get_session
from automation_server.db.models import Channel
from automation_server.services.audit import EventStep, log_event
from videogen.clients.base import ChannelBrief
from videogen.conf import STUCK_RUN_MINUTES
from videogen.errors import ChannelNotFound, ConfigError
from videogen.files import normalize_folder_id
from videogen.schedule.clock import get_zone, utcnow
from videogen.schedule.models import AutomationStatus, ChannelAutomation

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "name",
    "description",
    "language",
    "duration_seconds",
    "idea_prompt_template",
    "video_prompt_template",
    "drive_folder_id",
    "external_url",
)
AUTOMATION_FIELDS = (
    "automation_enabled",
    "days_of_week",
    "times",
    "time_zone",
    "max_active_tasks",
    "auto_approve_and_upload",
    "use_only_fresh_ideas",
)


def to_automation(channel: Channel) -> ChannelAutomation:
    """Build the normalized automation record for a channel row."""
    return ChannelAutomation(
        enabled=channel.automation_enabled,
        days_of_week=channel.days_of_week or [],
        times=channel.times or [],
        time_zone=channel.time_zone,
        max_active_tasks=channel.max_active_tasks,
        auto_approve_and_upload=channel.auto_approve_and_upload,
        use_only_fresh_ideas=channel.use_only_fresh_ideas,
        is_running=channel.is_running,
        run_id=channel.run_id,
        lease_acquired_at=channel.lease_acquired_at,
        last_run_at=channel.last_run_at,
        next_run_at=channel.next_run_at,
        status=channel.status,
        status_message=channel.status_message,
        current_step=channel.current_step,
        manual_stopped_at=channel.manual_stopped_at,
    )


def to_brief(channel: Channel, avoid_ideas: Optional[List[str]] = None) -> ChannelBrief:
    return ChannelBrief(
        name=cast(str, channel.name),
        description=cast(Optional[str], channel.description),
        language=cast(str, channel.language or "ru"),
        duration_seconds=cast(int, channel.duration_seconds or 8),
        idea_prompt_template=cast(Optional[str], channel.idea_prompt_template),
        video_prompt_template=cast(Optional[str], channel.video_prompt_template),
        avoid_ideas=avoid_ideas or [],
    )


def _apply(channel: Channel, payload: Dict[str, Any]) -> None:
    for key in PROFILE_FIELDS + AUTOMATION_FIELDS:
        if key in payload:
            setattr(channel, key, payload[key])
    if "drive_folder_id" in payload:
        channel.drive_folder_id = normalize_folder_id(payload["drive_folder_id"])

    # Round-trip through the normalizer so stored config is already clean.
    automation = to_automation(channel)
    try:
        get_zone(automation.time_zone)
    except ConfigError as e:
        raise ValueError(str(e)) from e
    channel.days_of_week = automation.days_of_week
    channel.times = automation.times
    channel.time_zone = automation.time_zone
    channel.max_active_tasks = automation.max_active_tasks
    channel.automation_enabled = automation.enabled


def create_channel(payload: Dict[str, Any]) -> Channel:
    """
    Create a channel. ``name`` is required; ``channel_id`` is generated when absent.

    Raises:
        ValueError: If required fields are missing
    """
    if not payload.get("name"):
        raise ValueError("Missing required field: name")

    channel_id = payload.get("channel_id") or str(uuid.uuid4())
    now = utcnow()
    session = get_session()
    try:
        channel = Channel(
            channel_id=channel_id,
            language="ru",
            duration_seconds=8,
            automation_enabled=False,
            auto_approve_and_upload=False,
            use_only_fresh_ideas=False,
            is_running=False,
            status=AutomationStatus.IDLE.value,
            created_at=now,
            updated_at=now,
        )
        _apply(channel, payload)
        session.add(channel)
        session.commit()
        logger.info("Channel created → %s (%s)", channel.name, channel_id)
        return channel
    finally:
        session.close()


def update_channel(channel_id: str, payload: Dict[str, Any]) -> Channel:
    session = get_session()
    try:
        channel = session.get(Channel, channel_id)
        if channel is None:
            raise ChannelNotFound(channel_id)
        _apply(channel, payload)
        channel.updated_at = utcnow()
        session.commit()
        logger.info("Channel updated → %s", channel_id)
        return channel
    finally:
        session.close()


def get_channel(channel_id: str) -> Channel | None:
    session = get_session()
    try:
        return session.get(Channel, channel_id)
    finally:
        session.close()


def require_channel(channel_id: str) -> Channel:
    channel = get_channel(channel_id)
    if channel is None:
        raise ChannelNotFound(channel_id)
    return channel


def list_channels(enabled_only: bool = False) -> List[Channel]:
    session = get_session()
    try:
        query = session.query(Channel)
        if enabled_only:
            query = query.filter(Channel.automation_enabled == True)  # noqa: E712
        return query.order_by(Channel.created_at.asc()).all()
    finally:
        session.close()


def delete_channel(channel_id: str) -> bool:
    session = get_session()
    try:
        channel = session.get(Channel, channel_id)
        if not channel:
            return False
        session.delete(channel)
        session.commit()
        logger.info("Channel deleted → %s", channel_id)
        return True
    finally:
        session.close()


# ----------------------------------------------------------------------
# Lease
# ----------------------------------------------------------------------
def acquire_lease(
    channel_id: str,
    run_id: str,
    now: Optional[datetime] = None,
    ttl_minutes: int = STUCK_RUN_MINUTES,
) -> bool:
    """
    Take the channel's run lease with a single conditional write.

    Succeeds when the channel is idle or its current lease is older than
    ``ttl_minutes``. Exactly one of several concurrent callers wins.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=ttl_minutes)
    session = get_session()
    try:
        result = session.execute(
            update(Channel)
            .where(Channel.channel_id == channel_id)
            .where(or_(Channel.is_running == False, Channel.lease_acquired_at < cutoff))  # noqa: E712
            .values(
                is_running=True,
                run_id=run_id,
                lease_acquired_at=now,
                status=AutomationStatus.RUNNING.value,
                last_status_at=now,
            )
        )
        session.commit()
        acquired = result.rowcount == 1
        if acquired:
            logger.debug("Lease acquired → channel=%s run=%s", channel_id, run_id[:8])
        else:
            logger.info("Lease busy → channel=%s", channel_id)
        return acquired
    finally:
        session.close()


def release_lease(channel_id: str, run_id: Optional[str] = None) -> bool:
    """
    Clear the channel's running flag.

    With ``run_id`` only the holder's lease is released, so a late pipeline
    cannot free a lease a newer run took over.
    """
    session = get_session()
    try:
        stmt = update(Channel).where(Channel.channel_id == channel_id)
        if run_id is not None:
            stmt = stmt.where(or_(Channel.run_id == run_id, Channel.run_id.is_(None)))
        result = session.execute(stmt.values(is_running=False, run_id=None, lease_acquired_at=None))
        session.commit()
        return result.rowcount == 1
    finally:
        session.close()


def reset_running_flags() -> List[str]:
    """Clear the lease on every flagged channel; returns the affected ids."""
    session = get_session()
    try:
        flagged = session.query(Channel).filter(Channel.is_running == True).all()  # noqa: E712
        channel_ids = [cast(str, c.channel_id) for c in flagged]
        for channel in flagged:
            channel.is_running = False
            channel.run_id = None
            channel.lease_acquired_at = None
        session.commit()
    finally:
        session.close()

    for channel_id in channel_ids:
        log_event("Running flag reset manually", step=EventStep.RECOVERY, channel_id=channel_id)
    logger.info("Reset running flags on %d channel(s)", len(channel_ids))
    return channel_ids


def set_run_marks(
    channel_id: str,
    last_run_at: Optional[datetime] = None,
    next_run_at: Optional[datetime] = None,
) -> None:
    session = get_session()
    try:
        values: Dict[str, Any] = {"next_run_at": next_run_at}
        if last_run_at is not None:
            values["last_run_at"] = last_run_at
        session.execute(update(Channel).where(Channel.channel_id == channel_id).values(**values))
        session.commit()
    finally:
        session.close()


def disable_automation(channel_id: str, stopped_at: Optional[datetime] = None) -> Channel:
    session = get_session()
    try:
        channel = session.get(Channel, channel_id)
        if channel is None:
            raise ChannelNotFound(channel_id)
        channel.automation_enabled = False
        channel.is_running = False
        channel.run_id = None
        channel.lease_acquired_at = None
        channel.next_run_at = None
        channel.manual_stopped_at = stopped_at or utcnow()
        channel.status = AutomationStatus.IDLE.value
        channel.status_message = "Stopped manually"
        session.commit()
        return channel
    finally:
        session.close()


def update_channel_status(
    channel_id: str,
    status: AutomationStatus,
    message: Optional[str] = None,
    step: Optional[str] = None,
    run_id: Optional[str] = None,
) -> None:
    """
    Record the channel's last automation status and log an audit event.

    Never raises: a status write must not break the pipeline reporting it.
    """
    now = utcnow()
    session = get_session()
    try:
        session.execute(
            update(Channel)
            .where(Channel.channel_id == channel_id)
            .values(status=status.value, status_message=message, current_step=step, last_status_at=now)
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error("Failed to update status of channel %s: %s", channel_id, e, exc_info=True)
        return
    finally:
        session.close()

    log_event(
        message or f"Channel status → {status.value}",
        step=EventStep.OTHER,
        level="error" if status == AutomationStatus.ERROR else "info",
        run_id=run_id,
        channel_id=channel_id,
        details={"status": status.value, "step": step},
    )
