# automation_server/services/orchestrator.py
"""
Scheduled automation pass over all channels.

A pass loads every channel, asks the recurrence engine whether each one is
due, and for due channels takes the channel lease, generates an idea,
creates an auto job and runs its pipeline. Channels are processed one after
another and each inside its own error boundary, so one broken channel never
stops the rest of the pass. Every decision is recorded in the run's audit
trail.
"""
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, cast

from pydantic import BaseModel, Field

from automation_server.db.models import Channel, Job
from automation_server.services import channels as channel_store
from automation_server.services import jobs
from automation_server.services.audit import EventStep, RunLogger, log_event
from automation_server.services.pipeline import process_job
from automation_server.services.worker import submit_job
from videogen.clients.ideas import parse_idea_payload
from videogen.clients.registry import ClientRegistry
from videogen.conf import DEFAULT_TIMEZONE, STUCK_RUN_MINUTES
from videogen.errors import CapacityExceeded, RunNotAllowed
from videogen.schedule.clock import ensure_utc, format_local, utcnow
from videogen.schedule.models import AutomationStatus, ChannelAutomation, CheckReason, FireDecision, SlotMatch
from videogen.schedule.recurrence import next_fire_instant, should_fire, slot_instant

logger = logging.getLogger(__name__)


class ChannelResult(BaseModel):
    channel_id: str
    channel_name: Optional[str] = None
    reason: CheckReason
    fired: bool = False
    job_id: Optional[str] = None
    recovered: bool = False
    error: Optional[str] = None


class RunSummary(BaseModel):
    run_id: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: int
    channels_planned: int
    channels_processed: int
    jobs_created: int
    errors_count: int
    channels: List[ChannelResult] = Field(default_factory=list)


def _is_stale(anchor: Optional[datetime], now: datetime) -> bool:
    return anchor is None or now - anchor > timedelta(minutes=STUCK_RUN_MINUTES)


def recover_stuck_channel(
    channel: Channel,
    automation: ChannelAutomation,
    now: datetime,
    run: Optional[RunLogger] = None,
) -> bool:
    """
    Clear a running flag nobody is going to clear.

    The flag is stale when its lease is older than STUCK_RUN_MINUTES. Rows
    flagged without a lease timestamp fall back to ``last_run_at`` (or are
    stale outright when that is missing too). No job is created here; the
    channel fires again on its next eligible pass.
    """
    anchor = automation.lease_acquired_at or automation.last_run_at
    if not _is_stale(anchor, now):
        return False

    channel_id = cast(str, channel.channel_id)
    if not channel_store.release_lease(channel_id, automation.run_id):
        return False

    message = "Cleared a stuck running flag"
    details = {
        "stale_run_id": automation.run_id,
        "lease_acquired_at": automation.lease_acquired_at.isoformat() if automation.lease_acquired_at else None,
        "last_run_at": automation.last_run_at.isoformat() if automation.last_run_at else None,
        "threshold_minutes": STUCK_RUN_MINUTES,
    }
    if run is not None:
        run.event(EventStep.RECOVERY, message, level="warn", channel_id=channel_id,
                  channel_name=cast(str, channel.name), details=details)
    else:
        log_event(message, step=EventStep.RECOVERY, level="warn", channel_id=channel_id,
                  channel_name=cast(str, channel.name), details=details)
    return True


def _generate_and_create(
    channel: Channel,
    automation: ChannelAutomation,
    event,
    lease_run_id: str,
) -> Job:
    """Idea → auto job. CapacityExceeded propagates when the channel is full."""
    channel_id = cast(str, channel.channel_id)
    avoid = jobs.used_idea_texts(channel_id) if automation.use_only_fresh_ideas else []

    payload = ClientRegistry.text().generate(channel_store.to_brief(channel, avoid))
    idea = parse_idea_payload(payload)
    event(EventStep.GENERATE_IDEA, "Idea generated", details={"idea": idea.idea_text[:200], "title": idea.title})

    job = jobs.create_job(
        prompt=idea.prompt,
        channel_id=channel_id,
        channel_name=cast(str, channel.name),
        idea_text=idea.idea_text,
        video_title=idea.title,
        is_auto=True,
        max_active=automation.max_active_tasks,
        lease_run_id=lease_run_id,
    )

    event(EventStep.CREATE_JOB, "Auto job created", job_id=cast(str, job.job_id))
    return job


def _fire(
    channel: Channel,
    automation: ChannelAutomation,
    decision: FireDecision,
    now: datetime,
    run: RunLogger,
    result: ChannelResult,
) -> None:
    channel_id = cast(str, channel.channel_id)
    channel_name = cast(str, channel.name)

    def event(step: EventStep, message: str, level: str = "info", **kwargs: Any) -> None:
        run.event(step, message, level=level, channel_id=channel_id, channel_name=channel_name, **kwargs)

    if not channel_store.acquire_lease(channel_id, run.run_id, now):
        event(EventStep.CHANNEL_CHECK, "Lease is held by another run, skipping", level="warn")
        return

    slot = cast(SlotMatch, decision.slot)
    try:
        channel_store.update_channel_status(channel_id, AutomationStatus.RUNNING, "Generating idea",
                                            step=EventStep.GENERATE_IDEA.value, run_id=run.run_id)
        try:
            job = _generate_and_create(channel, automation, event, run.run_id)
        except CapacityExceeded as e:
            event(EventStep.CREATE_JOB, str(e), level="warn",
                  details={"active": e.active_count, "max_active": e.max_active})
            channel_store.release_lease(channel_id, run.run_id)
            return

        fired_at = slot_instant(slot, automation.time_zone)
        next_at = next_fire_instant(automation.model_copy(update={"last_run_at": fired_at}), now)
        channel_store.set_run_marks(channel_id, last_run_at=fired_at, next_run_at=next_at)
        event(
            EventStep.UPDATE_CHANNEL_NEXT_RUN,
            f"Next run at {format_local(next_at, automation.time_zone)}",
            details={
                "last_run_at": fired_at.isoformat(),
                "next_run_at": next_at.isoformat() if next_at else None,
                "slot": slot.time,
                "is_catchup": slot.is_catchup,
            },
        )
    except Exception:
        try:
            channel_store.release_lease(channel_id, run.run_id)
        except Exception as release_error:
            logger.error("Failed to release lease of channel %s: %s", channel_id, release_error, exc_info=True)
        raise

    job_id = cast(str, job.job_id)
    result.fired = True
    result.job_id = job_id
    run.add_task(
        {
            "job_id": job_id,
            "channel_id": channel_id,
            "channel_name": channel_name,
            "slot": slot.time,
            "is_catchup": slot.is_catchup,
            "idea_text": job.idea_text,
        }
    )

    # Releases the lease when it ends, whatever the outcome.
    finished = process_job(job_id, run_id=run.run_id)
    if finished is not None and finished.status in (jobs.JobStatus.ERROR.value, jobs.JobStatus.TIMEOUT.value):
        event(EventStep.OTHER, f"Job {job_id} ended as {finished.status}: {finished.error_message}",
              level="error", job_id=job_id)


def _process_channel(channel: Channel, now: datetime, run: RunLogger) -> ChannelResult:
    channel_id = cast(str, channel.channel_id)
    channel_name = cast(str, channel.name)
    result = ChannelResult(channel_id=channel_id, channel_name=channel_name, reason=CheckReason.DISABLED)

    try:
        run.channels_processed += 1
        automation = channel_store.to_automation(channel)
        active = jobs.count_active_jobs(channel_id, now=now)
        decision = should_fire(automation, now, active)
        result.reason = decision.reason

        run.add_channel_check(
            {
                "channel_id": channel_id,
                "channel_name": channel_name,
                "reason": decision.reason.value,
                "fire": decision.fire,
                "diagnostics": decision.diagnostics,
            }
        )
        run.event(
            EventStep.CHANNEL_CHECK,
            f"Check result: {decision.reason.value}",
            channel_id=channel_id,
            channel_name=channel_name,
            details=decision.diagnostics,
        )

        if decision.reason == CheckReason.ALREADY_RUNNING:
            result.recovered = recover_stuck_channel(channel, automation, now, run)
        elif decision.fire:
            _fire(channel, automation, decision, now, run, result)

        run.channels_ok += 1
    except Exception as e:
        logger.error("Channel %s failed during scheduled run: %s", channel_id, e, exc_info=True)
        result.error = str(e)
        run.event(
            EventStep.OTHER,
            f"Channel processing failed: {e}",
            level="error",
            channel_id=channel_id,
            channel_name=channel_name,
            details={"error_type": e.__class__.__name__},
        )
        channel_store.update_channel_status(channel_id, AutomationStatus.ERROR, str(e), run_id=run.run_id)

    return result


def run_scheduled(now: Optional[datetime] = None) -> RunSummary:
    """
    One scheduled pass over all channels.

    Run status: ``success`` without errors, ``error`` when there were errors
    and no channel succeeded and no job was created, ``partial`` otherwise.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    started = time.monotonic()

    all_channels = channel_store.list_channels()
    enabled = [c for c in all_channels if channel_store.to_automation(c).enabled]

    run = RunLogger(timezone=DEFAULT_TIMEZONE, invoked_at=now)
    run.channels_planned = len(enabled)
    run.event(
        EventStep.SELECT_CHANNELS,
        f"{len(enabled)} of {len(all_channels)} channel(s) have automation enabled",
        details={"channel_ids": [c.channel_id for c in enabled], "now": now.isoformat()},
    )

    results = [_process_channel(channel, now, run) for channel in enabled]
    record = run.finish()

    return RunSummary(
        run_id=run.run_id,
        status=cast(str, record.status),
        started_at=run.started_at,
        finished_at=cast(Optional[datetime], record.finished_at),
        duration_ms=int((time.monotonic() - started) * 1000),
        channels_planned=run.channels_planned,
        channels_processed=run.channels_processed,
        jobs_created=run.jobs_created,
        errors_count=run.errors_count,
        channels=results,
    )


def run_channel_now(channel_id: str, now: Optional[datetime] = None) -> Job:
    """
    Fire a channel immediately, ignoring its days and times.

    The job's pipeline runs on the background worker; the created job is
    returned right away.

    Raises:
        ChannelNotFound: If the channel does not exist
        RunNotAllowed: If automation is disabled or the channel is already running
        CapacityExceeded: If the channel's active-job limit is reached
    """
    now = ensure_utc(now) if now is not None else utcnow()
    channel = channel_store.require_channel(channel_id)
    automation = channel_store.to_automation(channel)
    if not automation.enabled:
        raise RunNotAllowed(f"Automation is disabled for channel {channel_id}")

    lease_id = str(uuid.uuid4())
    if not channel_store.acquire_lease(channel_id, lease_id, now):
        raise RunNotAllowed(f"Channel {channel_id} is already running")

    def event(step: EventStep, message: str, level: str = "info", **kwargs: Any) -> None:
        log_event(message, step=step, level=level, run_id=lease_id, channel_id=channel_id,
                  channel_name=cast(str, channel.name), **kwargs)

    try:
        active = jobs.count_active_jobs(channel_id, now=now)
        if active >= automation.max_active_tasks:
            raise CapacityExceeded(active, automation.max_active_tasks, channel_id)
        job = _generate_and_create(channel, automation, event, lease_id)

        next_at = next_fire_instant(automation.model_copy(update={"last_run_at": now}), now)
        channel_store.set_run_marks(channel_id, last_run_at=now, next_run_at=next_at)
    except Exception:
        channel_store.release_lease(channel_id, lease_id)
        raise

    submit_job(cast(str, job.job_id), run_id=lease_id)
    logger.info("Manual run of channel %s started → job %s", channel_id, job.job_id)
    return job


def stop_channel(channel_id: str) -> Dict[str, Any]:
    """Disable a channel's automation, clear its lease and cancel its unfinished auto jobs."""
    channel = channel_store.disable_automation(channel_id)
    cancelled = jobs.cancel_channel_jobs(channel_id)
    log_event(
        f"Automation stopped manually, {len(cancelled)} job(s) cancelled",
        step=EventStep.OTHER,
        level="warn",
        channel_id=channel_id,
        channel_name=cast(str, channel.name),
        details={"cancelled_job_ids": cancelled},
    )
    return {
        "channel_id": channel_id,
        "cancelled_job_ids": cancelled,
        "stopped_at": channel.manual_stopped_at,
    }


def reset_running_flags() -> List[str]:
    return channel_store.reset_running_flags()
