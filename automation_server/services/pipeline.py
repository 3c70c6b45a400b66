# automation_server/services/pipeline.py
import logging
from typing import Optional, cast

from automation_server.db.models import Job
from automation_server.services import jobs, matching, notifications, reservations
from automation_server.services.audit import EventStep, RunLoggerAdapter, log_event
from automation_server.services.channels import release_lease, update_channel_status
from automation_server.services.jobs import JobStatus
from videogen.clients.registry import ClientRegistry
from videogen.errors import ConfigError, DataIntegrityError, InvalidTransition, JobCancelled, MatchTimeout
from videogen.schedule.models import AutomationStatus

logger = logging.getLogger(__name__)


def describe_error(error: BaseException) -> str:
    """Short, user-facing description of a pipeline failure."""
    text = str(error)
    lowered = text.lower()
    if isinstance(error, ConfigError) or "api key" in lowered:
        return f"Configuration error: {text}"
    if isinstance(error, TimeoutError) or "timeout" in lowered or "timed out" in lowered:
        return f"Timed out: {text}"
    if isinstance(error, ConnectionError) or "connection refused" in lowered:
        return f"Service unavailable: {text}"
    if "429" in lowered or "rate limit" in lowered:
        return f"Rate limit exceeded: {text}"
    return text or error.__class__.__name__


def _fail(job_id: str, status: JobStatus, message: str, log: logging.LoggerAdapter) -> None:
    try:
        jobs.advance(job_id, status, error_message=message)
    except (InvalidTransition, DataIntegrityError) as e:
        log.warning("Could not mark job %s as %s: %s", job_id, status.value, e)


def process_job(job_id: str, run_id: Optional[str] = None) -> Job | None:
    """
    Drive a queued job through dispatch, matching and download.

    Updates job status: queued → sending → waiting_response → downloading →
    ready (→ uploading → uploaded when the channel auto-approves). The first
    transition is a conditional claim, so a job is processed at most once
    even if several workers pick it up.

    Auto jobs always release the channel lease they were created under when
    the pipeline ends; a lease since taken over by another run is left alone.
    """
    job = jobs.get_job(job_id)
    if job is None:
        logger.error("Job %s not found", job_id)
        return None
    if job.status != JobStatus.QUEUED.value:
        logger.warning("Job %s is not queued (status: %s), skipping", job_id, job.status)
        return job

    channel_id = cast(Optional[str], job.channel_id)
    channel_name = cast(Optional[str], job.channel_name)
    is_auto = bool(job.is_auto)
    lease_id = cast(Optional[str], job.lease_run_id) or run_id
    log = RunLoggerAdapter(logger, {"run_id": run_id or job_id, "channel": channel_name or channel_id})

    def event(step: EventStep, message: str, level: str = "info", **details) -> None:
        log_event(
            message,
            step=step,
            level=level,
            run_id=run_id,
            channel_id=channel_id,
            channel_name=channel_name,
            job_id=job_id,
            details=details or None,
        )

    try:
        job = jobs.advance(job_id, JobStatus.SENDING, attempts=(job.attempts or 0) + 1)
    except InvalidTransition as e:
        log.info("Job %s already claimed: %s", job_id, e)
        return jobs.get_job(job_id)

    failed = False
    try:
        client = ClientRegistry.generation()

        request_ref = cast(Optional[int], job.external_request_ref)
        if request_ref is None:
            request_ref = client.dispatch(cast(str, job.prompt))
            event(EventStep.SEND_TO_BOT, "Request sent to the generation worker", request_ref=request_ref)
        else:
            event(EventStep.SEND_TO_BOT, "Reusing the previously sent request", request_ref=request_ref)
        job = jobs.advance(job_id, JobStatus.WAITING_RESPONSE, external_request_ref=request_ref)

        match = matching.wait_for_deliverable(client, job_id, request_ref)
        event(
            EventStep.WAIT_VIDEO,
            f"Video reply matched ({match.method})",
            deliverable_id=match.message.id,
            matching_method=match.method,
        )
        job = jobs.advance(
            job_id,
            JobStatus.DOWNLOADING,
            external_deliverable_ref=match.message.id,
            matching_method=match.method,
        )

        path = matching.download_deliverable(client, job_id, match.message.id)
        job = jobs.advance(job_id, JobStatus.READY, result_path=str(path), error_message=None)
        event(EventStep.DOWNLOAD, "Video downloaded", path=path.name)

        if not jobs.maybe_auto_approve(job, run_id=run_id):
            notifications.notify_job_ready(job)
        job = jobs.get_job(job_id) or job

    except MatchTimeout as e:
        failed = True
        event(EventStep.WAIT_VIDEO, str(e), level="error")
        _fail(job_id, JobStatus.TIMEOUT, str(e), log)
    except JobCancelled as e:
        log.info("Pipeline stopped: %s", e)
        event(EventStep.OTHER, str(e), level="warn")
    except DataIntegrityError as e:
        log.warning("Pipeline aborted, job record changed underneath: %s", e)
        # A reservation made just before the job vanished would block the deliverable for good
        released = reservations.release_for_job(job_id)
        if released:
            log.info("Released %d reservation(s) of vanished job %s", released, job_id)
    except Exception as e:
        failed = True
        log.error("Job %s failed: %s", job_id, e, exc_info=True)
        message = describe_error(e)
        event(EventStep.OTHER, message, level="error", error_type=e.__class__.__name__)
        _fail(job_id, JobStatus.ERROR, message, log)
    finally:
        if is_auto and channel_id and lease_id:
            try:
                if not release_lease(channel_id, lease_id):
                    log.info("Lease of channel %s is no longer held by %s", channel_id, lease_id)
            except Exception as e:
                log.error("Failed to release lease of channel %s: %s", channel_id, e, exc_info=True)

    if is_auto and channel_id:
        latest = jobs.get_job(job_id)
        if failed:
            update_channel_status(
                channel_id,
                AutomationStatus.ERROR,
                latest.error_message if latest else "Job failed",
                step="pipeline",
                run_id=run_id,
            )
        elif latest is not None and latest.status in (JobStatus.READY.value, JobStatus.UPLOADED.value):
            update_channel_status(
                channel_id,
                AutomationStatus.SUCCESS,
                f"Video {latest.status}",
                step="pipeline",
                run_id=run_id,
            )

    return jobs.get_job(job_id)
