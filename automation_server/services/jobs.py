# automation_server/services/jobs.py
"""
Video job lifecycle: creation under a concurrency cap, guarded status
transitions, approval/upload and cascading deletion.

Every status change is a conditional write (``WHERE status = <current>``)
validated against ``TRANSITIONS``, so two actors racing on the same job
cannot both move it.
"""
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, cast

from pydantic import BaseModel, Field
from sqlalchemy import func, update

from automation_server.db.engine import get_session
from automation_server.db.models import Channel, Job
from automation_server.services import audit, reservations
from automation_server.services.audit import EventStep, log_event
from automation_server.services.channels import release_lease, to_automation
from videogen.clients.registry import ClientRegistry
from videogen.conf import ACTIVE_JOB_MAX_AGE_MINUTES, DRIVE_FOLDER_ID, JOB_MAX_ATTEMPTS, MAX_ACTIVE_JOBS
from videogen.errors import (
    CapacityExceeded,
    ChannelNotFound,
    ConfigError,
    DataIntegrityError,
    InvalidTransition,
    JobNotFound,
)
from videogen.files import normalize_folder_id, remove_files, safe_file_name
from videogen.schedule.clock import utcnow

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    SENDING = "sending"
    WAITING_RESPONSE = "waiting_response"
    DOWNLOADING = "downloading"
    READY = "ready"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"


S = JobStatus

TRANSITIONS: Dict[JobStatus, frozenset] = {
    S.QUEUED: frozenset({S.SENDING, S.CANCELLED, S.REJECTED, S.ERROR}),
    S.SENDING: frozenset({S.WAITING_RESPONSE, S.CANCELLED, S.REJECTED, S.ERROR}),
    S.WAITING_RESPONSE: frozenset({S.DOWNLOADING, S.TIMEOUT, S.CANCELLED, S.REJECTED, S.ERROR}),
    S.DOWNLOADING: frozenset({S.READY, S.CANCELLED, S.REJECTED, S.ERROR}),
    S.READY: frozenset({S.UPLOADING, S.CANCELLED, S.REJECTED}),
    # uploading -> ready is the rollback after a failed upload
    S.UPLOADING: frozenset({S.UPLOADED, S.READY, S.ERROR}),
    # error -> queued is the retry edge, gated by attempts
    S.ERROR: frozenset({S.QUEUED, S.REJECTED}),
    S.UPLOADED: frozenset(),
    S.REJECTED: frozenset(),
    S.TIMEOUT: frozenset(),
    S.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = (S.QUEUED, S.SENDING, S.WAITING_RESPONSE, S.DOWNLOADING, S.UPLOADING)
FAILED_STATUSES = (S.ERROR, S.TIMEOUT)

_MUTABLE_FIELDS = frozenset(
    c.name for c in Job.__table__.columns if c.name not in ("job_id", "status", "created_at", "updated_at")
)


class DeleteReport(BaseModel):
    """What a cascade delete removed, per artifact kind."""

    job_id: str
    deleted_files: List[str] = Field(default_factory=list)
    missing_files: List[str] = Field(default_factory=list)
    reservations_removed: int = 0
    events_removed: int = 0
    record_deleted: bool = False
    errors: Dict[str, str] = Field(default_factory=dict)


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------
def _active_filter(query, now: datetime, channel_id: Optional[str] = None):
    cutoff = now - timedelta(minutes=ACTIVE_JOB_MAX_AGE_MINUTES)
    query = query.filter(Job.status.in_([s.value for s in ACTIVE_STATUSES])).filter(Job.updated_at >= cutoff)
    if channel_id:
        query = query.filter(Job.channel_id == channel_id)
    return query


def count_active_jobs(channel_id: str | None = None, now: datetime | None = None) -> int:
    """Jobs in an active status updated within ACTIVE_JOB_MAX_AGE_MINUTES."""
    session = get_session()
    try:
        return _active_filter(session.query(func.count(Job.job_id)), now or utcnow(), channel_id).scalar() or 0
    finally:
        session.close()


def get_active_jobs(channel_id: str | None = None, now: datetime | None = None) -> List[Job]:
    session = get_session()
    try:
        query = _active_filter(session.query(Job), now or utcnow(), channel_id)
        return query.order_by(Job.created_at.asc()).all()
    finally:
        session.close()


def get_job(job_id: str) -> Job | None:
    """Get a job by ID."""
    session = get_session()
    try:
        return session.get(Job, job_id)
    finally:
        session.close()


def require_job(job_id: str) -> Job:
    job = get_job(job_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


def list_jobs(
    channel_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Job], int]:
    """
    List jobs with filtering, newest first.

    Returns:
        (jobs, total_count)
    """
    session = get_session()
    try:
        query = session.query(Job)
        if channel_id:
            query = query.filter(Job.channel_id == channel_id)
        if status:
            query = query.filter(Job.status == status)
        total = query.count()
        jobs = query.order_by(Job.created_at.desc()).offset(offset).limit(limit).all()
        return jobs, total
    finally:
        session.close()


def used_idea_texts(channel_id: str, limit: int = 50) -> List[str]:
    """Idea texts of the channel's most recent jobs."""
    session = get_session()
    try:
        rows = (
            session.query(Job.idea_text)
            .filter(Job.channel_id == channel_id)
            .filter(Job.idea_text.isnot(None))
            .order_by(Job.created_at.desc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]
    finally:
        session.close()


def claimed_deliverable_refs(exclude_job_id: str) -> set[int]:
    """Deliverable ids already recorded on jobs other than ``exclude_job_id``."""
    session = get_session()
    try:
        rows = (
            session.query(Job.external_deliverable_ref)
            .filter(Job.external_deliverable_ref.isnot(None))
            .filter(Job.job_id != exclude_job_id)
            .all()
        )
        return {row[0] for row in rows}
    finally:
        session.close()


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------
def create_job(
    prompt: str,
    channel_id: str | None = None,
    channel_name: str | None = None,
    idea_text: str | None = None,
    video_title: str | None = None,
    is_auto: bool = False,
    max_active: int | None = None,
    lease_run_id: str | None = None,
) -> Job:
    """
    Create a queued job if the active-job cap allows it.

    The cap is the channel's ``max_active_tasks`` when ``channel_id`` is
    given, otherwise the global MAX_ACTIVE_JOBS. Nothing is written when the
    cap is met. Count and insert are two statements, not one atomic step:
    concurrent creators can each see room and overshoot the cap by a job or
    two. Scheduled runs are serialized per channel by the lease, so only
    concurrent manual creates hit this.

    ``lease_run_id`` is the channel lease the creating run holds; the job
    releases only that lease when it ends.

    Raises:
        CapacityExceeded: If the cap is already reached
        ChannelNotFound: If ``channel_id`` does not exist
    """
    if not prompt or not prompt.strip():
        raise ValueError("Missing required field: prompt")

    now = utcnow()
    session = get_session()
    try:
        if channel_id:
            channel = session.get(Channel, channel_id)
            if channel is None:
                raise ChannelNotFound(channel_id)
            channel_name = channel_name or cast(str, channel.name)
            cap = max_active if max_active is not None else to_automation(channel).max_active_tasks
        else:
            cap = max_active if max_active is not None else MAX_ACTIVE_JOBS

        active = _active_filter(session.query(func.count(Job.job_id)), now, channel_id).scalar() or 0
        if active >= cap:
            raise CapacityExceeded(active, cap, channel_id)

        job = Job(
            job_id=str(uuid.uuid4()),
            channel_id=channel_id,
            channel_name=channel_name,
            is_auto=is_auto,
            status=S.QUEUED.value,
            prompt=prompt.strip(),
            idea_text=idea_text,
            video_title=video_title,
            storage_paths=[],
            attempts=0,
            lease_run_id=lease_run_id,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        session.commit()
        logger.info(
            "Created %s job %s for channel %s (%d/%d active)",
            "auto" if is_auto else "manual",
            job.job_id,
            channel_id or "-",
            active + 1,
            cap,
        )
        return job
    finally:
        session.close()


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------
def can_transition(current: str, target: str) -> bool:
    try:
        return S(target) in TRANSITIONS[S(current)]
    except ValueError:
        return False


def _reset_lease_quietly(job: Job) -> None:
    if not job.is_auto or not job.channel_id or not job.lease_run_id:
        return
    try:
        release_lease(cast(str, job.channel_id), cast(str, job.lease_run_id))
    except Exception as e:
        logger.error("Failed to reset lease of channel %s for job %s: %s", job.channel_id, job.job_id, e, exc_info=True)


def set_job_fields(job_id: str, **fields: Any) -> Job:
    """Update non-status fields of a job and stamp ``updated_at``."""
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

    session = get_session()
    try:
        job = session.get(Job, job_id)
        if job is None:
            raise DataIntegrityError(f"Job {job_id} disappeared")
        for key, value in fields.items():
            setattr(job, key, value)
        job.updated_at = utcnow()
        session.commit()
        return job
    finally:
        session.close()


def advance(job_id: str, status: JobStatus | str, **fields: Any) -> Job:
    """
    Move a job to ``status`` if the transition table allows it.

    Into ``error``/``timeout`` an auto job also releases the channel lease it
    was created under;
    a failing release is logged and never replaces the original error.

    Raises:
        InvalidTransition: If the edge is not allowed or another actor moved the job first
        DataIntegrityError: If the job no longer exists
    """
    target = S(status)
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

    session = get_session()
    try:
        job = session.get(Job, job_id)
        if job is None:
            raise DataIntegrityError(f"Job {job_id} disappeared")

        current = S(cast(str, job.status))
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(job_id, current.value, target.value)
        if current == S.ERROR and target == S.QUEUED and (job.attempts or 0) >= JOB_MAX_ATTEMPTS:
            raise InvalidTransition(job_id, current.value, target.value)

        values = dict(fields, status=target.value, updated_at=utcnow())
        result = session.execute(
            update(Job).where(Job.job_id == job_id).where(Job.status == current.value).values(**values)
        )
        session.commit()

        if result.rowcount != 1:
            session.expire_all()
            latest = session.get(Job, job_id)
            if latest is None:
                raise DataIntegrityError(f"Job {job_id} disappeared")
            raise InvalidTransition(job_id, cast(str, latest.status), target.value)

        session.expire_all()
        job = session.get(Job, job_id)
        if job is None:
            raise DataIntegrityError(f"Job {job_id} disappeared")
        logger.debug("Job %s: %s → %s", job_id, current.value, target.value)
    finally:
        session.close()

    if target in FAILED_STATUSES:
        _reset_lease_quietly(job)
    return job


# ----------------------------------------------------------------------
# Approval and upload
# ----------------------------------------------------------------------
def _target_folder(job: Job) -> str:
    folder = None
    if job.channel_id:
        session = get_session()
        try:
            channel = session.get(Channel, job.channel_id)
            if channel is not None:
                folder = normalize_folder_id(cast(Optional[str], channel.drive_folder_id))
        finally:
            session.close()
    folder = folder or normalize_folder_id(DRIVE_FOLDER_ID)
    if not folder:
        raise ConfigError("DRIVE_FOLDER_ID must be set or the channel must define a folder")
    return folder


def _upload(job: Job, video_title: Optional[str] = None) -> Job:
    """ready → uploading → uploaded, rolling back to ready on failure."""
    job_id = cast(str, job.job_id)
    result_path = cast(Optional[str], job.result_path)
    if not result_path or not Path(result_path).is_file():
        raise DataIntegrityError(f"Video file of job {job_id} is missing")

    folder = _target_folder(job)
    title = video_title or cast(Optional[str], job.video_title)
    fields: Dict[str, Any] = {"video_title": title} if video_title else {}
    job = advance(job_id, S.UPLOADING, **fields)

    try:
        uploaded = ClientRegistry.storage().upload(Path(result_path), safe_file_name(title), folder)
    except Exception as e:
        logger.error("Upload of job %s failed: %s", job_id, e, exc_info=True)
        advance(job_id, S.READY, error_message=f"Upload failed: {e}")
        raise

    job = advance(
        job_id,
        S.UPLOADED,
        drive_file_id=uploaded.file_id,
        web_view_link=uploaded.view_link,
        web_content_link=uploaded.download_link,
        error_message=None,
    )
    logger.info("Job %s uploaded → %s", job_id, uploaded.file_id)
    return job


def approve_job(job_id: str, video_title: str | None = None) -> Job:
    """
    Manually approve a ready job and upload it.

    Raises:
        JobNotFound: If the job does not exist
        InvalidTransition: If the job is not ready
        DataIntegrityError: If the local video file is missing
    """
    job = require_job(job_id)
    if job.status != S.READY.value:
        raise InvalidTransition(job_id, cast(str, job.status), S.UPLOADING.value)
    return _upload(job, video_title=video_title)


def maybe_auto_approve(job: Job, run_id: Optional[str] = None) -> bool:
    """
    Upload a freshly ready auto job when its channel asks for it.

    Returns:
        True if the job was uploaded
    """
    if not job.is_auto or not job.channel_id or job.status != S.READY.value:
        return False

    session = get_session()
    try:
        channel = session.get(Channel, job.channel_id)
    finally:
        session.close()
    if channel is None:
        return False
    automation = to_automation(channel)
    if not (automation.enabled and automation.auto_approve_and_upload):
        return False

    try:
        _upload(job)
    except Exception as e:
        log_event(
            f"Auto-approve failed: {e}",
            step=EventStep.AUTO_APPROVE,
            level="error",
            run_id=run_id,
            channel_id=cast(str, job.channel_id),
            channel_name=cast(Optional[str], job.channel_name),
            job_id=cast(str, job.job_id),
        )
        _reset_lease_quietly(job)
        return False

    log_event(
        "Video approved and uploaded automatically",
        step=EventStep.AUTO_APPROVE,
        run_id=run_id,
        channel_id=cast(str, job.channel_id),
        channel_name=cast(Optional[str], job.channel_name),
        job_id=cast(str, job.job_id),
    )
    return True


def retry_job(job_id: str) -> Job:
    """
    Re-queue a failed job. The stored request reference is kept so the
    pipeline resumes polling instead of dispatching a duplicate request.
    """
    require_job(job_id)
    return advance(job_id, S.QUEUED, error_message=None)


def cancel_channel_jobs(channel_id: str) -> List[str]:
    """Cancel the channel's unfinished auto jobs; returns the cancelled ids."""
    cancelled: List[str] = []
    for job in get_active_jobs(channel_id):
        if not job.is_auto or not can_transition(cast(str, job.status), S.CANCELLED.value):
            continue
        try:
            advance(cast(str, job.job_id), S.CANCELLED, error_message="Cancelled: automation stopped")
            cancelled.append(cast(str, job.job_id))
        except (InvalidTransition, DataIntegrityError) as e:
            logger.info("Job %s not cancelled: %s", job.job_id, e)
    return cancelled


# ----------------------------------------------------------------------
# Deletion
# ----------------------------------------------------------------------
def _delete_files(job: Job, report: DeleteReport) -> None:
    paths = [job.result_path, job.preview_path, job.thumbnail_path, *(job.storage_paths or [])]
    deleted, missing = remove_files(cast(List[Optional[str]], paths))
    report.deleted_files = deleted
    report.missing_files = missing


def _delete_reservations(job: Job, report: DeleteReport) -> None:
    report.reservations_removed = reservations.release_for_job(cast(str, job.job_id))


def _delete_events(job: Job, report: DeleteReport) -> None:
    report.events_removed = audit.delete_job_events(cast(str, job.job_id))


def _delete_record(job: Job, report: DeleteReport) -> None:
    session = get_session()
    try:
        deleted = session.query(Job).filter(Job.job_id == job.job_id).delete(synchronize_session=False)
        session.commit()
        report.record_deleted = deleted == 1
    finally:
        session.close()


# Artifact kinds a job owns, removed in this order; the record goes last.
ARTIFACT_DELETERS = (
    ("files", _delete_files),
    ("reservations", _delete_reservations),
    ("events", _delete_events),
    ("record", _delete_record),
)


def delete_job(job_id: str) -> DeleteReport:
    """
    Delete a job with every artifact it owns.

    Each deleter is idempotent and runs even if an earlier one failed;
    failures are collected in ``DeleteReport.errors``.

    Raises:
        JobNotFound: If the job does not exist
    """
    job = require_job(job_id)
    report = DeleteReport(job_id=job_id)

    for kind, deleter in ARTIFACT_DELETERS:
        try:
            deleter(job, report)
        except Exception as e:
            logger.error("Failed to delete %s of job %s: %s", kind, job_id, e, exc_info=True)
            report.errors[kind] = str(e)

    logger.info(
        "Deleted job %s (files=%d missing=%d reservations=%d events=%d)",
        job_id,
        len(report.deleted_files),
        len(report.missing_files),
        report.reservations_removed,
        report.events_removed,
    )
    return report


def reject_job(job_id: str) -> DeleteReport:
    """Reject a job: mark it rejected so a running pipeline stops, then delete it."""
    job = require_job(job_id)
    if can_transition(cast(str, job.status), S.REJECTED.value):
        try:
            advance(job_id, S.REJECTED)
        except InvalidTransition as e:
            logger.info("Job %s changed while rejecting: %s", job_id, e)
    elif job.status not in (S.REJECTED.value, S.CANCELLED.value, S.TIMEOUT.value):
        raise InvalidTransition(job_id, cast(str, job.status), S.REJECTED.value)
    return delete_job(job_id)

