# automation_server/services/audit.py
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from automation_server.db.engine import get_session
from automation_server.db.models import Event, Run
from videogen.schedule.clock import utcnow

logger = logging.getLogger(__name__)


class EventStep(str, Enum):
    SELECT_CHANNELS = "select-channels"
    CHANNEL_CHECK = "channel-check"
    GENERATE_IDEA = "generate-idea"
    CREATE_JOB = "create-job"
    SEND_TO_BOT = "send-to-bot"
    WAIT_VIDEO = "wait-video"
    DOWNLOAD = "download"
    AUTO_APPROVE = "auto-approve"
    UPDATE_CHANNEL_NEXT_RUN = "update-channel-next-run"
    RECOVERY = "recovery"
    OTHER = "other"


_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


# Structured logging adapter that includes run_id and channel
class RunLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        extra = self.extra or {}
        run_id = str(extra.get("run_id") or "-")[:8]
        channel = extra.get("channel")
        prefix = f"[run_id={run_id}]"
        if channel:
            prefix += f" [channel={channel}]"
        return f"{prefix} {msg}", kwargs


def log_event(
    message: str,
    step: EventStep = EventStep.OTHER,
    level: str = "info",
    run_id: Optional[str] = None,
    channel_id: Optional[str] = None,
    channel_name: Optional[str] = None,
    job_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Persist one audit event and mirror it to the process log.

    Audit writes never interrupt the caller; a failed write is logged and
    None is returned.
    """
    adapter = RunLoggerAdapter(logger, {"run_id": run_id, "channel": channel_name or channel_id})
    adapter.log(_LEVELS.get(level, logging.INFO), "%s: %s", EventStep(step).value, message)

    event_id = str(uuid.uuid4())
    session = get_session()
    try:
        session.add(
            Event(
                event_id=event_id,
                run_id=run_id,
                created_at=utcnow(),
                level=level,
                step=EventStep(step).value,
                channel_id=channel_id,
                channel_name=channel_name,
                job_id=job_id,
                message=message,
                details=details,
            )
        )
        session.commit()
        return event_id
    except Exception as e:
        session.rollback()
        logger.error("Failed to write audit event (%s): %s", message, e, exc_info=True)
        return None
    finally:
        session.close()


class RunLogger:
    """
    Audit trail of one scheduled pass: a run record plus flat events.

    Counters are kept in memory and flushed to the run record by
    ``finish()``; events are written as they happen.
    """

    def __init__(self, timezone: Optional[str] = None, invoked_at: Optional[datetime] = None):
        self.run_id = str(uuid.uuid4())
        self.started_at = utcnow()
        self.invoked_at = invoked_at or self.started_at
        self.timezone = timezone
        self.channels_planned = 0
        self.channels_processed = 0
        self.jobs_created = 0
        self.errors_count = 0
        self.channels_ok = 0
        self.last_error_message: Optional[str] = None
        self.channel_checks: List[Dict[str, Any]] = []
        self.tasks: List[Dict[str, Any]] = []
        self.log = RunLoggerAdapter(logger, {"run_id": self.run_id})

        session = get_session()
        try:
            session.add(
                Run(
                    run_id=self.run_id,
                    started_at=self.started_at,
                    scheduler_invocation_at=self.invoked_at,
                    status="running",
                    timezone=timezone,
                )
            )
            session.commit()
        finally:
            session.close()
        self.log.info("Run started")

    def event(
        self,
        step: EventStep,
        message: str,
        level: str = "info",
        channel_id: Optional[str] = None,
        channel_name: Optional[str] = None,
        job_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if level == "error":
            self.errors_count += 1
            self.last_error_message = message
        log_event(
            message,
            step=step,
            level=level,
            run_id=self.run_id,
            channel_id=channel_id,
            channel_name=channel_name,
            job_id=job_id,
            details=details,
        )

    def add_channel_check(self, record: Dict[str, Any]) -> None:
        self.channel_checks.append(record)

    def add_task(self, summary: Dict[str, Any]) -> None:
        self.jobs_created += 1
        self.tasks.append(summary)

    def status(self) -> str:
        if self.errors_count == 0:
            return "success"
        if self.channels_ok == 0 and self.jobs_created == 0:
            return "error"
        return "partial"

    def finish(self) -> Run:
        finished_at = utcnow()
        status = self.status()
        session = get_session()
        try:
            run = session.get(Run, self.run_id)
            if run is None:
                run = Run(run_id=self.run_id, started_at=self.started_at)
                session.add(run)
            run.finished_at = finished_at
            run.status = status
            run.channels_planned = self.channels_planned
            run.channels_processed = self.channels_processed
            run.jobs_created = self.jobs_created
            run.errors_count = self.errors_count
            run.last_error_message = self.last_error_message
            run.channels = self.channel_checks
            run.tasks = self.tasks
            session.commit()
        finally:
            session.close()

        self.log.info(
            "Run finished: status=%s processed=%d/%d jobs=%d errors=%d",
            status,
            self.channels_processed,
            self.channels_planned,
            self.jobs_created,
            self.errors_count,
        )
        return run


def get_run(run_id: str) -> Run | None:
    """Get a run by ID."""
    session = get_session()
    try:
        return session.get(Run, run_id)
    finally:
        session.close()


def list_runs(status: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[Run], int]:
    """
    List runs, newest first.

    Returns:
        (runs, total_count)
    """
    session = get_session()
    try:
        query = session.query(Run)
        if status:
            query = query.filter(Run.status == status)
        total = query.count()
        runs = query.order_by(Run.started_at.desc()).offset(offset).limit(limit).all()
        return runs, total
    finally:
        session.close()


def list_events(
    run_id: str | None = None,
    channel_id: str | None = None,
    job_id: str | None = None,
    limit: int = 500,
) -> list[Event]:
    """Events in chronological order, optionally scoped to a run, channel or job."""
    session = get_session()
    try:
        query = session.query(Event)
        if run_id:
            query = query.filter(Event.run_id == run_id)
        if channel_id:
            query = query.filter(Event.channel_id == channel_id)
        if job_id:
            query = query.filter(Event.job_id == job_id)
        return query.order_by(Event.created_at.asc()).limit(limit).all()
    finally:
        session.close()


def delete_job_events(job_id: str) -> int:
    """Delete every event scoped to ``job_id``; returns how many were removed."""
    session = get_session()
    try:
        deleted = session.query(Event).filter(Event.job_id == job_id).delete(synchronize_session=False)
        session.commit()
        return deleted
    finally:
        session.close()
