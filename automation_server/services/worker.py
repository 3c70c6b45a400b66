# automation_server/services/worker.py
import logging
import threading
from typing import Optional, Set

from automation_server.db.engine import get_session
from automation_server.db.models import Job
from automation_server.services.jobs import JobStatus
from automation_server.services.loop import BackgroundLoop
from automation_server.services.pipeline import process_job

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 5

# Track jobs currently being processed to avoid duplicates
_processing_jobs: Set[str] = set()
_processing_lock = threading.Lock()


def _run_pipeline(job_id: str, run_id: Optional[str]) -> None:
    try:
        process_job(job_id, run_id=run_id)
    except Exception as e:
        logger.error("Pipeline for job %s crashed: %s", job_id, e, exc_info=True)
    finally:
        with _processing_lock:
            _processing_jobs.discard(job_id)


def submit_job(job_id: str, run_id: Optional[str] = None) -> bool:
    """
    Run a job's pipeline in a background thread.

    Returns:
        False if the job is already being processed in this process
    """
    with _processing_lock:
        if job_id in _processing_jobs:
            return False
        _processing_jobs.add(job_id)

    thread = threading.Thread(target=_run_pipeline, args=(job_id, run_id), name=f"job-{job_id[:8]}", daemon=True)
    try:
        thread.start()
    except RuntimeError:
        with _processing_lock:
            _processing_jobs.discard(job_id)
        raise
    logger.debug("Started pipeline thread for job %s", job_id)
    return True


def _process_queued_jobs() -> None:
    """Pick up manual jobs left in the queue (e.g. after a restart)."""
    session = get_session()
    try:
        queued = (
            session.query(Job.job_id)
            .filter(Job.status == JobStatus.QUEUED.value)
            .filter(Job.is_auto == False)  # noqa: E712
            .order_by(Job.created_at.asc())
            .limit(10)
            .all()
        )
    finally:
        session.close()

    for (job_id,) in queued:
        if submit_job(job_id):
            logger.info("Picked up queued job %s", job_id)


_loop = BackgroundLoop("background worker", _process_queued_jobs, POLL_INTERVAL_S)


def start_worker() -> None:
    _loop.start()


def stop_worker() -> None:
    _loop.stop()
