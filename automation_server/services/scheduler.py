# automation_server/services/scheduler.py
"""Optional in-process ticker; the HTTP trigger remains the primary way to run a pass."""
import logging

from automation_server.services.loop import BackgroundLoop
from videogen.conf import SCHEDULER_INTERVAL_S

logger = logging.getLogger(__name__)


def _tick() -> None:
    """Run one scheduled pass."""
    from automation_server.services.orchestrator import run_scheduled

    summary = run_scheduled()
    logger.info(
        "Scheduled pass %s: status=%s jobs=%d errors=%d",
        summary.run_id[:8],
        summary.status,
        summary.jobs_created,
        summary.errors_count,
    )


# Looked up at call time so tests can patch _tick
_loop = BackgroundLoop("scheduler", lambda: _tick(), SCHEDULER_INTERVAL_S)


def start_scheduler(interval_s: int = SCHEDULER_INTERVAL_S) -> None:
    if _loop.start(interval_s):
        logger.info("Scheduler started")


def stop_scheduler() -> None:
    _loop.stop()


def is_running() -> bool:
    return _loop.running
