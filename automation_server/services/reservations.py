# automation_server/services/reservations.py
import logging
from typing import Optional, Set

from sqlalchemy.exc import IntegrityError

from automation_server.db.engine import get_session
from automation_server.db.models import Reservation
from videogen.schedule.clock import utcnow

logger = logging.getLogger(__name__)


def reserve(deliverable_id: int, job_id: str, method: Optional[str] = None) -> bool:
    """
    Claim a deliverable for a job.

    The primary key on ``deliverable_id`` makes this create-if-absent: the
    first writer wins and every later attempt, from any job, returns False.
    """
    session = get_session()
    try:
        session.add(
            Reservation(
                deliverable_id=deliverable_id,
                job_id=job_id,
                matching_method=method,
                created_at=utcnow(),
            )
        )
        session.commit()
        logger.debug("Deliverable %s reserved for job %s (%s)", deliverable_id, job_id, method)
        return True
    except IntegrityError:
        session.rollback()
        logger.info("Deliverable %s already reserved, job %s keeps waiting", deliverable_id, job_id)
        return False
    finally:
        session.close()


def get_reservation(deliverable_id: int) -> Reservation | None:
    session = get_session()
    try:
        return session.get(Reservation, deliverable_id)
    finally:
        session.close()


def reserved_ids(exclude_job_id: Optional[str] = None) -> Set[int]:
    """Deliverable ids claimed by any job other than ``exclude_job_id``."""
    session = get_session()
    try:
        query = session.query(Reservation.deliverable_id)
        if exclude_job_id:
            query = query.filter(Reservation.job_id != exclude_job_id)
        return {row[0] for row in query.all()}
    finally:
        session.close()


def release_for_job(job_id: str) -> int:
    """Drop every reservation held by ``job_id``; returns how many were removed."""
    session = get_session()
    try:
        deleted = session.query(Reservation).filter(Reservation.job_id == job_id).delete(synchronize_session=False)
        session.commit()
        if deleted:
            logger.debug("Released %d reservation(s) of job %s", deleted, job_id)
        return deleted
    finally:
        session.close()
