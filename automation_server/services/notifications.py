# automation_server/services/notifications.py
import logging
from typing import List, Optional, cast

from automation_server.db.engine import get_session
from automation_server.db.models import Job, PushToken
from videogen.clients.registry import ClientRegistry
from videogen.schedule.clock import utcnow

logger = logging.getLogger(__name__)


def register_token(token: str, owner: Optional[str] = None) -> PushToken:
    """Create or refresh a device token."""
    if not token or not token.strip():
        raise ValueError("Missing required field: token")

    session = get_session()
    try:
        row = session.get(PushToken, token)
        if row is None:
            row = PushToken(token=token, created_at=utcnow())
            session.add(row)
        row.owner = owner
        row.updated_at = utcnow()
        session.commit()
        logger.info("Push token registered → %s…", token[:12])
        return row
    finally:
        session.close()


def unregister_token(token: str) -> bool:
    session = get_session()
    try:
        row = session.get(PushToken, token)
        if not row:
            return False
        session.delete(row)
        session.commit()
        return True
    finally:
        session.close()


def list_tokens(owner: Optional[str] = None) -> List[str]:
    session = get_session()
    try:
        query = session.query(PushToken.token)
        if owner:
            query = query.filter(PushToken.owner == owner)
        return [row[0] for row in query.all()]
    finally:
        session.close()


def delete_tokens(tokens: List[str]) -> int:
    if not tokens:
        return 0
    session = get_session()
    try:
        deleted = session.query(PushToken).filter(PushToken.token.in_(tokens)).delete(synchronize_session=False)
        session.commit()
        return deleted
    finally:
        session.close()


def notify_job_ready(job: Job) -> int:
    """
    Tell registered devices that a video is ready for review.

    Push delivery is optional and best-effort: without a configured notifier
    or registered tokens nothing happens, and delivery errors are logged.
    Tokens the provider rejects are removed.

    Returns:
        Number of notifications sent
    """
    notifier = ClientRegistry.push()
    if notifier is None:
        return 0
    tokens = list_tokens()
    if not tokens:
        return 0

    title = "Video ready"
    body = cast(Optional[str], job.video_title) or cast(Optional[str], job.idea_text) or "A new video is ready for review"
    data = {"job_id": cast(str, job.job_id), "channel_id": cast(Optional[str], job.channel_id) or ""}

    try:
        result = notifier.notify(tokens, title, body[:120], data)
    except Exception as e:
        logger.error("Push notification for job %s failed: %s", job.job_id, e, exc_info=True)
        return 0

    if result.invalid_tokens:
        removed = delete_tokens(result.invalid_tokens)
        logger.info("Removed %d invalid push token(s)", removed)
    return result.sent
