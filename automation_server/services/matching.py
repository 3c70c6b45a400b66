# automation_server/services/matching.py
"""
Reconciles a dispatched generation request with the worker's asynchronous
video reply.

The worker answers in a shared chat, usually as a reply to the request
message. Matching runs in two independent phases: an explicit phase that
trusts the reply's back-reference, and a heuristic phase used only when no
reply references the request at all. Whatever is matched is claimed in the
reservation ledger first, so one deliverable never ends up on two jobs.
"""
import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Set

from automation_server.services import jobs, reservations
from videogen.clients.base import GenerationChannel, InboundMessage
from videogen.conf import (
    MATCH_FETCH_LIMIT,
    MATCH_POLL_INTERVAL_S,
    MATCH_RECENCY_WINDOW_MINUTES,
    MATCH_TIMEOUT_S,
)
from videogen.errors import DataIntegrityError, DownloadVerificationError, JobCancelled, MatchTimeout, TransientExternalError
from videogen.files import download_path
from videogen.schedule.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

EXPLICIT_REFERENCE = "explicit-reference"
HEURISTIC_FALLBACK = "heuristic-fallback"

_STOPPED_STATUSES = (jobs.JobStatus.CANCELLED.value, jobs.JobStatus.REJECTED.value)


class MatchResult(NamedTuple):
    message: InboundMessage
    method: str


def filter_candidates(
    messages: Iterable[InboundMessage],
    peer_id: str,
    excluded: Set[int],
) -> List[InboundMessage]:
    """Video replies from the worker that no other job has claimed."""
    return [m for m in messages if m.sender_id == peer_id and m.has_video and m.id not in excluded]


def match_explicit(candidates: Iterable[InboundMessage], request_ref: int) -> Optional[InboundMessage]:
    """A candidate that replies to the request message."""
    return next((m for m in candidates if m.back_reference == request_ref), None)


def match_heuristic(
    candidates: Iterable[InboundMessage],
    request_ref: int,
    now: datetime,
    window_minutes: int = MATCH_RECENCY_WINDOW_MINUTES,
) -> Optional[InboundMessage]:
    """
    Best guess when the worker replied without a back-reference.

    Only considered when no candidate references the request. Eligible are
    messages sent after the request, not replying to some other message,
    and no older than ``window_minutes``; the newest of them wins.
    """
    candidates = list(candidates)
    if any(m.back_reference == request_ref for m in candidates):
        return None

    cutoff = ensure_utc(now) - timedelta(minutes=window_minutes)
    eligible = [
        m
        for m in candidates
        if m.id > request_ref and m.back_reference is None and ensure_utc(m.timestamp) >= cutoff
    ]
    return max(eligible, key=lambda m: m.id) if eligible else None


def _check_alive(job_id: str) -> None:
    job = jobs.get_job(job_id)
    if job is None:
        raise DataIntegrityError(f"Job {job_id} was deleted while waiting for its video")
    if job.status in _STOPPED_STATUSES:
        raise JobCancelled(f"Job {job_id} was {job.status} while waiting for its video")


def _excluded_ids(job_id: str) -> Set[int]:
    return reservations.reserved_ids(exclude_job_id=job_id) | jobs.claimed_deliverable_refs(job_id)


def find_match(
    client: GenerationChannel,
    job_id: str,
    request_ref: int,
    now: Optional[datetime] = None,
) -> Optional[MatchResult]:
    """One poll: fetch recent messages, match, and try to reserve the winner."""
    peer = client.peer
    messages = client.list_recent(peer, MATCH_FETCH_LIMIT)
    candidates = filter_candidates(messages, peer, _excluded_ids(job_id))

    message = match_explicit(candidates, request_ref)
    method = EXPLICIT_REFERENCE
    if message is None:
        message = match_heuristic(candidates, request_ref, now or utcnow())
        method = HEURISTIC_FALLBACK
    if message is None:
        return None

    if not reservations.reserve(message.id, job_id, method):
        existing = reservations.get_reservation(message.id)
        if existing is None or existing.job_id != job_id:
            return None
    logger.info("Job %s matched deliverable %s (%s)", job_id, message.id, method)
    return MatchResult(message, method)


def wait_for_deliverable(
    client: GenerationChannel,
    job_id: str,
    request_ref: int,
    poll_interval_s: float = MATCH_POLL_INTERVAL_S,
    timeout_s: float = MATCH_TIMEOUT_S,
) -> MatchResult:
    """
    Poll the chat until a reply is matched and reserved for ``job_id``.

    Raises:
        MatchTimeout: If nothing is matched within ``timeout_s``
        DataIntegrityError: If the job was deleted meanwhile
        JobCancelled: If the job was cancelled or rejected meanwhile
    """
    deadline = time.monotonic() + timeout_s
    attempt = 0
    while True:
        attempt += 1
        _check_alive(job_id)
        try:
            result = find_match(client, job_id, request_ref)
        except TransientExternalError as e:
            logger.warning("Poll %d for job %s failed, retrying: %s", attempt, job_id, e)
            result = None
        if result is not None:
            return result

        if time.monotonic() >= deadline:
            raise MatchTimeout(request_ref, timeout_s)
        logger.debug("Poll %d for job %s: no reply yet", attempt, job_id)
        time.sleep(poll_interval_s)


def download_deliverable(
    client: GenerationChannel,
    job_id: str,
    message_id: int,
    download_dir: Optional[Path] = None,
) -> Path:
    """
    Save the matched video locally and verify it is not empty.

    Raises:
        DownloadVerificationError: If the file is missing or zero bytes
    """
    path = download_path(job_id, message_id, download_dir)
    data = client.download(message_id)
    path.write_bytes(data or b"")

    if not path.is_file() or path.stat().st_size == 0:
        path.unlink(missing_ok=True)
        raise DownloadVerificationError(f"Downloaded video for job {job_id} is empty")

    logger.info("Downloaded deliverable %s → %s (%d bytes)", message_id, path.name, path.stat().st_size)
    return path
