# videogen/files.py
from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Iterable, List, Optional

from videogen.conf import DOWNLOAD_DIR

logger = logging.getLogger(__name__)

FILE_NAME_MAX_LENGTH = 80

_UNSAFE_CHARS_RE = re.compile(r'[/\\:*?"<>|]')
_WHITESPACE_RE = re.compile(r"\s+")
_UNDERSCORES_RE = re.compile(r"_{2,}")
_FOLDER_PATH_RE = re.compile(r"/folders/([a-zA-Z0-9_-]+)")
_FOLDER_PARAM_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")


def sanitize_file_name(title: Optional[str], max_length: int = FILE_NAME_MAX_LENGTH) -> str:
    """Turn a video title into a file-system safe stem."""
    if not title or not isinstance(title, str):
        return f"video_{int(time.time() * 1000)}"

    name = _UNSAFE_CHARS_RE.sub("_", title)
    name = _WHITESPACE_RE.sub("_", name)
    name = _UNDERSCORES_RE.sub("_", name).strip("_")

    if len(name) > max_length:
        name = name[:max_length].rstrip("_")

    return name or f"video_{int(time.time() * 1000)}"


def safe_file_name(title: Optional[str], extension: str = ".mp4") -> str:
    return f"{sanitize_file_name(title)}{extension}"


def normalize_folder_id(raw: Optional[str]) -> Optional[str]:
    """
    Accept a storage folder id or a pasted folder URL.

    ``https://drive.google.com/drive/folders/<id>`` and ``...?id=<id>`` both
    resolve to ``<id>``; anything else is returned trimmed.
    """
    if not raw:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None

    if trimmed.startswith("http"):
        for pattern in (_FOLDER_PATH_RE, _FOLDER_PARAM_RE):
            match = pattern.search(trimmed)
            if match:
                return match.group(1)

    return trimmed


def download_path(job_id: str, message_id: int, download_dir: Optional[Path] = None) -> Path:
    """Local path a deliverable for ``job_id`` is written to."""
    directory = download_dir or DOWNLOAD_DIR
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{job_id}--{message_id}.mp4"


def remove_files(paths: Iterable[Optional[str]]) -> tuple[List[str], List[str]]:
    """
    Delete local files, tolerating ones that are already gone.

    Returns:
        (deleted, missing) lists of paths
    """
    deleted: List[str] = []
    missing: List[str] = []
    for raw in paths:
        if not raw:
            continue
        path = Path(raw)
        try:
            path.unlink()
            deleted.append(raw)
        except FileNotFoundError:
            missing.append(raw)
    if deleted:
        logger.debug("Removed %d local file(s)", len(deleted))
    return deleted, missing
