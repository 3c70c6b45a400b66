from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, value, default)
        return default


# ----------------------------------------------------------------------
# Paths (all under assets/)
# ----------------------------------------------------------------------
ROOT_DIR = Path(__file__).parent.parent
ASSETS_DIR = ROOT_DIR / "assets"

DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", str(ASSETS_DIR / "downloads"))).resolve()
SERVER_DB_URL = os.getenv("SERVER_DB_URL", f"sqlite:///{ASSETS_DIR / 'server.db'}")

# ----------------------------------------------------------------------
# Server
# ----------------------------------------------------------------------
DEBUG = _env_bool("DEBUG")

# ----------------------------------------------------------------------
# Schedule
# ----------------------------------------------------------------------
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Asia/Almaty")

# Window after a slot (same day) during which the slot may still fire.
SCHEDULE_INTERVAL_MINUTES = _env_int("SCHEDULE_INTERVAL_MINUTES", 10)
# Window after midnight during which yesterday's missed slot may still fire.
CATCHUP_WINDOW_MINUTES = _env_int("CATCHUP_WINDOW_MINUTES", 360)
STUCK_RUN_MINUTES = _env_int("STUCK_RUN_MINUTES", 30)

SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED")
SCHEDULER_INTERVAL_S = _env_int("SCHEDULER_INTERVAL_S", 300)

# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------
MAX_ACTIVE_JOBS = _env_int("MAX_ACTIVE_JOBS", 2)
ACTIVE_JOB_MAX_AGE_MINUTES = _env_int("ACTIVE_JOB_MAX_AGE_MINUTES", 120)
JOB_MAX_ATTEMPTS = _env_int("JOB_MAX_ATTEMPTS", 3)

# ----------------------------------------------------------------------
# Response matching
# ----------------------------------------------------------------------
GENERATION_PEER = os.getenv("GENERATION_PEER", "syntxaibot")
MATCH_POLL_INTERVAL_S = _env_int("MATCH_POLL_INTERVAL_S", 10)
MATCH_TIMEOUT_S = _env_int("MATCH_TIMEOUT_S", 15 * 60)
MATCH_RECENCY_WINDOW_MINUTES = _env_int("MATCH_RECENCY_WINDOW_MINUTES", 20)
MATCH_FETCH_LIMIT = _env_int("MATCH_FETCH_LIMIT", 50)

# ----------------------------------------------------------------------
# External services
# ----------------------------------------------------------------------
TELEGRAM_API_ID = _env_int("TELEGRAM_API_ID", 0)
TELEGRAM_API_HASH = os.getenv("TELEGRAM_API_HASH") or None
TELEGRAM_STRING_SESSION = os.getenv("TELEGRAM_STRING_SESSION") or None
TELEGRAM_CALL_TIMEOUT_S = _env_int("TELEGRAM_CALL_TIMEOUT_S", 120)

DRIVE_FOLDER_ID = os.getenv("DRIVE_FOLDER_ID") or None

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_TIMEOUT_S = _env_int("OPENAI_TIMEOUT_S", 60)

# "package.module:callable" returning keyword arguments for ClientRegistry.configure;
# the hook for storage and push backends, or for replacing the built-in clients.
CLIENT_FACTORY = os.getenv("CLIENT_FACTORY") or None


# ----------------------------------------------------------------------
# Debug output when run directly
# ----------------------------------------------------------------------
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
    )

    logger.info("Video automation – effective configuration")
    logger.info("Database        : %s", SERVER_DB_URL)
    logger.info("Downloads       : %s", DOWNLOAD_DIR)
    logger.info("Timezone        : %s", DEFAULT_TIMEZONE)
    logger.info("Windows (min)   : interval=%d catch-up=%d stuck=%d",
                SCHEDULE_INTERVAL_MINUTES, CATCHUP_WINDOW_MINUTES, STUCK_RUN_MINUTES)
    logger.info("Matching        : peer=%s poll=%ss timeout=%ss",
                GENERATION_PEER, MATCH_POLL_INTERVAL_S, MATCH_TIMEOUT_S)
    logger.info("Text generation : %s", "configured" if OPENAI_API_KEY else "missing OPENAI_API_KEY")
    logger.info("Generation chat : %s", "telegram" if TELEGRAM_API_ID else "missing TELEGRAM_API_ID")
    logger.info("Client factory  : %s", CLIENT_FACTORY or "-")
