# automation_server/routers/health.py
from fastapi import APIRouter
from sqlalchemy import text

from automation_server.db.engine import get_session
from automation_server.services import scheduler

router = APIRouter()


@router.get("/health")
def health():
    """Liveness plus a database round-trip."""
    session = get_session()
    try:
        session.execute(text("SELECT 1"))
        database = "ok"
    finally:
        session.close()
    return {"status": "ok", "database": database, "scheduler": scheduler.is_running()}
