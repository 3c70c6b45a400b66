# automation_server/db/engine.py
import logging
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from automation_server.db.models import Base
from videogen.conf import SERVER_DB_URL

logger = logging.getLogger(__name__)

# Cache the engine and session factory to avoid recreating them
_engine = None
_session_factory = None


def get_engine():
    """Get SQLAlchemy engine for the server database."""
    global _engine
    if _engine is None:
        url = make_url(SERVER_DB_URL)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            connect_args["check_same_thread"] = False
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(url, connect_args=connect_args)
        Base.metadata.create_all(bind=_engine, checkfirst=True)
        logger.debug("Server DB schema ready → %s", url.render_as_string(hide_password=True))
    return _engine


def set_engine(engine) -> None:
    """Point the module at another engine (tests use in-memory SQLite)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = None
    if engine is not None:
        Base.metadata.create_all(bind=engine, checkfirst=True)


def get_session():
    """
    Get a database session for the server database.

    Objects stay readable after commit and close; services return ORM rows
    to routers after their session is gone.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory()
