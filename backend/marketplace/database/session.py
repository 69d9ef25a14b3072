"""
Engine and session management.

Sessions are short-lived and scoped to one API call or job run.
Services flush; the unit-of-work owner commits or rolls back.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from marketplace.config.settings import DATABASE_ECHO, DATABASE_URL

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Lazily create the process-wide engine."""
    global _engine
    if _engine is None:
        connect_args = {}
        if DATABASE_URL.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        _engine = create_engine(
            DATABASE_URL,
            echo=DATABASE_ECHO,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def get_db_session_sync() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is always closed."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def transactional(session: Session) -> Iterator[Session]:
    """
    Commit on success, roll back on any exception.

    Everything executed inside the block (credit deduction, request insert,
    comment append) lands atomically or not at all.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
