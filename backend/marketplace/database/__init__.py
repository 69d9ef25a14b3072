"""Database engine and session helpers."""

from marketplace.database.session import (
    get_db_session_sync,
    get_engine,
    get_session_factory,
    transactional,
)

__all__ = [
    "get_db_session_sync",
    "get_engine",
    "get_session_factory",
    "transactional",
]
