"""Helpers for getting database sessions and notifiers into routes."""

from typing import Iterator

from fastapi import BackgroundTasks, Request
from sqlalchemy.orm import Session

from marketplace.database.session import get_db_session_sync
from marketplace.services.notification_service import NotificationDispatcher


def get_db_session(request: Request) -> Iterator[Session]:
    """Session from request state when middleware provided one, else a fresh one."""
    db = getattr(request.state, "db", None)
    if db is not None:
        yield db
        return
    yield from get_db_session_sync()


def get_notifier(background_tasks: BackgroundTasks) -> NotificationDispatcher:
    """Notifications are written after the response is sent."""
    return NotificationDispatcher(background_tasks=background_tasks)
