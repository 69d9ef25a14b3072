"""
Notification model - in-app notification rows.

Delivery beyond the database (email, push, SSE) is an external concern.
"""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Text

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False, default="request")
    link = Column(String(1024), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )
