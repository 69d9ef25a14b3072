"""
RequestComment model - append-only activity log of a request.

SYSTEM comments carry an optional machine-readable `event` marker; the
revision state machine derives revision counts from these markers.
"""

import enum
import uuid

from sqlalchemy import Column, Enum as SAEnum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import JSONType, TimestampMixin


class CommentType(str, enum.Enum):
    SYSTEM = "SYSTEM"
    MESSAGE = "MESSAGE"
    DELIVERABLE = "DELIVERABLE"


class CommentEvent(str, enum.Enum):
    REQUEST_CREATED = "request_created"
    REQUEST_ACCEPTED = "request_accepted"
    STATUS_CHANGED = "status_changed"
    REVISION_FREE = "revision_free"
    REVISION_PAID = "revision_paid"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_CANCELLED = "request_cancelled"


REVISION_EVENTS = (CommentEvent.REVISION_FREE.value, CommentEvent.REVISION_PAID.value)


class RequestComment(Base, TimestampMixin):
    __tablename__ = "request_comments"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    request_id = Column(
        String(255),
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(String(255), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)

    comment_type = Column(
        SAEnum(CommentType, name="comment_type", create_constraint=True),
        nullable=False,
        default=CommentType.MESSAGE,
    )

    event = Column(String(50), nullable=True, comment="Machine-readable marker for SYSTEM comments")
    credits_charged = Column(Integer, nullable=False, default=0)
    files = Column(JSONType, nullable=False, default=list)

    request = relationship("Request", back_populates="comments")

    __table_args__ = (
        Index("ix_request_comments_request_event", "request_id", "event"),
    )

    def __repr__(self) -> str:
        return f"<RequestComment(id={self.id}, type={self.comment_type.value}, event={self.event})>"
