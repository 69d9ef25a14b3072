"""
Request model - a unit of work a client buys with credits.

Lifecycle:
    PENDING -> IN_PROGRESS -> DELIVERED -> COMPLETED
                                  |  ^
                                  v  |
                          REVISION_REQUESTED -> IN_PROGRESS
    PENDING -> CANCELLED

Cost fields are captured once at creation and never recomputed:
    credit_cost = base_credit_cost + attribute_credits + priority_credit_cost

current_revision_count / total_revisions cache what the comment history
says; they are written in the same transaction as the status transition.
"""

import enum
import uuid
from typing import Dict, FrozenSet

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import JSONType, TimestampMixin


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: FrozenSet[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.CANCELLED,
})

# Transitions a provider may drive through update_status
PROVIDER_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.DELIVERED}),
    RequestStatus.REVISION_REQUESTED: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.DELIVERED}),
    RequestStatus.DELIVERED: frozenset({RequestStatus.IN_PROGRESS}),
}


class RequestPriority(int, enum.Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class Request(Base, TimestampMixin):
    __tablename__ = "requests"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)

    client_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(255), ForeignKey("users.id"), nullable=True, index=True)
    service_type_id = Column(String(255), ForeignKey("service_types.id"), nullable=False, index=True)

    status = Column(
        SAEnum(RequestStatus, name="request_status", create_constraint=True),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )
    priority = Column(Integer, nullable=False, default=RequestPriority.MEDIUM.value)

    # Frozen cost breakdown
    credit_cost = Column(Integer, nullable=False)
    base_credit_cost = Column(Integer, nullable=False)
    attribute_credits = Column(Integer, nullable=False, default=0)
    priority_credit_cost = Column(Integer, nullable=False, default=0)

    attribute_responses = Column(JSONType, nullable=True)
    form_data = Column(JSONType, nullable=True)
    attachments = Column(JSONType, nullable=False, default=list)

    is_revision = Column(Boolean, nullable=False, default=False)
    current_revision_count = Column(Integer, nullable=False, default=0)
    total_revisions = Column(Integer, nullable=False, default=0)

    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    service_type = relationship("ServiceType", lazy="joined")
    comments = relationship(
        "RequestComment",
        back_populates="request",
        order_by="RequestComment.created_at",
        lazy="select",
    )
    rating = relationship("Rating", back_populates="request", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "credit_cost = base_credit_cost + attribute_credits + priority_credit_cost",
            name="ck_requests_cost_breakdown",
        ),
        CheckConstraint("priority BETWEEN 1 AND 3", name="ck_requests_priority"),
        Index("ix_requests_client_status", "client_id", "status"),
        Index("ix_requests_provider_status", "provider_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Request(id={self.id}, status={self.status.value}, credit_cost={self.credit_cost})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
