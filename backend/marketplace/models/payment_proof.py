"""
PaymentProof model - manual bank-transfer proof awaiting admin review.

The transfer image itself lives in external storage; only its reference
is stored here.
"""

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentProof(Base, TimestampMixin):
    __tablename__ = "payment_proofs"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    subscription_id = Column(
        String(255),
        ForeignKey("client_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    user_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)

    transfer_image = Column(String(1024), nullable=False, comment="Storage reference")
    sender_name = Column(String(255), nullable=False)
    sender_bank = Column(String(255), nullable=False)
    sender_country = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    transfer_date = Column(DateTime(timezone=True), nullable=False)
    reference_number = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(
        SAEnum(PaymentStatus, name="payment_status", create_constraint=True),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    reviewed_by = Column(String(255), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    subscription = relationship("ClientSubscription", back_populates="payment_proof", lazy="joined")

    def __repr__(self) -> str:
        return f"<PaymentProof(id={self.id}, status={self.status.value}, amount={self.amount})>"
