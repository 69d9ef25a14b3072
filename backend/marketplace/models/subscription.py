"""
ClientSubscription model - binds a client to a package for a time window.

States (derived, not stored):
- PENDING: is_active=False, cancelled_at=None, end_date >= now (awaiting payment approval)
- ACTIVE: is_active=True and end_date >= now
- EXPIRED: end_date < now (the expiry job later clears is_active)
- CANCELLED: cancelled_at set (client cancellation or rejected payment)

Outside activation, remaining_credits is mutated ONLY by CreditLedger.
The check constraint is the last line of defence against overdraw.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin, as_utc


class ClientSubscription(Base, TimestampMixin):
    __tablename__ = "client_subscriptions"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    package_id = Column(
        String(255),
        ForeignKey("packages.id"),
        nullable=False,
        index=True,
    )

    remaining_credits = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    package = relationship("Package", lazy="joined")
    payment_proof = relationship("PaymentProof", back_populates="subscription", uselist=False)

    __table_args__ = (
        CheckConstraint("remaining_credits >= 0", name="ck_client_subscriptions_remaining_credits"),
        Index("ix_client_subscriptions_user_active_end", "user_id", "is_active", "end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClientSubscription(id={self.id}, user_id={self.user_id}, "
            f"remaining_credits={self.remaining_credits}, is_active={self.is_active})>"
        )

    @property
    def is_pending(self) -> bool:
        """Awaiting payment; lapses once its nominal window has passed."""
        return (
            not self.is_active
            and self.cancelled_at is None
            and as_utc(self.end_date) >= datetime.now(timezone.utc)
        )

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Active and unexpired."""
        now = now or datetime.now(timezone.utc)
        return bool(self.is_active) and as_utc(self.end_date) >= now

    @property
    def status(self) -> str:
        if self.cancelled_at is not None:
            return "cancelled"
        if as_utc(self.end_date) < datetime.now(timezone.utc):
            return "expired"
        if not self.is_active:
            return "pending"
        return "active"

    def cancel(self, now: Optional[datetime] = None) -> None:
        self.is_active = False
        self.cancelled_at = now or datetime.now(timezone.utc)

    @classmethod
    def create_pending(cls, user_id: str, package, now: Optional[datetime] = None) -> "ClientSubscription":
        """Inactive subscription awaiting payment proof. Credits land on approval."""
        now = now or datetime.now(timezone.utc)
        return cls(
            user_id=user_id,
            package_id=package.id,
            remaining_credits=0,
            start_date=now,
            end_date=now + timedelta(days=package.duration_days),
            is_active=False,
        )

    @classmethod
    def create_active(cls, user_id: str, package, now: Optional[datetime] = None) -> "ClientSubscription":
        """Immediately active subscription (registration free package)."""
        now = now or datetime.now(timezone.utc)
        return cls(
            user_id=user_id,
            package_id=package.id,
            remaining_credits=package.credits,
            start_date=now,
            end_date=now + timedelta(days=package.duration_days),
            is_active=True,
        )


def live_subscription_criteria(user_id: Optional[str] = None, now: Optional[datetime] = None) -> tuple:
    """
    Filter for active, unexpired subscriptions (of one client when user_id is given).

    Pending (unpaid) rows never match, whatever their dates. When several
    rows match, callers order by created_at desc and take the newest.
    """
    now = now or datetime.now(timezone.utc)
    criteria = (
        ClientSubscription.is_active.is_(True),
        ClientSubscription.end_date >= now,
    )
    if user_id is not None:
        criteria = (ClientSubscription.user_id == user_id,) + criteria
    return criteria
