"""
CreditLedgerEntry model - append-only audit trail of balance changes.

remaining_credits on ClientSubscription is the cached running total;
these rows explain how it got there. Rows are never updated or deleted.
"""

import enum
import uuid

from sqlalchemy import Column, Enum as SAEnum, ForeignKey, Index, Integer, String, Text

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class LedgerEntryType(str, enum.Enum):
    GRANT = "GRANT"            # Package credits on activation/registration
    DEDUCTION = "DEDUCTION"    # Request creation, paid revision
    REFUND = "REFUND"          # Compensating credit (e.g. cancelled request)


class CreditLedgerEntry(Base, TimestampMixin):
    __tablename__ = "credit_ledger_entries"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    subscription_id = Column(
        String(255),
        ForeignKey("client_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id = Column(String(255), nullable=False, index=True)

    entry_type = Column(
        SAEnum(LedgerEntryType, name="ledger_entry_type", create_constraint=True),
        nullable=False,
    )

    amount = Column(Integer, nullable=False, comment="Signed: negative for deductions")
    balance_after = Column(Integer, nullable=False)
    memo = Column(Text, nullable=True)
    request_id = Column(String(255), nullable=True, index=True)

    __table_args__ = (
        Index("ix_credit_ledger_entries_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditLedgerEntry(type={self.entry_type.value}, amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )
