"""
CreditLedger - the only code path that changes a client's credit balance.

Every deduction is a single conditional UPDATE:

    UPDATE client_subscriptions
       SET remaining_credits = remaining_credits - :amount
     WHERE id = :id AND is_active AND end_date >= :now
       AND remaining_credits >= :amount

so two concurrent deductions can never both pass a balance check that only
one of them fits into; the loser sees rowcount 0 and is refused. There is
no read-then-write anywhere on this path.

Each balance change appends a CreditLedgerEntry in the same transaction.
The ledger flushes but never commits; the caller owns the transaction, so a
deduction and the request row it pays for commit or roll back together.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.config.settings import EXPIRY_WARNING_DAYS
from marketplace.models.base import as_utc
from marketplace.models.credit_ledger_entry import CreditLedgerEntry, LedgerEntryType
from marketplace.models.subscription import ClientSubscription, live_subscription_criteria

logger = logging.getLogger(__name__)

REASON_NO_SUBSCRIPTION = "no_active_subscription"
REASON_INSUFFICIENT_CREDITS = "insufficient_credits"

NO_SUBSCRIPTION_MESSAGE = "No active subscription found. Please subscribe to a package."


@dataclass(frozen=True)
class CreditCheckResult:
    allowed: bool
    remaining_credits: int
    message: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class DeductionResult:
    allowed: bool
    success: bool
    new_balance: int
    message: str
    reason: Optional[str] = None
    subscription_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "success": self.success,
            "new_balance": self.new_balance,
            "message": self.message,
        }


def insufficient_credits_message(balance: int, required: int) -> str:
    return f"Insufficient credits. You have {balance} credits but need {required}."


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise ValueError(f"Credit amount must be a positive integer, got {amount!r}")


class CreditLedger:
    """Checks, deducts and refunds credits against a client's live subscription."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Queries
    # =========================================================================

    def _live_subscription_id(self, client_id: str, now: datetime) -> Optional[str]:
        return self.session.execute(
            select(ClientSubscription.id)
            .where(*live_subscription_criteria(client_id, now))
            .order_by(ClientSubscription.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _fresh_row(self, subscription_id: str):
        """Current DB values, bypassing any stale ORM instance."""
        return self.session.execute(
            select(
                ClientSubscription.remaining_credits,
                ClientSubscription.is_active,
                ClientSubscription.end_date,
            ).where(ClientSubscription.id == subscription_id)
        ).one_or_none()

    def _expire_loaded(self, subscription_id: str) -> None:
        key = self.session.identity_key(ClientSubscription, subscription_id)
        loaded = self.session.identity_map.get(key)
        if loaded is not None:
            self.session.expire(loaded, ["remaining_credits"])

    def check_credits(self, client_id: str, amount: int = 1) -> CreditCheckResult:
        """Read-only pre-check. Never rely on it for the actual charge."""
        _validate_amount(amount)
        now = datetime.now(timezone.utc)
        subscription_id = self._live_subscription_id(client_id, now)
        if subscription_id is None:
            return CreditCheckResult(
                allowed=False,
                remaining_credits=0,
                message=NO_SUBSCRIPTION_MESSAGE,
                reason=REASON_NO_SUBSCRIPTION,
            )

        balance = self._fresh_row(subscription_id).remaining_credits
        if balance < amount:
            return CreditCheckResult(
                allowed=False,
                remaining_credits=balance,
                message=insufficient_credits_message(balance, amount),
                reason=REASON_INSUFFICIENT_CREDITS,
            )
        return CreditCheckResult(allowed=True, remaining_credits=balance)

    def get_balance(self, client_id: str) -> Dict[str, Any]:
        """Balance of the live subscription (0 with subscription=None when there is none)."""
        now = datetime.now(timezone.utc)
        subscription = (
            self.session.query(ClientSubscription)
            .filter(*live_subscription_criteria(client_id, now))
            .order_by(ClientSubscription.created_at.desc())
            .first()
        )
        if subscription is None:
            return {"remaining_credits": 0, "subscription": None}

        return {
            "remaining_credits": subscription.remaining_credits,
            "subscription": {
                "id": subscription.id,
                "package_name": subscription.package.name,
                "end_date": subscription.end_date,
            },
        }

    def check_subscription_expiry(self, client_id: str) -> Dict[str, Any]:
        """Days left on the newest active subscription; expiring within the warning window."""
        subscription = (
            self.session.query(ClientSubscription)
            .filter(
                ClientSubscription.user_id == client_id,
                ClientSubscription.is_active.is_(True),
            )
            .order_by(ClientSubscription.created_at.desc())
            .first()
        )
        if subscription is None:
            return {"is_expiring": True, "days_remaining": 0}

        delta = as_utc(subscription.end_date) - datetime.now(timezone.utc)
        days_remaining = math.ceil(delta.total_seconds() / 86400)
        return {
            "is_expiring": days_remaining <= EXPIRY_WARNING_DAYS,
            "days_remaining": max(0, days_remaining),
        }

    def history(self, client_id: str, limit: int = 50) -> List[CreditLedgerEntry]:
        return (
            self.session.query(CreditLedgerEntry)
            .filter(CreditLedgerEntry.user_id == client_id)
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def check_and_deduct(
        self,
        client_id: str,
        amount: int = 1,
        memo: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> DeductionResult:
        """
        Atomically verify and deduct credits.

        Args:
            client_id: Client whose live subscription pays
            amount: Positive number of credits
            memo: Free text recorded on the ledger entry
            request_id: Request being paid for, if any

        Returns:
            DeductionResult; allowed=False distinguishes "no subscription"
            from "insufficient credits" through reason and message

        Raises:
            ValueError: amount is not a positive integer
        """
        _validate_amount(amount)
        now = datetime.now(timezone.utc)

        subscription_id = self._live_subscription_id(client_id, now)
        if subscription_id is None:
            logger.info(
                "Credit deduction refused: no live subscription",
                extra={"client_id": client_id, "amount": amount},
            )
            return DeductionResult(
                allowed=False,
                success=False,
                new_balance=0,
                message=NO_SUBSCRIPTION_MESSAGE,
                reason=REASON_NO_SUBSCRIPTION,
            )

        result = self.session.execute(
            update(ClientSubscription)
            .where(
                ClientSubscription.id == subscription_id,
                ClientSubscription.is_active.is_(True),
                ClientSubscription.end_date >= now,
                ClientSubscription.remaining_credits >= amount,
            )
            .values(remaining_credits=ClientSubscription.remaining_credits - amount)
            .execution_options(synchronize_session=False)
        )

        row = self._fresh_row(subscription_id)

        if result.rowcount != 1:
            if row is None or not row.is_active or as_utc(row.end_date) < now:
                # Deactivated or expired between lookup and update
                return DeductionResult(
                    allowed=False,
                    success=False,
                    new_balance=0,
                    message=NO_SUBSCRIPTION_MESSAGE,
                    reason=REASON_NO_SUBSCRIPTION,
                )
            logger.info(
                "Credit deduction refused: insufficient credits",
                extra={
                    "client_id": client_id,
                    "amount": amount,
                    "balance": row.remaining_credits,
                },
            )
            return DeductionResult(
                allowed=False,
                success=False,
                new_balance=row.remaining_credits,
                message=insufficient_credits_message(row.remaining_credits, amount),
                reason=REASON_INSUFFICIENT_CREDITS,
                subscription_id=subscription_id,
            )

        new_balance = row.remaining_credits
        self._expire_loaded(subscription_id)
        self._append_entry(
            subscription_id=subscription_id,
            client_id=client_id,
            entry_type=LedgerEntryType.DEDUCTION,
            amount=-amount,
            balance_after=new_balance,
            memo=memo,
            request_id=request_id,
        )

        logger.info(
            "Credits deducted",
            extra={
                "client_id": client_id,
                "subscription_id": subscription_id,
                "amount": amount,
                "new_balance": new_balance,
                "memo": memo,
                "request_id": request_id,
            },
        )

        return DeductionResult(
            allowed=True,
            success=True,
            new_balance=new_balance,
            message=f"Successfully deducted {amount} credit(s).",
            subscription_id=subscription_id,
        )

    def refund(
        self,
        client_id: str,
        amount: int,
        memo: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> DeductionResult:
        """
        Compensating credit.

        Goes back to the subscription that paid for request_id when that one
        is still live, otherwise to the client's current live subscription.
        """
        _validate_amount(amount)
        now = datetime.now(timezone.utc)

        subscription_id = None
        if request_id is not None:
            subscription_id = self._charged_subscription_id(client_id, request_id, now)
        if subscription_id is None:
            subscription_id = self._live_subscription_id(client_id, now)
        if subscription_id is None:
            logger.warning(
                "Credit refund skipped: no live subscription",
                extra={"client_id": client_id, "amount": amount, "request_id": request_id},
            )
            return DeductionResult(
                allowed=False,
                success=False,
                new_balance=0,
                message=NO_SUBSCRIPTION_MESSAGE,
                reason=REASON_NO_SUBSCRIPTION,
            )

        self.session.execute(
            update(ClientSubscription)
            .where(ClientSubscription.id == subscription_id)
            .values(remaining_credits=ClientSubscription.remaining_credits + amount)
            .execution_options(synchronize_session=False)
        )
        new_balance = self._fresh_row(subscription_id).remaining_credits
        self._expire_loaded(subscription_id)
        self._append_entry(
            subscription_id=subscription_id,
            client_id=client_id,
            entry_type=LedgerEntryType.REFUND,
            amount=amount,
            balance_after=new_balance,
            memo=memo,
            request_id=request_id,
        )

        logger.info(
            "Credits refunded",
            extra={
                "client_id": client_id,
                "subscription_id": subscription_id,
                "amount": amount,
                "new_balance": new_balance,
                "request_id": request_id,
            },
        )

        return DeductionResult(
            allowed=True,
            success=True,
            new_balance=new_balance,
            message=f"Successfully refunded {amount} credit(s).",
            subscription_id=subscription_id,
        )

    def record_grant(self, subscription: ClientSubscription, memo: Optional[str] = None) -> CreditLedgerEntry:
        """
        Append a GRANT entry for credits set by subscription activation.

        Activation itself writes the balance; this only documents it.
        """
        return self._append_entry(
            subscription_id=subscription.id,
            client_id=subscription.user_id,
            entry_type=LedgerEntryType.GRANT,
            amount=subscription.remaining_credits,
            balance_after=subscription.remaining_credits,
            memo=memo,
        )

    def _charged_subscription_id(self, client_id: str, request_id: str, now: datetime) -> Optional[str]:
        charged = self.session.execute(
            select(CreditLedgerEntry.subscription_id)
            .where(
                CreditLedgerEntry.user_id == client_id,
                CreditLedgerEntry.request_id == request_id,
                CreditLedgerEntry.entry_type == LedgerEntryType.DEDUCTION,
            )
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if charged is None:
            return None
        row = self._fresh_row(charged)
        if row is None or not row.is_active or as_utc(row.end_date) < now:
            return None
        return charged

    def _append_entry(
        self,
        subscription_id: str,
        client_id: str,
        entry_type: LedgerEntryType,
        amount: int,
        balance_after: int,
        memo: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> CreditLedgerEntry:
        entry = CreditLedgerEntry(
            subscription_id=subscription_id,
            user_id=client_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=balance_after,
            memo=memo,
            request_id=request_id,
        )
        self.session.add(entry)
        self.session.flush()
        return entry
