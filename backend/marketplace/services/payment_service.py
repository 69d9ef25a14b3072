"""
Payment proofs for bank-transfer purchases and their admin review.

Approval is the only path that grants credits outside registration:
it activates the pending subscription with a fresh window and the
package's credits, supersedes any other live subscription of the client,
and records a GRANT ledger entry.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.database.session import transactional
from marketplace.models.payment_proof import PaymentProof, PaymentStatus
from marketplace.models.subscription import ClientSubscription
from marketplace.models.user import User, UserRole
from marketplace.platform.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
)
from marketplace.services.credit_ledger import CreditLedger
from marketplace.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

ALREADY_REVIEWED_MESSAGE = "This payment has already been reviewed"
CANCELLED_SUBSCRIPTION_MESSAGE = "This subscription was cancelled by the client. Reject the payment instead."


class PaymentService:
    def __init__(self, session: Session, notifier: Optional[NotificationDispatcher] = None):
        self.session = session
        self.notifier = notifier if notifier is not None else NotificationDispatcher()
        self.ledger = CreditLedger(session)

    def _get_payment(self, payment_id: str) -> PaymentProof:
        payment = self.session.get(PaymentProof, payment_id, populate_existing=True)
        if payment is None:
            raise NotFoundError("Payment proof", payment_id)
        return payment

    def _mark_reviewed(self, payment: PaymentProof, status: PaymentStatus, admin_id: str, **values) -> None:
        result = self.session.execute(
            update(PaymentProof)
            .where(PaymentProof.id == payment.id, PaymentProof.status == PaymentStatus.PENDING)
            .values(status=status, reviewed_by=admin_id, reviewed_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BadRequestError(ALREADY_REVIEWED_MESSAGE)
        self.session.refresh(payment)

    def _notify_safely(self, fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.warning("Notification dispatch failed", exc_info=True)

    def submit_proof(
        self,
        client_id: str,
        subscription_id: str,
        transfer_image: str,
        sender_name: str,
        sender_bank: str,
        sender_country: str,
        amount: Decimal,
        transfer_date: datetime,
        currency: str = "USD",
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PaymentProof:
        """
        Attach a bank-transfer proof to the client's pending subscription.

        Raises:
            NotFoundError: Subscription missing or not the caller's
            ConflictError: A proof already exists for the subscription
            PreconditionFailedError: Subscription is not awaiting payment
        """
        if Decimal(str(amount)) <= 0:
            raise BadRequestError("Amount must be positive")

        with transactional(self.session):
            subscription = (
                self.session.query(ClientSubscription)
                .filter(ClientSubscription.id == subscription_id, ClientSubscription.user_id == client_id)
                .first()
            )
            if subscription is None:
                raise NotFoundError("Subscription", subscription_id)
            if subscription.payment_proof is not None:
                raise ConflictError("Payment proof already submitted for this subscription")
            if not subscription.is_pending:
                raise PreconditionFailedError("Payment proof can only be submitted for a subscription awaiting payment")

            proof = PaymentProof(
                subscription_id=subscription.id,
                user_id=client_id,
                transfer_image=transfer_image,
                sender_name=sender_name,
                sender_bank=sender_bank,
                sender_country=sender_country,
                amount=amount,
                currency=currency,
                transfer_date=transfer_date,
                reference_number=reference_number,
                notes=notes,
                status=PaymentStatus.PENDING,
            )
            self.session.add(proof)
            try:
                self.session.flush()
            except IntegrityError as e:
                raise ConflictError("Payment proof already submitted for this subscription") from e

            admin_ids = [
                row.id
                for row in self.session.query(User.id).filter(
                    User.role == UserRole.SUPER_ADMIN, User.is_active.is_(True)
                )
            ]
            package_name = subscription.package.name

        logger.info(
            "Payment proof submitted",
            extra={"client_id": client_id, "subscription_id": subscription_id, "payment_id": proof.id},
        )
        self._notify_safely(self.notifier.notify_payment_submitted, admin_ids, package_name, amount)
        return proof

    def approve_payment(self, payment_id: str, admin_id: str) -> ClientSubscription:
        """
        Activate the subscription behind a pending proof.

        Raises:
            BadRequestError: Payment already reviewed (including by a concurrent reviewer)
            PreconditionFailedError: The client cancelled the subscription; reject the proof instead
        """
        with transactional(self.session):
            payment = self._get_payment(payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise BadRequestError(ALREADY_REVIEWED_MESSAGE)
            self._mark_reviewed(payment, PaymentStatus.APPROVED, admin_id)

            subscription = payment.subscription
            package = subscription.package
            now = datetime.now(timezone.utc)

            activated = self.session.execute(
                update(ClientSubscription)
                .where(
                    ClientSubscription.id == subscription.id,
                    ClientSubscription.is_active.is_(False),
                    ClientSubscription.cancelled_at.is_(None),
                )
                .values(
                    is_active=True,
                    start_date=now,
                    end_date=now + timedelta(days=package.duration_days),
                    remaining_credits=package.credits,
                )
                .execution_options(synchronize_session=False)
            )
            if activated.rowcount != 1:
                raise PreconditionFailedError(CANCELLED_SUBSCRIPTION_MESSAGE)

            # Superseded subscriptions stop granting anything
            self.session.execute(
                update(ClientSubscription)
                .where(
                    ClientSubscription.user_id == subscription.user_id,
                    ClientSubscription.id != subscription.id,
                    ClientSubscription.is_active.is_(True),
                )
                .values(is_active=False, cancelled_at=now)
                .execution_options(synchronize_session=False)
            )

            self.session.refresh(subscription)
            self.ledger.record_grant(subscription, memo=f"Payment approved: {package.name}")

        logger.info(
            "Payment approved",
            extra={
                "payment_id": payment.id,
                "admin_id": admin_id,
                "subscription_id": subscription.id,
                "credits": subscription.remaining_credits,
            },
        )
        self._notify_safely(
            self.notifier.notify_payment_approved, payment.user_id, package.name, subscription.remaining_credits
        )
        return subscription

    def reject_payment(self, payment_id: str, admin_id: str, reason: str) -> PaymentProof:
        if not reason or not reason.strip():
            raise BadRequestError("A rejection reason is required")

        with transactional(self.session):
            payment = self._get_payment(payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise BadRequestError(ALREADY_REVIEWED_MESSAGE)
            self._mark_reviewed(payment, PaymentStatus.REJECTED, admin_id, rejection_reason=reason)
            payment.subscription.cancel()
            self.session.flush()

        logger.info("Payment rejected", extra={"payment_id": payment.id, "admin_id": admin_id})
        self._notify_safely(self.notifier.notify_payment_rejected, payment.user_id, reason)
        return payment

    def get_pending_payments(self) -> List[PaymentProof]:
        """Oldest first, so reviewers work the queue in order."""
        return (
            self.session.query(PaymentProof)
            .filter(PaymentProof.status == PaymentStatus.PENDING)
            .order_by(PaymentProof.created_at.asc())
            .all()
        )

    def get_stats(self) -> Dict[str, int]:
        counts = {
            status: self.session.query(PaymentProof).filter(PaymentProof.status == status).count()
            for status in PaymentStatus
        }
        return {
            "pending": counts[PaymentStatus.PENDING],
            "approved": counts[PaymentStatus.APPROVED],
            "rejected": counts[PaymentStatus.REJECTED],
            "total": sum(counts.values()),
        }
