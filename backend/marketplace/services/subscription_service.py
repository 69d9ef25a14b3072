"""
Client subscriptions: registration grant, purchase, cancellation, reads.

Precedence when a client holds several subscription rows:
- only rows with is_active=True and end_date >= now are live
- among live rows the newest (created_at) wins
- pending (unpaid) rows never grant credits or entitlements
subscribe() refuses while a live PAID subscription or any pending one
exists; a live free-package subscription does not block an upgrade.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from marketplace.database.session import transactional
from marketplace.entitlements import get_live_subscription
from marketplace.models.package import Package
from marketplace.models.request import Request, RequestStatus, TERMINAL_STATUSES
from marketplace.models.subscription import ClientSubscription
from marketplace.platform.errors import ConflictError, ForbiddenError, NotFoundError
from marketplace.services.credit_ledger import CreditLedger
from marketplace.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


class SubscriptionService:
    def __init__(self, session: Session, notifier: Optional[NotificationDispatcher] = None):
        self.session = session
        self.notifier = notifier if notifier is not None else NotificationDispatcher()
        self.ledger = CreditLedger(session)

    def _pending_subscription(self, client_id: str) -> Optional[ClientSubscription]:
        return (
            self.session.query(ClientSubscription)
            .filter(
                ClientSubscription.user_id == client_id,
                ClientSubscription.is_active.is_(False),
                ClientSubscription.cancelled_at.is_(None),
                ClientSubscription.end_date >= datetime.now(timezone.utc),
            )
            .order_by(ClientSubscription.created_at.desc())
            .first()
        )

    def grant_free_subscription(self, user_id: str) -> Optional[ClientSubscription]:
        """
        Registration grant of the free package.

        Returns the existing live subscription unchanged when the user
        already has one, and None when no free package is configured.
        """
        with transactional(self.session):
            existing = get_live_subscription(self.session, user_id)
            if existing is not None:
                return existing

            package = (
                self.session.query(Package)
                .filter(Package.is_free_package.is_(True), Package.is_active.is_(True))
                .order_by(Package.created_at.asc())
                .first()
            )
            if package is None:
                logger.warning("No free package configured; registration grant skipped", extra={"user_id": user_id})
                return None

            subscription = ClientSubscription.create_active(user_id, package)
            self.session.add(subscription)
            self.session.flush()
            self.ledger.record_grant(subscription, memo=f"Registration grant: {package.name}")

        logger.info(
            "Free subscription granted",
            extra={"user_id": user_id, "subscription_id": subscription.id, "credits": subscription.remaining_credits},
        )
        return subscription

    def subscribe(self, client_id: str, package_id: str) -> ClientSubscription:
        """
        Create an inactive subscription awaiting payment proof.

        Does not touch credits; approve_payment activates it.

        Raises:
            NotFoundError: Package missing or inactive
            ForbiddenError: Free package (granted at registration only)
            ConflictError: Live paid subscription or pending subscription exists
        """
        with transactional(self.session):
            package = self.session.get(Package, package_id)
            if package is None or not package.is_active:
                raise NotFoundError("Package", package_id)
            if package.is_free_package:
                raise ForbiddenError("The free package is granted at registration and cannot be purchased")

            live = get_live_subscription(self.session, client_id)
            if live is not None and not live.package.is_free_package:
                raise ConflictError(
                    "You already have an active subscription. Please cancel it first or wait for it to expire.",
                    details={"subscription_id": live.id},
                )

            pending = self._pending_subscription(client_id)
            if pending is not None:
                raise ConflictError(
                    "You already have a subscription awaiting payment verification.",
                    details={"subscription_id": pending.id},
                )

            subscription = ClientSubscription.create_pending(client_id, package)
            self.session.add(subscription)
            self.session.flush()

        logger.info(
            "Pending subscription created",
            extra={"client_id": client_id, "package_id": package.id, "subscription_id": subscription.id},
        )
        return subscription

    def cancel(self, subscription_id: str, client_id: str) -> ClientSubscription:
        """Cancel an active or pending subscription; remaining credits become unusable."""
        with transactional(self.session):
            subscription = (
                self.session.query(ClientSubscription)
                .filter(
                    ClientSubscription.id == subscription_id,
                    ClientSubscription.user_id == client_id,
                    ClientSubscription.cancelled_at.is_(None),
                )
                .first()
            )
            if subscription is None:
                raise NotFoundError("Subscription", subscription_id)
            subscription.cancel()
            self.session.flush()

        logger.info("Subscription cancelled", extra={"client_id": client_id, "subscription_id": subscription.id})
        try:
            self.notifier.notify_subscription_cancelled(client_id, subscription.package.name)
        except Exception:
            logger.warning(
                "Notification dispatch failed",
                extra={"subscription_id": subscription.id},
                exc_info=True,
            )
        return subscription

    # =========================================================================
    # Reads
    # =========================================================================

    def get_active(self, client_id: str) -> Optional[Dict[str, Any]]:
        subscription = get_live_subscription(self.session, client_id)
        if subscription is None:
            return None
        expiry = self.ledger.check_subscription_expiry(client_id)
        return {
            "subscription": subscription,
            "is_expiring": expiry["is_expiring"],
            "days_remaining": expiry["days_remaining"],
        }

    def get_balance(self, client_id: str) -> Dict[str, Any]:
        return self.ledger.get_balance(client_id)

    def get_history(self, client_id: str) -> List[ClientSubscription]:
        return (
            self.session.query(ClientSubscription)
            .filter(ClientSubscription.user_id == client_id)
            .order_by(ClientSubscription.created_at.desc())
            .all()
        )

    def get_usage_stats(self, client_id: str) -> Optional[Dict[str, Any]]:
        subscription = get_live_subscription(self.session, client_id)
        if subscription is None:
            return None

        base = self.session.query(Request).filter(Request.client_id == client_id)
        total = base.count()
        completed = base.filter(Request.status == RequestStatus.COMPLETED).count()
        active = base.filter(Request.status.notin_(list(TERMINAL_STATUSES))).count()

        package = subscription.package
        return {
            "total_requests": total,
            "completed_requests": completed,
            "active_requests": active,
            "credits_total": package.credits,
            "credits_used": max(0, package.credits - subscription.remaining_credits),
            "credits_remaining": subscription.remaining_credits,
            "subscription_start_date": subscription.start_date,
            "subscription_end_date": subscription.end_date,
            "package_name": package.name,
            "as_of": datetime.now(timezone.utc),
        }
