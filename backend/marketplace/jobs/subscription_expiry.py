"""
Subscription expiry job.

Runs daily (cron or scheduler hitting the jobs endpoint):
- warns clients whose subscription ends in exactly EXPIRY_WARNING_DAYS days
- deactivates subscriptions past their end_date and tells the client

Entitlement and credit checks already treat end_date < now as expired, so
this job only tidies state and notifies; running it late never grants
anything. Warnings are deduplicated against notifications sent in the
last EXPIRY_WARNING_DAYS days.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.config.settings import EXPIRY_WARNING_DAYS
from marketplace.models.base import as_utc
from marketplace.models.notification import Notification
from marketplace.models.subscription import ClientSubscription
from marketplace.services.notification_service import (
    NotificationMessage,
    subscription_expired_message,
    subscription_expiring_message,
)

logger = logging.getLogger(__name__)


class SubscriptionExpiryJob:
    """
    Warns about and deactivates expiring subscriptions.

    Each subscription is handled in its own commit so one bad row does not
    block the rest.
    """

    def __init__(self, db_session: Session, warning_days: int = EXPIRY_WARNING_DAYS):
        self.db_session = db_session
        self.warning_days = warning_days

    def run(self, now: Optional[datetime] = None) -> dict:
        """
        Execute the expiry job.

        Returns:
            Summary of expiry results
        """
        now = now or datetime.now(timezone.utc)
        logger.info("Starting subscription expiry job")

        results = {
            "started_at": now.isoformat(),
            "expiring_notified": 0,
            "expired_notified": 0,
            "expired_deactivated": 0,
            "errors": [],
        }

        try:
            self._warn_expiring(now, results)
            self._deactivate_expired(now, results)
            results["completed_at"] = datetime.now(timezone.utc).isoformat()
            logger.info("Subscription expiry job completed", extra=results)
        except Exception as e:
            logger.error("Subscription expiry job failed", extra={"error": str(e)})
            results["errors"].append(str(e))

        return results

    def _already_notified(self, user_id: str, title: str, since: datetime) -> bool:
        return (
            self.db_session.query(Notification.id)
            .filter(
                Notification.user_id == user_id,
                Notification.title == title,
                Notification.created_at >= since,
            )
            .first()
            is not None
        )

    def _add_notification(self, message: NotificationMessage) -> None:
        self.db_session.add(Notification(
            user_id=message.user_id,
            title=message.title,
            message=message.message,
            notification_type=message.notification_type,
            link=message.link,
        ))

    def _warn_expiring(self, now: datetime, results: dict) -> None:
        horizon = now + timedelta(days=self.warning_days)
        since = now - timedelta(days=self.warning_days)

        expiring = self.db_session.query(ClientSubscription).filter(
            ClientSubscription.is_active.is_(True),
            ClientSubscription.end_date >= now,
            ClientSubscription.end_date <= horizon,
        ).all()

        for subscription in expiring:
            try:
                remaining = as_utc(subscription.end_date) - now
                days_remaining = math.ceil(remaining.total_seconds() / 86400)
                if days_remaining != self.warning_days:
                    continue

                message = subscription_expiring_message(
                    subscription.user_id, subscription.package.name, days_remaining
                )
                if self._already_notified(subscription.user_id, message.title, since):
                    continue

                self._add_notification(message)
                self.db_session.commit()
                results["expiring_notified"] += 1
            except Exception as e:
                self.db_session.rollback()
                error_msg = f"Failed to warn subscription {subscription.id}: {str(e)}"
                logger.error(error_msg, extra={"subscription_id": subscription.id})
                results["errors"].append(error_msg)

    def _deactivate_expired(self, now: datetime, results: dict) -> None:
        since = now - timedelta(days=self.warning_days)

        expired = self.db_session.query(ClientSubscription).filter(
            ClientSubscription.is_active.is_(True),
            ClientSubscription.end_date < now,
        ).all()

        for subscription in expired:
            try:
                message = subscription_expired_message(subscription.user_id, subscription.package.name)
                notify = not self._already_notified(subscription.user_id, message.title, since)
                if notify:
                    self._add_notification(message)

                # Conditional so a concurrent renewal (new end_date) is left alone
                self.db_session.execute(
                    update(ClientSubscription)
                    .where(
                        ClientSubscription.id == subscription.id,
                        ClientSubscription.is_active.is_(True),
                        ClientSubscription.end_date < now,
                    )
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
                self.db_session.commit()
                results["expired_deactivated"] += 1
                if notify:
                    results["expired_notified"] += 1

                logger.info(
                    "Subscription expired",
                    extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
                )
            except Exception as e:
                self.db_session.rollback()
                error_msg = f"Failed to expire subscription {subscription.id}: {str(e)}"
                logger.error(error_msg, extra={"subscription_id": subscription.id})
                results["errors"].append(error_msg)


def run_expiry_check(db_session: Session) -> dict:
    """
    Convenience function to run the expiry job.

    Args:
        db_session: Database session

    Returns:
        Job results summary
    """
    return SubscriptionExpiryJob(db_session).run()


# Entry point for cron/scheduler
if __name__ == "__main__":
    import sys

    from marketplace.config.settings import configure_logging
    from marketplace.database.session import get_session_factory

    configure_logging()
    session = get_session_factory()()

    try:
        results = run_expiry_check(session)
        print(f"Subscription expiry check completed: {results}")
    finally:
        session.close()

    sys.exit(1 if results["errors"] else 0)
