"""
In-app notifications for request and subscription events.

Notifications are never on the decision path: services call the
dispatcher only after their transaction has committed, the dispatcher
writes through its OWN session, and every failure is logged and
swallowed. When a FastAPI BackgroundTasks is supplied, delivery runs after
the response is sent.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from marketplace.models.notification import Notification
from marketplace.models.user import User, UserRole, provider_services

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    user_id: str
    title: str
    message: str
    link: Optional[str] = None
    notification_type: str = "request"


class NotificationDispatcher:
    """
    Fire-and-forget writer of Notification rows.

    Args:
        session_factory: Callable returning a new Session (defaults to the app factory)
        background_tasks: Optional FastAPI BackgroundTasks to defer delivery
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ):
        if session_factory is None:
            from marketplace.database.session import get_session_factory
            session_factory = get_session_factory()
        self.session_factory = session_factory
        self.background_tasks = background_tasks

    def _schedule(self, fn: Callable, *args) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(fn, *args)
        else:
            fn(*args)

    def send(self, messages: List[NotificationMessage]) -> None:
        if messages:
            self._schedule(self._deliver, list(messages))

    def _deliver(self, messages: List[NotificationMessage]) -> int:
        session = None
        try:
            session = self.session_factory()
            for msg in messages:
                session.add(Notification(
                    user_id=msg.user_id,
                    title=msg.title,
                    message=msg.message,
                    notification_type=msg.notification_type,
                    link=msg.link,
                ))
            session.commit()
            return len(messages)
        except Exception:
            logger.warning(
                "Failed to deliver notifications",
                extra={
                    "notification_count": len(messages),
                    "user_ids": [m.user_id for m in messages],
                },
                exc_info=True,
            )
            if session is not None:
                session.rollback()
            return 0
        finally:
            if session is not None:
                session.close()

    # =========================================================================
    # Request events
    # =========================================================================

    def notify_new_request(self, request_id: str, title: str, service_type_id: str) -> None:
        """Tell every active provider who handles the service type."""
        self._schedule(self._deliver_new_request, request_id, title, service_type_id)

    def _deliver_new_request(self, request_id: str, title: str, service_type_id: str) -> int:
        try:
            session = self.session_factory()
            try:
                provider_ids = [
                    row.id
                    for row in session.query(User.id)
                    .join(provider_services, provider_services.c.user_id == User.id)
                    .filter(
                        provider_services.c.service_type_id == service_type_id,
                        User.role == UserRole.PROVIDER,
                        User.is_active.is_(True),
                    )
                ]
            finally:
                session.close()
        except Exception:
            logger.warning(
                "Failed to look up providers for new request notification",
                extra={"request_id": request_id, "service_type_id": service_type_id},
                exc_info=True,
            )
            return 0

        if not provider_ids:
            logger.info(
                "No providers to notify for new request",
                extra={"request_id": request_id, "service_type_id": service_type_id},
            )
            return 0

        return self._deliver([
            NotificationMessage(
                user_id=provider_id,
                title="New Request Available",
                message=f'A new request "{title}" is waiting for a provider.',
                link=f"/provider/available/{request_id}",
            )
            for provider_id in provider_ids
        ])

    def notify_revision_requested(
        self, provider_id: Optional[str], request_id: str, title: str, is_free: bool
    ) -> None:
        if not provider_id:
            return
        kind = "a revision" if is_free else "a paid revision"
        self.send([NotificationMessage(
            user_id=provider_id,
            title="Revision Requested",
            message=f'Client requested {kind} for "{title}"',
            link=f"/provider/requests/{request_id}",
        )])

    def notify_request_accepted(self, client_id: str, request_id: str, title: str) -> None:
        self.send([NotificationMessage(
            user_id=client_id,
            title="Request Accepted",
            message=f'Your request "{title}" has been accepted by a provider.',
            link=f"/client/requests/{request_id}",
        )])

    def notify_status_changed(self, client_id: str, request_id: str, title: str, delivered: bool) -> None:
        if delivered:
            heading = "Deliverable Ready"
            body = f'Your request "{title}" has a new deliverable ready for review.'
        else:
            heading = "Status Update"
            body = f'Your request "{title}" status has been updated.'
        self.send([NotificationMessage(
            user_id=client_id,
            title=heading,
            message=body,
            link=f"/client/requests/{request_id}",
        )])

    def notify_request_completed(self, provider_id: Optional[str], request_id: str, title: str) -> None:
        if not provider_id:
            return
        self.send([NotificationMessage(
            user_id=provider_id,
            title="Request Completed",
            message=f'Client has approved "{title}". Great job!',
            link=f"/provider/requests/{request_id}",
        )])

    def notify_new_message(
        self, recipient_id: Optional[str], request_id: str, title: str, recipient_is_provider: bool
    ) -> None:
        if not recipient_id:
            return
        prefix = "/provider/requests" if recipient_is_provider else "/client/requests"
        self.send([NotificationMessage(
            user_id=recipient_id,
            title="New Message",
            message=f'New message on "{title}"',
            link=f"{prefix}/{request_id}",
        )])

    def notify_new_rating(self, provider_id: str, request_id: str, title: str, rating: int) -> None:
        self.send([NotificationMessage(
            user_id=provider_id,
            title="New Rating",
            message=f'You received a {rating}-star rating for "{title}"',
            link=f"/provider/requests/{request_id}",
        )])

    # =========================================================================
    # Subscription and payment events
    # =========================================================================

    def notify_payment_submitted(self, admin_ids: List[str], package_name: str, amount) -> None:
        self.send([
            NotificationMessage(
                user_id=admin_id,
                title="New Payment Proof",
                message=f"A payment of {amount} for {package_name} is awaiting review.",
                link="/admin/payments",
                notification_type="payment",
            )
            for admin_id in admin_ids
        ])

    def notify_payment_approved(self, user_id: str, package_name: str, credits: int) -> None:
        self.send([NotificationMessage(
            user_id=user_id,
            title="Payment Approved!",
            message=(
                f"Your payment has been verified. Your {package_name} subscription "
                f"is now active with {credits} credits!"
            ),
            link="/client/subscription",
            notification_type="payment",
        )])

    def notify_payment_rejected(self, user_id: str, reason: str) -> None:
        self.send([NotificationMessage(
            user_id=user_id,
            title="Payment Verification Failed",
            message=f"Your payment could not be verified. Reason: {reason}. Please contact support or try again.",
            link="/client/subscription",
            notification_type="payment",
        )])

    def notify_subscription_cancelled(self, user_id: str, package_name: str) -> None:
        self.send([NotificationMessage(
            user_id=user_id,
            title="Subscription Cancelled",
            message=f"Your {package_name} subscription has been cancelled.",
            link="/client/subscription",
            notification_type="subscription",
        )])


def subscription_expiring_message(user_id: str, package_name: str, days: int) -> NotificationMessage:
    return NotificationMessage(
        user_id=user_id,
        title="Subscription Expiring Soon",
        message=f"Your {package_name} subscription expires in {days} days. Renew to keep your credits.",
        link="/client/subscription",
        notification_type="subscription",
    )


def subscription_expired_message(user_id: str, package_name: str) -> NotificationMessage:
    return NotificationMessage(
        user_id=user_id,
        title="Subscription Expired",
        message=f"Your {package_name} subscription has expired. Subscribe to a package to continue.",
        link="/client/subscription",
        notification_type="subscription",
    )
