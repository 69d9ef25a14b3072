"""
Database models for the credit marketplace.

Importing this package registers every table on Base.metadata.
"""

from marketplace.models.base import TimestampMixin, JSONType
from marketplace.models.user import User, UserRole, provider_services
from marketplace.models.service_type import ServiceType
from marketplace.models.package import Package, package_services
from marketplace.models.subscription import ClientSubscription
from marketplace.models.credit_ledger_entry import CreditLedgerEntry, LedgerEntryType
from marketplace.models.request import (
    Request,
    RequestStatus,
    RequestPriority,
    TERMINAL_STATUSES,
    PROVIDER_TRANSITIONS,
)
from marketplace.models.request_comment import (
    RequestComment,
    CommentType,
    CommentEvent,
    REVISION_EVENTS,
)
from marketplace.models.payment_proof import PaymentProof, PaymentStatus
from marketplace.models.rating import Rating
from marketplace.models.notification import Notification

__all__ = [
    "TimestampMixin",
    "JSONType",
    "User",
    "UserRole",
    "provider_services",
    "ServiceType",
    "Package",
    "package_services",
    "ClientSubscription",
    "CreditLedgerEntry",
    "LedgerEntryType",
    "Request",
    "RequestStatus",
    "RequestPriority",
    "TERMINAL_STATUSES",
    "PROVIDER_TRANSITIONS",
    "RequestComment",
    "CommentType",
    "CommentEvent",
    "REVISION_EVENTS",
    "PaymentProof",
    "PaymentStatus",
    "Rating",
    "Notification",
]
