"""
Entitlement evaluation: live subscription -> package service set -> allow/deny.

Two distinct denials, because the client UI reacts differently:
- no live subscription      -> PRECONDITION_FAILED (prompt to subscribe)
- service not in the plan   -> FORBIDDEN (prompt to upgrade)

Read-only. The package service set may come from Redis; the subscription
lookup always hits the database.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from marketplace.entitlements import cache as entitlement_cache
from marketplace.entitlements.models import AccessResult, PackageEntitlement
from marketplace.models.package import Package
from marketplace.models.subscription import ClientSubscription, live_subscription_criteria
from marketplace.platform.errors import ForbiddenError, PreconditionFailedError

logger = logging.getLogger(__name__)


def get_live_subscription(
    session: Session,
    client_id: str,
    now: Optional[datetime] = None,
) -> Optional[ClientSubscription]:
    """Newest active, unexpired subscription for the client."""
    return (
        session.query(ClientSubscription)
        .filter(*live_subscription_criteria(client_id, now))
        .order_by(ClientSubscription.created_at.desc())
        .first()
    )


def load_package_entitlement(session: Session, package_id: str) -> PackageEntitlement:
    """Package service set, from cache when possible."""
    cached = entitlement_cache.get_cached(package_id)
    if cached is not None:
        return cached

    package = session.get(Package, package_id)
    if package is None:
        # Dangling package reference grants nothing
        return PackageEntitlement(package_id=package_id, support_all_services=False, service_type_ids=frozenset())

    ent = PackageEntitlement(
        package_id=package.id,
        support_all_services=bool(package.support_all_services),
        service_type_ids=frozenset(package.service_type_ids()),
    )
    entitlement_cache.set_cached(ent)
    return ent


def invalidate_package_entitlement(package_id: str) -> None:
    """Clear cache for package; next check recomputes."""
    entitlement_cache.delete_cached(package_id)


def check_access(
    session: Session,
    client_id: str,
    service_type_id: str,
    now: Optional[datetime] = None,
) -> AccessResult:
    """
    Decide whether the client may order the service.

    Returns:
        AccessResult (never raises for a denial)
    """
    subscription = get_live_subscription(session, client_id, now)
    if subscription is None:
        logger.info(
            "Entitlement denied: no live subscription",
            extra={"client_id": client_id, "service_type_id": service_type_id},
        )
        return AccessResult.no_subscription()

    entitlement = load_package_entitlement(session, subscription.package_id)
    if not entitlement.grants(service_type_id):
        logger.info(
            "Entitlement denied: service not in package",
            extra={
                "client_id": client_id,
                "service_type_id": service_type_id,
                "package_id": subscription.package_id,
            },
        )
        return AccessResult.service_not_in_plan(subscription.id, subscription.package_id)

    return AccessResult.granted(subscription.id, subscription.package_id)


def require_access(
    session: Session,
    client_id: str,
    service_type_id: str,
    now: Optional[datetime] = None,
) -> AccessResult:
    """check_access that raises the matching AppError on denial."""
    result = check_access(session, client_id, service_type_id, now)
    if result.allowed:
        return result
    if result.denial_code == "FORBIDDEN":
        raise ForbiddenError(result.message, details={"package_id": result.package_id})
    raise PreconditionFailedError(result.message, details={"reason": "no_active_subscription"})
