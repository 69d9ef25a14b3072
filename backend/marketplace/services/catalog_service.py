"""
Admin management of the service catalog and credit packages.

Pricing edits only affect requests created afterwards; existing requests
carry their frozen cost breakdown. Any change to which services a package
grants invalidates that package's cached entitlement.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from marketplace.config.settings import (
    FREE_PACKAGE_CREDITS,
    FREE_PACKAGE_DURATION_DAYS,
    FREE_PACKAGE_NAME,
)
from marketplace.database.session import transactional
from marketplace.entitlements import invalidate_package_entitlement
from marketplace.models.package import Package
from marketplace.models.request import Request
from marketplace.models.service_type import ServiceType
from marketplace.models.subscription import ClientSubscription, live_subscription_criteria
from marketplace.platform.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
)
from marketplace.pricing import parse_attribute

logger = logging.getLogger(__name__)

SERVICE_TYPE_FIELDS = frozenset({
    "name",
    "description",
    "name_i18n",
    "description_i18n",
    "icon",
    "credit_cost",
    "max_free_revisions",
    "paid_revision_cost",
    "reset_free_revisions_on_paid",
    "priority_cost_low",
    "priority_cost_medium",
    "priority_cost_high",
    "attributes",
    "sort_order",
    "is_active",
})

PACKAGE_FIELDS = frozenset({
    "name",
    "description",
    "price",
    "credits",
    "duration_days",
    "features",
    "sort_order",
    "is_active",
    "support_all_services",
})

# field -> minimum allowed value
_SERVICE_TYPE_MINIMUMS = {
    "credit_cost": 1,
    "max_free_revisions": 0,
    "paid_revision_cost": 1,
    "priority_cost_low": 0,
    "priority_cost_medium": 0,
    "priority_cost_high": 0,
    "sort_order": None,
}

_PACKAGE_MINIMUMS = {
    "credits": 1,
    "duration_days": 1,
}


def _reject_unknown(fields: Dict[str, Any], allowed: frozenset) -> None:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise BadRequestError(f"Unknown fields: {', '.join(unknown)}", details={"fields": unknown})


def _check_minimums(fields: Dict[str, Any], minimums: Dict[str, Optional[int]]) -> None:
    for name, minimum in minimums.items():
        if name not in fields:
            continue
        value = fields[name]
        if isinstance(value, bool) or not isinstance(value, int):
            raise BadRequestError(f"{name} must be an integer")
        if minimum is not None and value < minimum:
            raise BadRequestError(f"{name} must be at least {minimum}")


def _check_attributes(definitions: Any) -> None:
    if definitions is None:
        return
    if not isinstance(definitions, list):
        raise BadRequestError("attributes must be a list")
    errors = []
    for index, definition in enumerate(definitions):
        try:
            parse_attribute(definition)
        except (ValueError, TypeError, AttributeError) as e:
            errors.append(f"Attribute {index + 1}: {e}")
    if errors:
        raise BadRequestError("Invalid attribute definitions", details={"errors": errors})


class CatalogService:
    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Service types
    # =========================================================================

    def list_service_types(self, include_inactive: bool = False) -> List[ServiceType]:
        query = self.session.query(ServiceType).filter(ServiceType.deleted_at.is_(None))
        if not include_inactive:
            query = query.filter(ServiceType.is_active.is_(True))
        return query.order_by(ServiceType.sort_order.asc(), ServiceType.name.asc()).all()

    def _get_service_type(self, service_type_id: str) -> ServiceType:
        service_type = self.session.get(ServiceType, service_type_id)
        if service_type is None or service_type.deleted_at is not None:
            raise NotFoundError("Service type", service_type_id)
        return service_type

    def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        query = self.session.query(ServiceType).filter(ServiceType.name == name)
        if exclude_id:
            query = query.filter(ServiceType.id != exclude_id)
        if query.first() is not None:
            raise ConflictError("A service type with this name already exists")

    def create_service_type(self, name: str, **fields) -> ServiceType:
        _reject_unknown(fields, SERVICE_TYPE_FIELDS)
        _check_minimums(fields, _SERVICE_TYPE_MINIMUMS)
        _check_attributes(fields.get("attributes"))

        with transactional(self.session):
            self._ensure_unique_name(name)
            service_type = ServiceType(name=name, **fields)
            self.session.add(service_type)
            self.session.flush()

        logger.info("Service type created", extra={"service_type_id": service_type.id, "name": name})
        return service_type

    def update_service_type(self, service_type_id: str, **fields) -> ServiceType:
        """Partial update. Existing requests keep their frozen prices."""
        _reject_unknown(fields, SERVICE_TYPE_FIELDS)
        _check_minimums(fields, _SERVICE_TYPE_MINIMUMS)
        _check_attributes(fields.get("attributes"))

        with transactional(self.session):
            service_type = self._get_service_type(service_type_id)
            if "name" in fields and fields["name"] != service_type.name:
                self._ensure_unique_name(fields["name"], exclude_id=service_type.id)
            for name, value in fields.items():
                setattr(service_type, name, value)
            self.session.flush()

        logger.info(
            "Service type updated",
            extra={"service_type_id": service_type.id, "fields": sorted(fields)},
        )
        return service_type

    def delete_service_type(self, service_type_id: str) -> Dict[str, Any]:
        """
        Remove a service type from the catalog.

        Referenced service types are soft-deleted; unreferenced ones are
        removed outright.
        """
        with transactional(self.session):
            service_type = self._get_service_type(service_type_id)
            request_count = (
                self.session.query(Request).filter(Request.service_type_id == service_type.id).count()
            )
            package_ids = [
                pkg.id
                for pkg in self.session.query(Package).filter(Package.service_types.any(ServiceType.id == service_type.id))
            ]
            if request_count:
                service_type.soft_delete()
                hard_deleted = False
            else:
                self.session.delete(service_type)
                hard_deleted = True
            self.session.flush()

        for package_id in package_ids:
            invalidate_package_entitlement(package_id)

        logger.info(
            "Service type deleted",
            extra={
                "service_type_id": service_type_id,
                "hard_deleted": hard_deleted,
                "request_count": request_count,
            },
        )
        return {"success": True, "hard_deleted": hard_deleted}

    # =========================================================================
    # Packages
    # =========================================================================

    def list_packages(self, include_free: bool = False, include_inactive: bool = False) -> List[Package]:
        query = self.session.query(Package)
        if not include_inactive:
            query = query.filter(Package.is_active.is_(True))
        if not include_free:
            query = query.filter(Package.is_free_package.is_(False))
        return query.order_by(Package.sort_order.asc(), Package.name.asc()).all()

    def get_package(self, package_id: str) -> Package:
        package = self.session.get(Package, package_id)
        if package is None:
            raise NotFoundError("Package", package_id)
        return package

    def _resolve_service_types(self, service_type_ids: Iterable[str]) -> List[ServiceType]:
        wanted = list(dict.fromkeys(service_type_ids))
        if not wanted:
            return []
        found = (
            self.session.query(ServiceType)
            .filter(ServiceType.id.in_(wanted), ServiceType.deleted_at.is_(None))
            .all()
        )
        missing = sorted(set(wanted) - {st.id for st in found})
        if missing:
            raise BadRequestError("Unknown service types", details={"service_type_ids": missing})
        return found

    def create_package(
        self,
        name: str,
        credits: int,
        price: Decimal = Decimal("0"),
        service_type_ids: Optional[Iterable[str]] = None,
        **fields,
    ) -> Package:
        fields.update(credits=credits, price=price)
        _reject_unknown(fields, PACKAGE_FIELDS)
        _check_minimums(fields, _PACKAGE_MINIMUMS)
        if Decimal(str(price)) < 0:
            raise BadRequestError("price must not be negative")

        with transactional(self.session):
            package = Package(name=name, **fields)
            package.service_types = self._resolve_service_types(service_type_ids or [])
            self.session.add(package)
            self.session.flush()

        logger.info("Package created", extra={"package_id": package.id, "name": name, "credits": credits})
        return package

    def update_package(self, package_id: str, **fields) -> Package:
        """Partial update. Credits of existing subscriptions are unaffected."""
        _reject_unknown(fields, PACKAGE_FIELDS)
        _check_minimums(fields, _PACKAGE_MINIMUMS)

        with transactional(self.session):
            package = self.get_package(package_id)
            for name, value in fields.items():
                setattr(package, name, value)
            self.session.flush()

        if "support_all_services" in fields:
            invalidate_package_entitlement(package.id)
        logger.info("Package updated", extra={"package_id": package.id, "fields": sorted(fields)})
        return package

    def set_package_services(
        self,
        package_id: str,
        service_type_ids: Iterable[str],
        support_all_services: Optional[bool] = None,
    ) -> Package:
        """Replace the set of services a package grants."""
        with transactional(self.session):
            package = self.get_package(package_id)
            package.service_types = self._resolve_service_types(service_type_ids)
            if support_all_services is not None:
                package.support_all_services = support_all_services
            self.session.flush()

        invalidate_package_entitlement(package.id)
        logger.info(
            "Package services updated",
            extra={"package_id": package.id, "service_type_ids": sorted(package.service_type_ids())},
        )
        return package

    def delete_package(self, package_id: str) -> Package:
        """
        Deactivate a package (soft delete).

        Raises:
            ForbiddenError: The free package
            PreconditionFailedError: Package still has live subscriptions
        """
        with transactional(self.session):
            package = self.get_package(package_id)
            if package.is_free_package:
                raise ForbiddenError(
                    "Cannot delete the free package. It is required for all new user registrations."
                )

            live_count = (
                self.session.query(ClientSubscription)
                .filter(
                    ClientSubscription.package_id == package.id,
                    *live_subscription_criteria(),
                )
                .count()
            )
            if live_count:
                raise PreconditionFailedError(
                    f"Cannot delete package with {live_count} active subscriptions. Deactivate it instead.",
                    details={"active_subscriptions": live_count},
                )
            package.is_active = False
            self.session.flush()

        invalidate_package_entitlement(package.id)
        logger.info("Package deleted", extra={"package_id": package.id})
        return package

    def ensure_free_package(self) -> Package:
        """Return the registration package, creating it on first boot."""
        with transactional(self.session):
            package = (
                self.session.query(Package)
                .filter(Package.is_free_package.is_(True))
                .order_by(Package.created_at.asc())
                .first()
            )
            if package is None:
                package = Package(
                    name=FREE_PACKAGE_NAME,
                    description=(
                        f"Basic free plan for all new users with {FREE_PACKAGE_CREDITS} credit(s) "
                        f"valid for {FREE_PACKAGE_DURATION_DAYS} days"
                    ),
                    price=Decimal("0"),
                    credits=FREE_PACKAGE_CREDITS,
                    duration_days=FREE_PACKAGE_DURATION_DAYS,
                    is_free_package=True,
                    support_all_services=True,
                )
                self.session.add(package)
                self.session.flush()
                logger.info("Free package created", extra={"package_id": package.id})
        return package
