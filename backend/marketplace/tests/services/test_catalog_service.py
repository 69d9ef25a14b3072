"""
Tests for CatalogService: service type and package administration.
"""

from unittest.mock import patch

import pytest

from marketplace.models.package import Package
from marketplace.models.service_type import ServiceType
from marketplace.platform.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PreconditionFailedError,
)
from marketplace.services.catalog_service import CatalogService


@pytest.fixture
def catalog(db_session):
    return CatalogService(db_session)


class TestServiceTypes:

    def test_create_and_list(self, catalog):
        created = catalog.create_service_type(
            "Logo design",
            credit_cost=2,
            attributes=[{"question": "Style", "type": "select", "options": ["flat"]}],
        )

        assert [st.id for st in catalog.list_service_types()] == [created.id]

    def test_duplicate_name(self, catalog):
        catalog.create_service_type("Logo design")
        with pytest.raises(ConflictError):
            catalog.create_service_type("Logo design")

    def test_rejects_bad_pricing(self, catalog):
        with pytest.raises(BadRequestError, match="credit_cost must be at least 1"):
            catalog.create_service_type("Broken", credit_cost=0)
        with pytest.raises(BadRequestError, match="Unknown fields"):
            catalog.create_service_type("Broken", colour="red")

    def test_rejects_bad_attribute_definitions(self, catalog):
        with pytest.raises(BadRequestError) as exc_info:
            catalog.create_service_type("Broken", attributes=[{"type": "select"}])
        assert exc_info.value.details["errors"][0].startswith("Attribute 1:")

    def test_update(self, catalog, make_service_type):
        service_type = make_service_type()
        updated = catalog.update_service_type(service_type.id, paid_revision_cost=4)
        assert updated.paid_revision_cost == 4

    def test_delete_unused_is_hard(self, catalog, db_session, make_service_type):
        service_type = make_service_type()

        assert catalog.delete_service_type(service_type.id) == {"success": True, "hard_deleted": True}
        assert db_session.get(ServiceType, service_type.id) is None

    def test_delete_referenced_is_soft(self, catalog, db_session, make_user, make_service_type, make_request):
        service_type = make_service_type()
        make_request(make_user(), service_type)

        assert catalog.delete_service_type(service_type.id)["hard_deleted"] is False
        kept = db_session.get(ServiceType, service_type.id)
        assert kept.deleted_at is not None
        assert kept.is_available is False
        assert catalog.list_service_types(include_inactive=True) == []

    def test_delete_invalidates_packages(self, catalog, make_service_type, make_package):
        service_type = make_service_type()
        package = make_package(service_types=[service_type])

        with patch("marketplace.services.catalog_service.invalidate_package_entitlement") as invalidate:
            catalog.delete_service_type(service_type.id)

        invalidate.assert_called_once_with(package.id)


class TestPackages:

    def test_create_with_services(self, catalog, make_service_type):
        service_type = make_service_type()

        package = catalog.create_package("Starter", credits=5, service_type_ids=[service_type.id])

        assert package.service_type_ids() == {service_type.id}

    def test_unknown_service_ids(self, catalog):
        with pytest.raises(BadRequestError, match="Unknown service types"):
            catalog.create_package("Starter", credits=5, service_type_ids=["missing"])

    def test_list_hides_free_and_inactive(self, catalog, make_package):
        paid = make_package()
        make_package(is_free_package=True)
        make_package(is_active=False)

        assert [p.id for p in catalog.list_packages()] == [paid.id]

    def test_set_services_invalidates(self, catalog, make_package, make_service_type):
        package = make_package()
        service_type = make_service_type()

        with patch("marketplace.services.catalog_service.invalidate_package_entitlement") as invalidate:
            updated = catalog.set_package_services(package.id, [service_type.id], support_all_services=False)

        assert updated.service_type_ids() == {service_type.id}
        invalidate.assert_called_once_with(package.id)

    def test_update_support_all_invalidates(self, catalog, make_package):
        package = make_package()
        with patch("marketplace.services.catalog_service.invalidate_package_entitlement") as invalidate:
            catalog.update_package(package.id, support_all_services=True)
        invalidate.assert_called_once_with(package.id)

    def test_free_package_cannot_be_deleted(self, catalog, make_package):
        package = make_package(is_free_package=True)
        with pytest.raises(ForbiddenError, match="Cannot delete the free package"):
            catalog.delete_package(package.id)

    def test_package_with_live_subscriptions(self, catalog, make_user, make_package, make_subscription):
        package = make_package()
        make_subscription(make_user(), package)
        with pytest.raises(PreconditionFailedError):
            catalog.delete_package(package.id)

    def test_delete_deactivates(self, catalog, make_package):
        package = make_package()
        assert catalog.delete_package(package.id).is_active is False

    def test_missing_package(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.get_package("missing")

    def test_ensure_free_package_is_idempotent(self, catalog, db_session):
        first = catalog.ensure_free_package()
        second = catalog.ensure_free_package()

        assert first.id == second.id
        assert first.name == "Free Plan"
        assert first.credits == 1
        assert first.support_all_services is True
        assert db_session.query(Package).filter(Package.is_free_package.is_(True)).count() == 1
