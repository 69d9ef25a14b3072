"""
Shared fixtures: a real SQLite database per test plus small row factories.

Services commit their own transactions, so each test gets a fresh
file-backed database instead of a rolled-back outer transaction. The file
(not :memory:) lets several sessions and threads see the same data.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import marketplace.models  # noqa: F401  registers every table
from marketplace.db_base import Base
from marketplace.entitlements import cache as entitlement_cache
from marketplace.models.package import Package
from marketplace.models.request import Request, RequestStatus
from marketplace.models.service_type import ServiceType
from marketplace.models.subscription import ClientSubscription
from marketplace.models.user import User, UserRole
from marketplace.services.notification_service import NotificationDispatcher


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Entitlement cache off unless a test installs a fake client."""
    monkeypatch.setattr(entitlement_cache, "get_redis_client", lambda: None)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'marketplace.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    """Notifier double; tests that care about delivery use real_notifier."""
    return MagicMock(spec=NotificationDispatcher)


@pytest.fixture
def real_notifier(session_factory):
    return NotificationDispatcher(session_factory=session_factory)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    def _make(role=UserRole.CLIENT, service_types=None, **fields):
        user = User(
            email=fields.pop("email", f"{uuid.uuid4().hex[:10]}@example.com"),
            role=role,
            **fields,
        )
        if service_types:
            user.service_types = list(service_types)
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_service_type(db_session):
    def _make(**fields):
        defaults = {
            "name": f"Service {uuid.uuid4().hex[:8]}",
            "credit_cost": 1,
            "max_free_revisions": 3,
            "paid_revision_cost": 1,
            "reset_free_revisions_on_paid": True,
            "priority_cost_low": 0,
            "priority_cost_medium": 1,
            "priority_cost_high": 2,
            "attributes": [],
        }
        defaults.update(fields)
        service_type = ServiceType(**defaults)
        db_session.add(service_type)
        db_session.commit()
        return service_type
    return _make


@pytest.fixture
def make_package(db_session):
    def _make(service_types=None, **fields):
        defaults = {
            "name": f"Package {uuid.uuid4().hex[:8]}",
            "price": Decimal("49.00"),
            "credits": 10,
            "duration_days": 30,
            "support_all_services": False,
            "is_free_package": False,
        }
        defaults.update(fields)
        package = Package(**defaults)
        package.service_types = list(service_types or [])
        db_session.add(package)
        db_session.commit()
        return package
    return _make


@pytest.fixture
def make_subscription(db_session):
    def _make(user, package, remaining_credits=None, is_active=True, days_left=30, **fields):
        now = datetime.now(timezone.utc)
        subscription = ClientSubscription(
            user_id=user.id,
            package_id=package.id,
            remaining_credits=package.credits if remaining_credits is None else remaining_credits,
            start_date=fields.pop("start_date", now - timedelta(days=1)),
            end_date=fields.pop("end_date", now + timedelta(days=days_left)),
            is_active=is_active,
            **fields,
        )
        db_session.add(subscription)
        db_session.commit()
        return subscription
    return _make


@pytest.fixture
def make_request(db_session):
    def _make(client, service_type, status=RequestStatus.PENDING, provider=None, credit_cost=None, **fields):
        cost = service_type.credit_cost if credit_cost is None else credit_cost
        request = Request(
            title=fields.pop("title", "Design a landing page"),
            description=fields.pop("description", "A single landing page for the spring launch."),
            client_id=client.id,
            provider_id=provider.id if provider else None,
            service_type_id=service_type.id,
            status=status,
            priority=fields.pop("priority", 1),
            credit_cost=cost,
            base_credit_cost=cost,
            attribute_credits=0,
            priority_credit_cost=0,
            **fields,
        )
        db_session.add(request)
        db_session.commit()
        return request
    return _make


@pytest.fixture
def client_with_credits(make_user, make_service_type, make_package, make_subscription):
    """A client on a package covering one service type, with 10 credits."""
    service_type = make_service_type()
    package = make_package(service_types=[service_type], credits=10)
    client = make_user()
    subscription = make_subscription(client, package)
    return client, service_type, subscription
