"""
Unit tests for package-service entitlements.

Tests cover:
- live subscription selection (expired, pending, cancelled, newest wins)
- FORBIDDEN vs PRECONDITION_FAILED denials
- per-package cache reads, writes and invalidation
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from marketplace.entitlements import (
    PackageEntitlement,
    cache as entitlement_cache,
    check_access,
    get_live_subscription,
    invalidate_package_entitlement,
    load_package_entitlement,
    require_access,
)
from marketplace.platform.errors import ForbiddenError, PreconditionFailedError


@pytest.fixture
def fake_redis(monkeypatch):
    client = MagicMock()
    client.get.return_value = None
    monkeypatch.setattr(entitlement_cache, "get_redis_client", lambda: client)
    return client


# =============================================================================
# get_live_subscription
# =============================================================================

class TestLiveSubscription:

    def test_expired_but_still_flagged_active_is_not_live(
        self, db_session, make_user, make_package, make_subscription
    ):
        client = make_user()
        package = make_package()
        make_subscription(client, package, end_date=datetime.now(timezone.utc) - timedelta(minutes=1))

        assert get_live_subscription(db_session, client.id) is None

    def test_pending_never_counts(self, db_session, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(client, make_package(), is_active=False)

        assert get_live_subscription(db_session, client.id) is None

    def test_newest_live_subscription_wins(self, db_session, make_user, make_package, make_subscription):
        client = make_user()
        now = datetime.now(timezone.utc)
        make_subscription(client, make_package(), created_at=now - timedelta(days=2))
        newer = make_subscription(client, make_package(), created_at=now - timedelta(days=1))

        assert get_live_subscription(db_session, client.id).id == newer.id


# =============================================================================
# check_access / require_access
# =============================================================================

class TestCheckAccess:

    def test_granted_when_package_includes_service(self, db_session, client_with_credits):
        client, service_type, subscription = client_with_credits

        result = check_access(db_session, client.id, service_type.id)

        assert result.allowed is True
        assert result.subscription_id == subscription.id

    def test_support_all_services_grants_anything(
        self, db_session, make_user, make_package, make_subscription, make_service_type
    ):
        client = make_user()
        make_subscription(client, make_package(support_all_services=True))

        assert check_access(db_session, client.id, make_service_type().id).allowed is True

    def test_service_outside_plan_is_forbidden(self, db_session, client_with_credits, make_service_type):
        client, _, _ = client_with_credits
        other = make_service_type()

        result = check_access(db_session, client.id, other.id)

        assert result.allowed is False
        assert result.denial_code == "FORBIDDEN"
        with pytest.raises(ForbiddenError, match="doesn't include this service"):
            require_access(db_session, client.id, other.id)

    def test_no_subscription_is_precondition_failed(self, db_session, make_user, make_service_type):
        client = make_user()
        service_type = make_service_type()

        result = check_access(db_session, client.id, service_type.id)

        assert result.denial_code == "PRECONDITION_FAILED"
        with pytest.raises(PreconditionFailedError) as exc_info:
            require_access(db_session, client.id, service_type.id)
        assert exc_info.value.details == {"reason": "no_active_subscription"}

    def test_expired_subscription_refused(
        self, db_session, make_user, make_package, make_subscription, make_service_type
    ):
        service_type = make_service_type()
        client = make_user()
        make_subscription(
            client,
            make_package(service_types=[service_type]),
            end_date=datetime.now(timezone.utc) - timedelta(seconds=5),
        )

        with pytest.raises(PreconditionFailedError):
            require_access(db_session, client.id, service_type.id)


# =============================================================================
# Cache
# =============================================================================

class TestEntitlementCache:

    def test_miss_loads_from_database_and_caches(self, db_session, make_package, make_service_type, fake_redis):
        service_type = make_service_type()
        package = make_package(service_types=[service_type])

        ent = load_package_entitlement(db_session, package.id)

        assert ent.service_type_ids == frozenset({service_type.id})
        key, ttl, payload = fake_redis.setex.call_args[0]
        assert key == f"entitlements:package:{package.id}"
        assert ttl == entitlement_cache.DEFAULT_TTL
        assert service_type.id in payload

    def test_hit_skips_database(self, fake_redis):
        cached = PackageEntitlement(package_id="pkg-1", support_all_services=False, service_type_ids=frozenset({"st-1"}))
        fake_redis.get.return_value = entitlement_cache._serialize(cached)
        session = MagicMock()

        assert load_package_entitlement(session, "pkg-1") == cached
        session.get.assert_not_called()

    def test_invalidate_deletes_key(self, fake_redis):
        invalidate_package_entitlement("pkg-1")
        fake_redis.delete.assert_called_once_with("entitlements:package:pkg-1")

    def test_redis_errors_degrade_to_miss(self, db_session, make_package, fake_redis):
        fake_redis.get.side_effect = ConnectionError("down")
        fake_redis.setex.side_effect = ConnectionError("down")
        package = make_package(support_all_services=True)

        ent = load_package_entitlement(db_session, package.id)

        assert ent.support_all_services is True

    def test_unknown_package_grants_nothing(self, db_session):
        ent = load_package_entitlement(db_session, "missing")
        assert ent.grants("anything") is False
