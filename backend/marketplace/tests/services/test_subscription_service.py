"""
Tests for SubscriptionService: registration grant, purchase rules, reads.
"""

from datetime import datetime, timedelta, timezone

import pytest

from marketplace.models.credit_ledger_entry import CreditLedgerEntry, LedgerEntryType
from marketplace.models.request import RequestStatus
from marketplace.platform.errors import ConflictError, ForbiddenError, NotFoundError
from marketplace.services.subscription_service import SubscriptionService


@pytest.fixture
def service(db_session, notifier):
    return SubscriptionService(db_session, notifier)


@pytest.fixture
def free_package(make_package):
    return make_package(name="Free Plan", credits=1, duration_days=14, is_free_package=True, support_all_services=True)


class TestGrantFreeSubscription:

    def test_grants_free_package(self, service, db_session, free_package, make_user):
        user = make_user()

        subscription = service.grant_free_subscription(user.id)

        assert subscription.is_active is True
        assert subscription.remaining_credits == 1
        assert subscription.package_id == free_package.id
        entry = db_session.query(CreditLedgerEntry).one()
        assert entry.entry_type == LedgerEntryType.GRANT
        assert entry.amount == 1

    def test_existing_live_subscription_returned(self, service, free_package, make_user, make_package, make_subscription):
        user = make_user()
        existing = make_subscription(user, make_package())

        assert service.grant_free_subscription(user.id).id == existing.id

    def test_no_free_package_configured(self, service, make_user):
        assert service.grant_free_subscription(make_user().id) is None


class TestSubscribe:

    def test_creates_pending_subscription(self, service, make_user, make_package):
        client = make_user()
        package = make_package(credits=20)

        subscription = service.subscribe(client.id, package.id)

        assert subscription.is_active is False
        assert subscription.remaining_credits == 0
        assert subscription.status == "pending"

    def test_free_plan_holder_may_upgrade(self, service, free_package, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(client, free_package)

        assert service.subscribe(client.id, make_package().id).is_pending

    def test_live_paid_subscription_blocks(self, service, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(client, make_package())

        with pytest.raises(ConflictError, match="already have an active subscription"):
            service.subscribe(client.id, make_package().id)

    def test_pending_subscription_blocks(self, service, make_user, make_package):
        client = make_user()
        service.subscribe(client.id, make_package().id)

        with pytest.raises(ConflictError, match="awaiting payment verification"):
            service.subscribe(client.id, make_package().id)

    def test_lapsed_pending_subscription_does_not_block(self, service, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(
            client, make_package(), is_active=False,
            end_date=datetime.now(timezone.utc) - timedelta(days=1),
        )

        assert service.subscribe(client.id, make_package().id).is_pending

    def test_free_package_cannot_be_bought(self, service, free_package, make_user):
        with pytest.raises(ForbiddenError):
            service.subscribe(make_user().id, free_package.id)

    def test_inactive_package(self, service, make_user, make_package):
        with pytest.raises(NotFoundError):
            service.subscribe(make_user().id, make_package(is_active=False).id)


class TestCancel:

    def test_cancel(self, service, make_user, make_package, make_subscription, notifier):
        client = make_user()
        package = make_package()
        subscription = make_subscription(client, package)

        cancelled = service.cancel(subscription.id, client.id)

        assert cancelled.status == "cancelled"
        assert cancelled.is_active is False
        notifier.notify_subscription_cancelled.assert_called_once_with(client.id, package.name)

    def test_cannot_cancel_twice_or_someone_elses(self, service, make_user, make_package, make_subscription):
        client = make_user()
        subscription = make_subscription(client, make_package())

        with pytest.raises(NotFoundError):
            service.cancel(subscription.id, make_user().id)
        service.cancel(subscription.id, client.id)
        with pytest.raises(NotFoundError):
            service.cancel(subscription.id, client.id)


class TestReads:

    def test_get_active(self, service, make_user, make_package, make_subscription):
        client = make_user()
        subscription = make_subscription(client, make_package(), days_left=5)

        active = service.get_active(client.id)

        assert active["subscription"].id == subscription.id
        assert active["is_expiring"] is True
        assert active["days_remaining"] == 5
        assert service.get_active(make_user().id) is None

    def test_history_includes_every_state(self, service, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(client, make_package(), is_active=False)
        make_subscription(client, make_package())

        assert len(service.get_history(client.id)) == 2

    def test_usage_stats(self, service, make_user, make_service_type, make_package, make_subscription, make_request):
        client = make_user()
        service_type = make_service_type()
        make_subscription(client, make_package(credits=10), remaining_credits=6)
        make_request(client, service_type, status=RequestStatus.COMPLETED)
        make_request(client, service_type, status=RequestStatus.IN_PROGRESS)
        make_request(client, service_type, status=RequestStatus.CANCELLED)

        stats = service.get_usage_stats(client.id)

        assert stats["total_requests"] == 3
        assert stats["completed_requests"] == 1
        assert stats["active_requests"] == 1
        assert stats["credits_used"] == 4
        assert stats["credits_remaining"] == 6
