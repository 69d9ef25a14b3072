"""
Tests for the subscription expiry job.
"""

from datetime import datetime, timedelta, timezone

import pytest

from marketplace.jobs.subscription_expiry import SubscriptionExpiryJob, run_expiry_check
from marketplace.models.notification import Notification
from marketplace.models.subscription import ClientSubscription


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


class TestExpiryWarnings:

    def test_warns_exactly_at_warning_days(self, db_session, make_user, make_package, make_subscription, now):
        client = make_user()
        make_subscription(client, make_package(name="Pro"), end_date=now + timedelta(days=7, hours=-1))
        make_subscription(make_user(), make_package(), end_date=now + timedelta(days=3))

        results = SubscriptionExpiryJob(db_session, warning_days=7).run(now=now)

        assert results["expiring_notified"] == 1
        notification = db_session.query(Notification).one()
        assert notification.user_id == client.id
        assert notification.title == "Subscription Expiring Soon"

    def test_warning_not_repeated(self, db_session, make_user, make_package, make_subscription, now):
        make_subscription(make_user(), make_package(), end_date=now + timedelta(days=6, hours=23))
        job = SubscriptionExpiryJob(db_session, warning_days=7)

        job.run(now=now)
        second = job.run(now=now)

        assert second["expiring_notified"] == 0
        assert db_session.query(Notification).count() == 1


class TestExpiredDeactivation:

    def test_deactivates_and_notifies(self, db_session, make_user, make_package, make_subscription, now):
        client = make_user()
        expired = make_subscription(client, make_package(), end_date=now - timedelta(hours=2))
        live = make_subscription(make_user(), make_package(), end_date=now + timedelta(days=20))

        results = run_expiry_check(db_session)

        assert results["expired_deactivated"] == 1
        assert results["expired_notified"] == 1
        assert results["errors"] == []
        assert db_session.get(ClientSubscription, expired.id, populate_existing=True).is_active is False
        assert db_session.get(ClientSubscription, live.id, populate_existing=True).is_active is True
        assert db_session.query(Notification).one().title == "Subscription Expired"

    def test_expired_row_keeps_its_credits_and_is_not_cancelled(
        self, db_session, make_user, make_package, make_subscription, now
    ):
        expired = make_subscription(make_user(), make_package(), remaining_credits=4, end_date=now - timedelta(days=1))

        SubscriptionExpiryJob(db_session).run(now=now)

        row = db_session.get(ClientSubscription, expired.id, populate_existing=True)
        assert row.remaining_credits == 4
        assert row.cancelled_at is None
        assert row.status == "expired"

    def test_nothing_to_do(self, db_session, now):
        results = SubscriptionExpiryJob(db_session).run(now=now)
        assert results["expiring_notified"] == results["expired_deactivated"] == 0
        assert "completed_at" in results
