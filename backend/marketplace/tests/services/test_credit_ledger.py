"""
Tests for CreditLedger against a real database.

Covers the atomic check-and-deduct (including two sessions and two threads
racing for the same balance), refunds, grants and the read helpers.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.models.credit_ledger_entry import CreditLedgerEntry, LedgerEntryType
from marketplace.models.subscription import ClientSubscription
from marketplace.services.credit_ledger import (
    NO_SUBSCRIPTION_MESSAGE,
    REASON_INSUFFICIENT_CREDITS,
    REASON_NO_SUBSCRIPTION,
    CreditLedger,
)


@pytest.fixture
def funded_client(make_user, make_package, make_subscription):
    def _make(balance):
        client = make_user()
        subscription = make_subscription(client, make_package(credits=balance), remaining_credits=balance)
        return client, subscription
    return _make


def _balance(session_factory, subscription_id):
    session = session_factory()
    try:
        return session.get(ClientSubscription, subscription_id).remaining_credits
    finally:
        session.close()


# =============================================================================
# check_and_deduct
# =============================================================================

class TestCheckAndDeduct:

    def test_deducts_and_records_entry(self, db_session, funded_client):
        client, subscription = funded_client(5)
        ledger = CreditLedger(db_session)

        result = ledger.check_and_deduct(client.id, 3, memo="New request: Logo", request_id="req-1")
        db_session.commit()

        assert result.allowed is True
        assert result.success is True
        assert result.new_balance == 2
        assert result.subscription_id == subscription.id
        assert result.message == "Successfully deducted 3 credit(s)."

        entry = db_session.query(CreditLedgerEntry).one()
        assert entry.entry_type == LedgerEntryType.DEDUCTION
        assert entry.amount == -3
        assert entry.balance_after == 2
        assert entry.request_id == "req-1"

    def test_loaded_instance_sees_new_balance(self, db_session, funded_client):
        client, subscription = funded_client(5)

        CreditLedger(db_session).check_and_deduct(client.id, 2)

        assert subscription.remaining_credits == 3

    def test_exact_balance_reaches_zero(self, db_session, funded_client):
        client, _ = funded_client(3)

        result = CreditLedger(db_session).check_and_deduct(client.id, 3)

        assert result.success is True
        assert result.new_balance == 0

    def test_insufficient_credits_refused_unchanged(self, db_session, session_factory, funded_client):
        client, subscription = funded_client(2)

        result = CreditLedger(db_session).check_and_deduct(client.id, 3)
        db_session.commit()

        assert result.allowed is False
        assert result.reason == REASON_INSUFFICIENT_CREDITS
        assert result.new_balance == 2
        assert result.message == "Insufficient credits. You have 2 credits but need 3."
        assert _balance(session_factory, subscription.id) == 2
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_no_subscription(self, db_session, make_user):
        result = CreditLedger(db_session).check_and_deduct(make_user().id, 1)

        assert result.allowed is False
        assert result.reason == REASON_NO_SUBSCRIPTION
        assert result.message == NO_SUBSCRIPTION_MESSAGE
        assert result.new_balance == 0

    def test_expired_subscription_cannot_pay(self, db_session, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(
            client, make_package(), remaining_credits=10,
            end_date=datetime.now(timezone.utc) - timedelta(hours=1),
        )

        result = CreditLedger(db_session).check_and_deduct(client.id, 1)

        assert result.reason == REASON_NO_SUBSCRIPTION

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True, "2"])
    def test_rejects_non_positive_or_non_integer_amounts(self, db_session, amount):
        with pytest.raises(ValueError):
            CreditLedger(db_session).check_and_deduct("client", amount)

    def test_stale_reader_cannot_overdraw(self, session_factory, funded_client):
        """Both sessions read balance 5 before either writes; only one 3-credit charge lands."""
        client, subscription = funded_client(5)
        first = session_factory()
        second = session_factory()
        try:
            assert CreditLedger(first).check_credits(client.id, 3).allowed
            assert CreditLedger(second).check_credits(client.id, 3).allowed

            assert CreditLedger(first).check_and_deduct(client.id, 3).success is True
            first.commit()
            late = CreditLedger(second).check_and_deduct(client.id, 3)
            second.commit()
        finally:
            first.close()
            second.close()

        assert late.success is False
        assert late.reason == REASON_INSUFFICIENT_CREDITS
        assert late.new_balance == 2
        assert _balance(session_factory, subscription.id) == 2

    def test_concurrent_deductions_exactly_one_wins(self, session_factory, funded_client):
        client, subscription = funded_client(5)
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def charge():
            session = session_factory()
            try:
                barrier.wait()
                result = CreditLedger(session).check_and_deduct(client.id, 3)
                session.commit()
                results.append(result)
            except Exception as e:  # surfaced through the assertion below
                session.rollback()
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=charge) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert sorted(r.success for r in results) == [False, True]
        winner = next(r for r in results if r.success)
        loser = next(r for r in results if not r.success)
        assert winner.new_balance == 2
        assert loser.message == "Insufficient credits. You have 2 credits but need 3."
        assert _balance(session_factory, subscription.id) == 2

    def test_rollback_undoes_deduction(self, db_session, session_factory, funded_client):
        client, subscription = funded_client(5)

        CreditLedger(db_session).check_and_deduct(client.id, 4)
        db_session.rollback()

        assert _balance(session_factory, subscription.id) == 5
        assert db_session.query(CreditLedgerEntry).count() == 0


# =============================================================================
# refund / record_grant
# =============================================================================

class TestRefund:

    def test_refund_returns_to_charged_subscription(self, db_session, funded_client):
        client, subscription = funded_client(5)
        ledger = CreditLedger(db_session)
        ledger.check_and_deduct(client.id, 3, request_id="req-1")

        result = ledger.refund(client.id, 3, memo="Refund", request_id="req-1")
        db_session.commit()

        assert result.success is True
        assert result.new_balance == 5
        assert result.subscription_id == subscription.id
        entries = db_session.query(CreditLedgerEntry).order_by(CreditLedgerEntry.created_at).all()
        assert [(e.entry_type, e.amount) for e in entries] == [
            (LedgerEntryType.DEDUCTION, -3),
            (LedgerEntryType.REFUND, 3),
        ]

    def test_refund_falls_back_to_current_subscription(
        self, db_session, make_user, make_package, make_subscription
    ):
        client = make_user()
        old = make_subscription(client, make_package(), remaining_credits=5)
        ledger = CreditLedger(db_session)
        ledger.check_and_deduct(client.id, 2, request_id="req-1")
        db_session.commit()
        old.cancel()
        db_session.commit()
        current = make_subscription(client, make_package(), remaining_credits=1)

        result = ledger.refund(client.id, 2, request_id="req-1")

        assert result.subscription_id == current.id
        assert result.new_balance == 3

    def test_refund_without_live_subscription(self, db_session, make_user):
        result = CreditLedger(db_session).refund(make_user().id, 2)
        assert result.success is False
        assert result.reason == REASON_NO_SUBSCRIPTION

    def test_record_grant(self, db_session, funded_client):
        client, subscription = funded_client(7)

        entry = CreditLedger(db_session).record_grant(subscription, memo="Registration grant")

        assert entry.entry_type == LedgerEntryType.GRANT
        assert entry.amount == 7
        assert entry.balance_after == 7
        assert entry.user_id == client.id


# =============================================================================
# Reads
# =============================================================================

class TestReads:

    def test_check_credits(self, db_session, funded_client):
        client, _ = funded_client(2)
        ledger = CreditLedger(db_session)

        assert ledger.check_credits(client.id, 2).allowed is True
        denied = ledger.check_credits(client.id, 3)
        assert denied.allowed is False
        assert denied.reason == REASON_INSUFFICIENT_CREDITS
        assert denied.remaining_credits == 2

    def test_get_balance(self, db_session, funded_client, make_user):
        client, subscription = funded_client(4)
        ledger = CreditLedger(db_session)

        balance = ledger.get_balance(client.id)

        assert balance["remaining_credits"] == 4
        assert balance["subscription"]["id"] == subscription.id
        assert ledger.get_balance(make_user().id) == {"remaining_credits": 0, "subscription": None}

    def test_expiry_warning_window(self, db_session, make_user, make_package, make_subscription):
        client = make_user()
        make_subscription(client, make_package(), end_date=datetime.now(timezone.utc) + timedelta(days=3, hours=1))

        expiry = CreditLedger(db_session).check_subscription_expiry(client.id)

        assert expiry == {"is_expiring": True, "days_remaining": 4}

    def test_far_expiry_not_flagged(self, db_session, funded_client):
        client, _ = funded_client(1)
        expiry = CreditLedger(db_session).check_subscription_expiry(client.id)
        assert expiry["is_expiring"] is False

    def test_history_newest_first(self, db_session, funded_client):
        client, _ = funded_client(5)
        ledger = CreditLedger(db_session)
        ledger.check_and_deduct(client.id, 1, memo="first")
        ledger.check_and_deduct(client.id, 1, memo="second")

        assert [e.memo for e in ledger.history(client.id)] == ["second", "first"]
