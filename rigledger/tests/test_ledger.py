"""
Unit Tests for the Ledger Service

Tests cover:
1. Deposit flow and fees
2. Withdraw holds, approval and refunds
3. Single settlement of pending transactions
4. Settled bonuses
5. Commit rollback and concurrent withdrawals
"""

import threading
from decimal import Decimal

import pytest

from rigledger.errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    TransactionNotFoundError,
)
from rigledger.events import InMemoryEventSink
from rigledger.models import (
    Account,
    ActivityType,
    LedgerSettings,
    Notification,
    TransactionStatus,
    TransactionType,
)
from rigledger.service import LedgerService, compute_fee
from rigledger.storage import InMemoryStorage


USERNAME = "miner01"


def make_service(balance="0", **settings) -> LedgerService:
    storage = InMemoryStorage(LedgerSettings(**settings))
    storage.accounts.put(Account(username=USERNAME, id=123456, balance=Decimal(balance)))
    return LedgerService(storage, events=InMemoryEventSink())


def balance_of(service: LedgerService, username: str = USERNAME) -> Decimal:
    return service.storage.accounts.get(username).balance


class TestDepositFlow:
    """Tests for the deposit flow."""

    def test_deposit_is_pending_and_does_not_touch_balance(self):
        service = make_service()

        response = service.create_deposit(USERNAME, Decimal("200"))

        assert response.transaction.status == TransactionStatus.PENDING
        assert response.transaction.type == TransactionType.DEPOSIT
        assert response.transaction.method == "qr_auto"
        assert response.transaction.fee is None
        assert balance_of(service) == Decimal("0")

    def test_approve_deposit_credits_net_of_fee(self):
        """Depositing 100 with a 5% fee credits 95."""
        service = make_service(deposit_fee_percent=Decimal("5"))
        tx = service.create_deposit(USERNAME, Decimal("100")).transaction

        response = service.approve(tx.id)

        assert response.transaction.status == TransactionStatus.APPROVED
        assert response.transaction.fee == Decimal("5")
        assert response.transaction.net_amount == Decimal("95")
        assert balance_of(service) == Decimal("95")

    def test_reject_deposit_leaves_balance(self):
        service = make_service(balance="10")
        tx = service.create_deposit(USERNAME, Decimal("100")).transaction

        response = service.reject(tx.id)

        assert response.transaction.status == TransactionStatus.REJECTED
        assert balance_of(service) == Decimal("10")

    def test_fee_uses_setting_for_transaction_type(self):
        service = make_service(deposit_fee_percent=Decimal("0"), withdraw_fee_percent=Decimal("10"))
        tx = service.create_deposit(USERNAME, Decimal("50")).transaction

        response = service.approve(tx.id)

        assert response.transaction.fee == Decimal("0")
        assert balance_of(service) == Decimal("50")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_deposit_rejected(self, amount):
        service = make_service()

        with pytest.raises(InvalidAmountError):
            service.create_deposit(USERNAME, amount)
        assert service.list_transactions() == []

    def test_deposit_for_unknown_account(self):
        service = make_service()

        with pytest.raises(AccountNotFoundError):
            service.create_deposit("ghost", Decimal("10"))


class TestWithdrawFlow:
    """Tests for withdraw holds and settlement."""

    def test_withdraw_holds_funds_immediately(self):
        service = make_service(balance="300")

        response = service.create_withdraw(USERNAME, Decimal("120"), bank="KBank", bank_account="111")

        assert response.transaction.status == TransactionStatus.PENDING
        assert response.transaction.method == "bank_transfer"
        assert response.account.balance == Decimal("180")
        assert balance_of(service) == Decimal("180")

    def test_approve_withdraw_does_not_debit_again(self):
        service = make_service(balance="300", withdraw_fee_percent=Decimal("2.5"))
        tx = service.create_withdraw(USERNAME, Decimal("100")).transaction

        response = service.approve(tx.id)

        assert response.transaction.fee == Decimal("2.50")
        assert response.transaction.net_amount == Decimal("97.50")
        assert balance_of(service) == Decimal("200")

    def test_reject_withdraw_refunds_full_amount(self):
        service = make_service(balance="300", withdraw_fee_percent=Decimal("10"))
        tx = service.create_withdraw(USERNAME, Decimal("100")).transaction

        service.reject(tx.id)

        assert balance_of(service) == Decimal("300")

    def test_withdraw_more_than_balance_fails(self):
        service = make_service(balance="50")

        with pytest.raises(InsufficientFundsError):
            service.create_withdraw(USERNAME, Decimal("50.01"))

        assert balance_of(service) == Decimal("50")
        assert service.list_transactions() == []

    def test_withdraw_entire_balance(self):
        service = make_service(balance="50")

        service.create_withdraw(USERNAME, Decimal("50"))

        assert balance_of(service) == Decimal("0")


class TestSingleSettlement:
    """A pending transaction settles exactly once."""

    def test_double_approve_fails_without_double_credit(self):
        service = make_service()
        tx = service.create_deposit(USERNAME, Decimal("100")).transaction
        service.approve(tx.id)

        with pytest.raises(InvalidStateTransitionError):
            service.approve(tx.id)

        assert balance_of(service) == Decimal("100")

    def test_cannot_reject_approved(self):
        service = make_service(balance="100")
        tx = service.create_withdraw(USERNAME, Decimal("40")).transaction
        service.approve(tx.id)

        with pytest.raises(InvalidStateTransitionError):
            service.reject(tx.id)

        assert balance_of(service) == Decimal("60")

    def test_cannot_approve_rejected(self):
        service = make_service()
        tx = service.create_deposit(USERNAME, Decimal("100")).transaction
        service.reject(tx.id)

        with pytest.raises(InvalidStateTransitionError):
            service.approve(tx.id)

        assert balance_of(service) == Decimal("0")

    def test_bonus_is_not_settleable(self):
        service = make_service()
        tx = service.create_settled_bonus(USERNAME, Decimal("100"), TransactionType.SIGNUP_BONUS).transaction

        with pytest.raises(InvalidStateTransitionError):
            service.approve(tx.id)

    def test_unknown_transaction(self):
        service = make_service()

        with pytest.raises(TransactionNotFoundError):
            service.approve(999)
        with pytest.raises(TransactionNotFoundError):
            service.get_transaction(999)


class TestSettledBonus:
    """Tests for immediately settled bonuses."""

    def test_bonus_credits_immediately(self):
        service = make_service(balance="5")

        response = service.create_settled_bonus(USERNAME, Decimal("50"), TransactionType.REFERRAL_BONUS)

        assert response.transaction.status == TransactionStatus.APPROVED
        assert response.transaction.net_amount == Decimal("50")
        assert balance_of(service) == Decimal("55")

    def test_bonus_kind_must_be_bonus(self):
        service = make_service()

        with pytest.raises(ValueError):
            service.create_settled_bonus(USERNAME, Decimal("50"), TransactionType.DEPOSIT)


class TestLedgerRecords:
    """Tests for ids, history, notifications and the activity log."""

    def test_transaction_ids_are_unique_and_increasing(self):
        service = make_service(balance="100")
        ids = [
            service.create_deposit(USERNAME, Decimal("1")).transaction.id,
            service.create_withdraw(USERNAME, Decimal("1")).transaction.id,
            service.create_settled_bonus(USERNAME, Decimal("1"), TransactionType.SIGNUP_BONUS).transaction.id,
        ]

        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    def test_list_transactions_filters_by_user(self):
        service = make_service()
        service.storage.accounts.put(Account(username="other", id=654321))
        service.create_deposit(USERNAME, Decimal("10"))
        service.create_deposit("other", Decimal("20"))

        assert [t.user for t in service.list_transactions(USERNAME)] == [USERNAME]
        assert len(service.list_transactions()) == 2

    def test_decisions_notify_user(self):
        service = make_service()
        approved = service.create_deposit(USERNAME, Decimal("10")).transaction
        rejected = service.create_deposit(USERNAME, Decimal("20")).transaction
        service.approve(approved.id)
        service.reject(rejected.id)

        levels = [n.level for n in service.events.for_user(USERNAME)]
        assert levels == ["error", "success"]

    def test_requests_are_logged(self):
        service = make_service(balance="100")
        service.create_deposit(USERNAME, Decimal("10"))
        service.create_withdraw(USERNAME, Decimal("10"))

        actions = [e.action for e in service.storage.activity.entries()]
        assert actions == ["Withdraw Request", "Deposit Request"]
        assert all(e.type == ActivityType.TRANSACTION for e in service.storage.activity.entries())

    def test_notification_sink_keeps_only_the_newest(self):
        sink = InMemoryEventSink(max_notifications=3)
        for n in range(5):
            sink.publish(Notification(user=USERNAME, message=f"message {n}"))

        assert [n.message for n in sink.for_user(USERNAME)] == ["message 4", "message 3", "message 2"]


class TestCommitRollback:
    """Balance changes are undone when the transaction cannot be recorded."""

    def test_withdraw_hold_rolled_back_when_append_fails(self, monkeypatch):
        service = make_service(balance="100")

        def failing_append(transaction):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(service.storage.transactions, "append", failing_append)

        with pytest.raises(RuntimeError):
            service.create_withdraw(USERNAME, Decimal("60"))

        assert balance_of(service) == Decimal("100")

    def test_approval_rolled_back_when_update_fails(self, monkeypatch):
        service = make_service()
        tx = service.create_deposit(USERNAME, Decimal("100")).transaction

        def failing_update(transaction_id, fields):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(service.storage.transactions, "update", failing_update)

        with pytest.raises(RuntimeError):
            service.approve(tx.id)

        assert balance_of(service) == Decimal("0")
        assert service.get_transaction(tx.id).status == TransactionStatus.PENDING


class TestConcurrentWithdrawals:
    def test_parallel_withdrawals_never_overdraw(self):
        service = make_service(balance="100")
        results = []

        def withdraw():
            try:
                service.create_withdraw(USERNAME, Decimal("30"))
                results.append("ok")
            except InsufficientFundsError:
                results.append("insufficient")

        threads = [threading.Thread(target=withdraw) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 3
        assert balance_of(service) == Decimal("10")
        assert len(service.list_transactions()) == 3


def test_compute_fee_rounds_to_cents():
    assert compute_fee(Decimal("33.33"), Decimal("3")) == (Decimal("1.00"), Decimal("32.33"))
    assert compute_fee(Decimal("100"), Decimal("0")) == (Decimal("0.00"), Decimal("100.00"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
