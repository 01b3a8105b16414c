import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional

from .errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    TransactionNotFoundError,
)
from .events import EventSink, NullEventSink
from .models import (
    BONUS_TYPES,
    Account,
    ActivityType,
    Notification,
    Transaction,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
)
from .storage import InMemoryStorage

logger = logging.getLogger("ledger")

CENT = Decimal("0.01")


def compute_fee(amount: Decimal, fee_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Return ``(fee, net_amount)`` for a gross amount, rounded to the cent."""
    fee = (amount * fee_percent / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    return fee, amount - fee


def _require_positive(amount: Decimal) -> Decimal:
    amount = Decimal(amount)
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
    return amount


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, events: Optional[EventSink] = None):
        self.storage = storage or InMemoryStorage()
        self.events = events or NullEventSink()

    def create_deposit(self, user: str, amount: Decimal, method: str = "qr_auto") -> TransactionResponse:
        amount = _require_positive(amount)
        with self.storage.locks.hold(user):
            account = self._load(user)
            tx = self._new_transaction(
                user, TransactionType.DEPOSIT, amount, TransactionStatus.PENDING, method=method,
            )
            self.storage.transactions.append(tx)

        self.storage.activity.add(
            ActivityType.TRANSACTION, "Deposit Request", user=user,
            details=f"Amount: {amount}, Method: {method}",
        )
        logger.info("Deposit %s requested by %s amount=%s", tx.id, user, amount)
        return TransactionResponse(transaction=tx, account=account, message="Deposit request created")

    def create_withdraw(self, user: str, amount: Decimal, bank: str = "", bank_account: str = "") -> TransactionResponse:
        amount = _require_positive(amount)
        with self.storage.locks.hold(user):
            account = self._load(user)
            if account.balance < amount:
                raise InsufficientFundsError(
                    f"Insufficient balance for {user}: {account.balance} < {amount}"
                )
            held = account.model_copy(deep=True)
            held.balance = account.balance - amount
            tx = self._new_transaction(
                user, TransactionType.WITHDRAW, amount, TransactionStatus.PENDING,
                method="bank_transfer", bank=bank, bank_account=bank_account,
            )
            with self._committing(account, held):
                self.storage.transactions.append(tx)

        self.storage.activity.add(
            ActivityType.TRANSACTION, "Withdraw Request", user=user,
            details=f"Amount: {amount}, Bank: {bank}, Acc: {bank_account}",
        )
        logger.info("Withdraw %s requested by %s amount=%s, funds held", tx.id, user, amount)
        return TransactionResponse(transaction=tx, account=held, message="Withdraw request created, funds held")

    def approve(self, transaction_id: int) -> TransactionResponse:
        tx = self._get_pending(transaction_id)
        with self.storage.locks.hold(tx.user):
            tx = self._get_pending(transaction_id)
            account = self._load(tx.user)
            settings = self.storage.settings.get()
            fee, net_amount = compute_fee(tx.amount, settings.fee_percent_for(tx.type))

            updated = account.model_copy(deep=True)
            if tx.type == TransactionType.DEPOSIT:
                updated.balance = account.balance + net_amount
            # withdrawals were debited when requested; net_amount is what the user receives

            with self._committing(account, updated):
                tx = self.storage.transactions.update(transaction_id, {
                    "status": TransactionStatus.APPROVED,
                    "fee": fee,
                    "net_amount": net_amount,
                    "processed_at": datetime.now(timezone.utc),
                })

        self._record_decision(tx)
        self.events.publish(Notification(
            user=tx.user, level="success",
            message=f"{tx.type.value.capitalize()} of {tx.amount} approved (net {net_amount})",
        ))
        logger.info("Approved %s %s for %s fee=%s net=%s", tx.type.value, tx.id, tx.user, fee, net_amount)
        return TransactionResponse(transaction=tx, account=updated, message="Transaction approved")

    def reject(self, transaction_id: int) -> TransactionResponse:
        tx = self._get_pending(transaction_id)
        with self.storage.locks.hold(tx.user):
            tx = self._get_pending(transaction_id)
            account = self._load(tx.user)

            updated = account.model_copy(deep=True)
            if tx.type == TransactionType.WITHDRAW:
                updated.balance = account.balance + tx.amount

            with self._committing(account, updated):
                tx = self.storage.transactions.update(transaction_id, {
                    "status": TransactionStatus.REJECTED,
                    "processed_at": datetime.now(timezone.utc),
                })

        self._record_decision(tx)
        self.events.publish(Notification(
            user=tx.user, level="error",
            message=f"{tx.type.value.capitalize()} of {tx.amount} was rejected",
        ))
        logger.info("Rejected %s %s for %s", tx.type.value, tx.id, tx.user)
        return TransactionResponse(transaction=tx, account=updated, message="Transaction rejected")

    def create_settled_bonus(self, user: str, amount: Decimal, kind: TransactionType) -> TransactionResponse:
        if kind not in BONUS_TYPES:
            raise ValueError(f"{kind} is not a bonus transaction type")
        amount = _require_positive(amount)
        with self.storage.locks.hold(user):
            account = self._load(user)
            updated = account.model_copy(deep=True)
            updated.balance = account.balance + amount
            tx = self._new_transaction(
                user, kind, amount, TransactionStatus.APPROVED,
                method=kind.value, fee=Decimal("0"), net_amount=amount,
                processed_at=datetime.now(timezone.utc),
            )
            with self._committing(account, updated):
                self.storage.transactions.append(tx)

        logger.info("Credited %s %s to %s", kind.value, amount, user)
        return TransactionResponse(transaction=tx, account=updated, message="Bonus credited")

    def record_purchase(self, user: str, amount: Decimal, item_name: str) -> Transaction:
        """Build a settled purchase transaction; the caller appends and commits it."""
        return self._new_transaction(
            user, TransactionType.PURCHASE, _require_positive(amount), TransactionStatus.COMPLETED,
            item=item_name, processed_at=datetime.now(timezone.utc),
        )

    def get_transaction(self, transaction_id: int) -> Transaction:
        tx = self.storage.transactions.find(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return tx

    def list_transactions(self, user: Optional[str] = None) -> list[Transaction]:
        transactions = self.storage.transactions.all()
        if user is not None:
            transactions = [t for t in transactions if t.user == user]
        return transactions

    def commit(self, before: Account, after: Account, transaction: Transaction) -> None:
        """Write ``after`` and append ``transaction`` as one unit.

        Must be called while holding the account's lock.
        """
        with self._committing(before, after):
            self.storage.transactions.append(transaction)

    @contextmanager
    def _committing(self, before: Account, after: Account) -> Iterator[None]:
        self.storage.accounts.put(after)
        try:
            yield
        except Exception:
            logger.exception("Rolling back account %s", before.username)
            self.storage.accounts.put(before)
            raise

    def _new_transaction(self, user: str, tx_type: TransactionType, amount: Decimal,
                         status: TransactionStatus, **fields) -> Transaction:
        return Transaction(
            id=self.storage.transactions.next_id(),
            user=user, type=tx_type, amount=amount, status=status, **fields,
        )

    def _load(self, username: str) -> Account:
        account = self.storage.accounts.get(username)
        if account is None:
            raise AccountNotFoundError(f"Account {username} not found")
        return account

    def _get_pending(self, transaction_id: int) -> Transaction:
        tx = self.get_transaction(transaction_id)
        if not tx.can_settle():
            raise InvalidStateTransitionError(
                f"Cannot settle transaction {transaction_id} in {tx.status.value} state"
            )
        return tx

    def _record_decision(self, tx: Transaction) -> None:
        self.storage.activity.add(
            ActivityType.ADMIN_ACTION, "Transaction Update", user=tx.user,
            details=f"ID: {tx.id}, Status: {tx.status.value}, User: {tx.user}",
        )
