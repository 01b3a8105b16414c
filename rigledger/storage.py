"""
In-memory stores backing the rig ledger.

Every read returns a deep copy of the stored record and every write replaces
the whole record, so callers work on snapshots and never alias stored state.
Mutations on one account are serialised through ``AccountLocks``.
"""

import itertools
import threading
from contextlib import ExitStack, contextmanager
from typing import Iterator, Optional, Protocol

from .models import (
    Account,
    ActivityLogEntry,
    ActivityType,
    LedgerSettings,
    Transaction,
)


class AccountStore(Protocol):
    def get(self, username: str) -> Optional[Account]: ...
    def put(self, account: Account) -> None: ...
    def delete(self, username: str) -> None: ...
    def find_by_id(self, account_id: int) -> Optional[Account]: ...
    def all(self) -> list[Account]: ...
    def retired_ids(self) -> set[int]: ...


class TransactionStore(Protocol):
    def next_id(self) -> int: ...
    def append(self, transaction: Transaction) -> None: ...
    def find(self, transaction_id: int) -> Optional[Transaction]: ...
    def update(self, transaction_id: int, fields: dict) -> Optional[Transaction]: ...
    def all(self) -> list[Transaction]: ...


class InMemoryAccountStore:
    def __init__(self):
        self._accounts: dict[str, Account] = {}
        self._retired: set[int] = set()
        self._guard = threading.Lock()

    def get(self, username: str) -> Optional[Account]:
        with self._guard:
            account = self._accounts.get(username)
            return account.model_copy(deep=True) if account else None

    def put(self, account: Account) -> None:
        with self._guard:
            self._accounts[account.username] = account.model_copy(deep=True)

    def delete(self, username: str) -> None:
        with self._guard:
            account = self._accounts.pop(username, None)
            if account is not None:
                self._retired.add(account.id)

    def find_by_id(self, account_id: int) -> Optional[Account]:
        # ids are expected to be unique; on a clash the earliest stored account wins
        with self._guard:
            for account in self._accounts.values():
                if account.id == account_id:
                    return account.model_copy(deep=True)
        return None

    def all(self) -> list[Account]:
        with self._guard:
            return [a.model_copy(deep=True) for a in self._accounts.values()]

    def retired_ids(self) -> set[int]:
        """Referral codes of deleted accounts. They are never handed out again."""
        with self._guard:
            return set(self._retired)


class InMemoryTransactionStore:
    def __init__(self, start: int = 1):
        self._transactions: dict[int, Transaction] = {}
        self._guard = threading.Lock()
        self._ids = itertools.count(start)
        self._id_lock = threading.Lock()

    def next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def append(self, transaction: Transaction) -> None:
        with self._guard:
            if transaction.id in self._transactions:
                raise ValueError(f"Transaction {transaction.id} already recorded")
            self._transactions[transaction.id] = transaction.model_copy(deep=True)

    def find(self, transaction_id: int) -> Optional[Transaction]:
        with self._guard:
            tx = self._transactions.get(transaction_id)
            return tx.model_copy(deep=True) if tx else None

    def update(self, transaction_id: int, fields: dict) -> Optional[Transaction]:
        with self._guard:
            tx = self._transactions.get(transaction_id)
            if tx is None:
                return None
            updated = Transaction.model_validate({**tx.model_dump(), **fields})
            self._transactions[transaction_id] = updated
            return updated.model_copy(deep=True)

    def all(self) -> list[Transaction]:
        with self._guard:
            return [t.model_copy(deep=True) for t in self._transactions.values()]


class SettingsStore:
    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or LedgerSettings()
        self._guard = threading.Lock()

    def get(self) -> LedgerSettings:
        with self._guard:
            return self._settings.model_copy()

    def update(self, **fields) -> LedgerSettings:
        with self._guard:
            self._settings = LedgerSettings.model_validate({**self._settings.model_dump(), **fields})
            return self._settings.model_copy()


class ActivityLog:
    def __init__(self):
        self._entries: list[ActivityLogEntry] = []
        self._ids = itertools.count(1)
        self._guard = threading.Lock()

    def add(self, type: ActivityType, action: str, user: Optional[str] = None, details: str = "") -> ActivityLogEntry:
        with self._guard:
            entry = ActivityLogEntry(id=next(self._ids), type=type, user=user, action=action, details=details)
            self._entries.append(entry)
            return entry

    def entries(self, limit: Optional[int] = None) -> list[ActivityLogEntry]:
        with self._guard:
            newest_first = list(reversed(self._entries))
        return newest_first[:limit] if limit is not None else newest_first

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()


class AccountLocks:
    """Per-username re-entrant locks.

    ``hold`` acquires several accounts' locks in sorted username order so two
    operations touching the same pair of accounts can never deadlock.
    """

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, username: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(username)
            if lock is None:
                lock = self._locks[username] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *usernames: str) -> Iterator[None]:
        with ExitStack() as stack:
            for username in sorted(set(usernames)):
                stack.enter_context(self._lock_for(username))
            yield

    def discard(self, username: str) -> None:
        """Forget the lock of a deleted account."""
        with self._guard:
            self._locks.pop(username, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class InMemoryStorage:
    def __init__(self, settings: Optional[LedgerSettings] = None):
        self.accounts: AccountStore = InMemoryAccountStore()
        self.transactions: TransactionStore = InMemoryTransactionStore()
        self.settings = SettingsStore(settings)
        self.activity = ActivityLog()
        self.locks = AccountLocks()
