"""
Rig aggregation.

An account's hashrate is always the sum of ``speed`` over its rigs that are
not paused. The pure helpers below return updated copies of an account; the
``RigService`` wraps them with loading, locking and persistence.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional

from .errors import AccountNotFoundError
from .models import Account, ActivityType, Rig, RigStatus, ToggleRigResult
from .storage import InMemoryStorage

logger = logging.getLogger("rigs")


def recompute_hashrate(rigs: Iterable[Rig]) -> Decimal:
    return sum((rig.speed for rig in rigs if rig.is_active), Decimal("0"))


def with_rig_added(account: Account, rig: Rig) -> Account:
    updated = account.model_copy(deep=True)
    updated.rigs.append(rig.model_copy())
    updated.hashrate = recompute_hashrate(updated.rigs)
    return updated


def with_rig_removed(account: Account, rig_name: str) -> Optional[Account]:
    index = account.find_rig(rig_name)
    if index is None:
        return None
    updated = account.model_copy(deep=True)
    del updated.rigs[index]
    # the removed rig may already have been paused, so never decrement
    updated.hashrate = recompute_hashrate(updated.rigs)
    return updated


def with_rig_toggled(account: Account, rig_name: str) -> Optional[Account]:
    index = account.find_rig(rig_name)
    if index is None:
        return None
    updated = account.model_copy(deep=True)
    rig = updated.rigs[index]
    new_status = RigStatus.ACTIVE if rig.status == RigStatus.PAUSED else RigStatus.PAUSED
    updated.rigs[index] = rig.model_copy(update={"status": new_status})
    updated.hashrate = recompute_hashrate(updated.rigs)
    return updated


class RigService:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def _load(self, username: str) -> Account:
        account = self.storage.accounts.get(username)
        if account is None:
            raise AccountNotFoundError(f"Account {username} not found")
        return account

    def add_rig(self, username: str, rig: Rig) -> Account:
        with self.storage.locks.hold(username):
            updated = with_rig_added(self._load(username), rig)
            self.storage.accounts.put(updated)
        logger.info("Added rig %r to %s, hashrate=%s", rig.name, username, updated.hashrate)
        return updated

    def remove_rig(self, username: str, rig_name: str) -> bool:
        with self.storage.locks.hold(username):
            updated = with_rig_removed(self._load(username), rig_name)
            if updated is None:
                return False
            self.storage.accounts.put(updated)
        self.storage.activity.add(
            ActivityType.SYSTEM, "delete_rig", user=username,
            details=f"Deleted rig {rig_name} from {username}",
        )
        logger.info("Removed rig %r from %s, hashrate=%s", rig_name, username, updated.hashrate)
        return True

    def toggle_rig(self, username: str, rig_name: str) -> ToggleRigResult:
        with self.storage.locks.hold(username):
            updated = with_rig_toggled(self._load(username), rig_name)
            if updated is None:
                return ToggleRigResult(success=False, error=f"Rig {rig_name} not found")
            self.storage.accounts.put(updated)
        new_status = updated.rigs[updated.find_rig(rig_name)].status
        self.storage.activity.add(
            ActivityType.SYSTEM, "toggle_rig", user=username,
            details=f"Changed rig {rig_name} status to {new_status.value} for {username}",
        )
        return ToggleRigResult(success=True, status=new_status)
