import logging
import random
import re
import threading
from decimal import Decimal
from typing import Optional

from .errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    InvalidReferralError,
)
from .models import (
    Account,
    AccountStatus,
    ActivityType,
    RegisterRequest,
    StatusUpdateResponse,
)
from .referral import ReferralCascade
from .service import LedgerService

logger = logging.getLogger("account")

REFERRAL_CODE_MIN = 100000
REFERRAL_CODE_MAX = 999999


class AccountService:
    def __init__(self, ledger: LedgerService, default_status: AccountStatus = AccountStatus.PENDING,
                 rng: Optional[random.Random] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.referrals = ReferralCascade(ledger)
        self.default_status = default_status
        self._rng = rng or random.Random()
        self._registration = threading.Lock()

    def register(self, request: RegisterRequest) -> Account:
        # usernames and referral codes are both unique, so registrations run one at a time
        with self._registration, self.storage.locks.hold(request.username):
            if self.storage.accounts.get(request.username) is not None:
                raise DuplicateAccountError(f"Username {request.username} already exists")
            if request.referrer_id is not None and self.storage.accounts.find_by_id(request.referrer_id) is None:
                raise InvalidReferralError(f"Referral code {request.referrer_id} does not exist")

            account = Account(
                username=request.username,
                id=self._allocate_id(),
                status=self.default_status,
                referrer_id=request.referrer_id,
                name=request.name,
                bank=request.bank,
                bank_account=request.bank_account,
            )
            self.storage.accounts.put(account)

        self.storage.activity.add(
            ActivityType.REGISTER, "New User Registration", user=account.username,
            details=f"Referrer: {request.referrer_id or 'None'}",
        )
        logger.info("Registered %s with referral code %s", account.username, account.id)
        return account

    def check_referral(self, code: str) -> Optional[Account]:
        cleaned = re.sub(r"x", "", str(code), count=1, flags=re.IGNORECASE).strip()
        if not cleaned.isdigit():
            return None
        return self.storage.accounts.find_by_id(int(cleaned))

    def get_account(self, username: str) -> Account:
        account = self.storage.accounts.get(username)
        if account is None:
            raise AccountNotFoundError(f"Account {username} not found")
        return account

    def list_accounts(self) -> list[Account]:
        return self.storage.accounts.all()

    def list_referrals(self, username: str) -> list[Account]:
        account = self.get_account(username)
        return [a for a in self.storage.accounts.all() if a.referrer_id == account.id]

    def update_status(self, username: str, status: AccountStatus) -> StatusUpdateResponse:
        referrer = self.referrals.resolve_referrer(self.get_account(username))
        involved = [username] + ([referrer.username] if referrer else [])

        with self.storage.locks.hold(*involved):
            before = self.get_account(username)
            after = before.model_copy(deep=True)
            after.status = status
            fire = self.referrals.should_fire(before, status)
            if fire:
                after.referral_bonus_applied = True
            self.storage.accounts.put(after)
            # only the referrer locked above may be paid
            if referrer is not None:
                current = self.storage.accounts.get(referrer.username)
                referrer = current if current is not None and current.id == referrer.id else None
            bonuses = self.referrals.pay(after, referrer) if fire else []
            after = self.get_account(username)

        self.storage.activity.add(
            ActivityType.ADMIN_ACTION, "Status Update", user=username,
            details=f"Status: {before.status.value} -> {status.value}",
        )
        logger.info("Status of %s changed %s -> %s", username, before.status.value, status.value)
        return StatusUpdateResponse(account=after, bonuses=bonuses, message=f"Status set to {status.value}")

    def adjust_balance(self, username: str, delta: Decimal) -> Account:
        delta = Decimal(delta)
        with self.storage.locks.hold(username):
            account = self.get_account(username)
            if account.balance + delta < 0:
                raise InsufficientFundsError(
                    f"Adjustment {delta} would overdraw {username} (balance {account.balance})"
                )
            account.balance = account.balance + delta
            self.storage.accounts.put(account)

        self.storage.activity.add(
            ActivityType.ADMIN_ACTION, "Balance Adjustment", user=username, details=f"Delta: {delta}",
        )
        logger.info("Adjusted balance of %s by %s", username, delta)
        return account

    def delete_account(self, username: str) -> None:
        with self.storage.locks.hold(username):
            self.get_account(username)
            self.storage.accounts.delete(username)
            self.storage.locks.discard(username)
        self.storage.activity.add(ActivityType.ADMIN_ACTION, "Delete User", user=username)
        logger.info("Deleted account %s", username)

    def _allocate_id(self) -> int:
        taken = {a.id for a in self.storage.accounts.all()} | self.storage.accounts.retired_ids()
        if len(taken) >= REFERRAL_CODE_MAX - REFERRAL_CODE_MIN + 1:
            raise RuntimeError("Referral code space exhausted")
        while True:
            candidate = self._rng.randint(REFERRAL_CODE_MIN, REFERRAL_CODE_MAX)
            if candidate not in taken:
                return candidate
