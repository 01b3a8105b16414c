"""
Referral cascade.

When a referred account is approved for the first time the referrer receives
the referral bonus and the new account receives the signup bonus. The
``referral_bonus_applied`` marker on the account guarantees the payout is
attempted at most once, no matter how often the status is set to approved.
"""

import logging
from decimal import Decimal
from typing import Optional

from .models import Account, AccountStatus, Transaction, TransactionType
from .service import LedgerService

logger = logging.getLogger("referral")


class ReferralCascade:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage

    def resolve_referrer(self, account: Account) -> Optional[Account]:
        if account.referrer_id is None or account.referrer_id == account.id:
            return None
        referrer = self.storage.accounts.find_by_id(account.referrer_id)
        if referrer is None or referrer.username == account.username:
            return None
        return referrer

    def should_fire(self, before: Account, new_status: AccountStatus) -> bool:
        return (
            new_status == AccountStatus.APPROVED
            and before.status != AccountStatus.APPROVED
            and not before.referral_bonus_applied
        )

    def pay(self, account: Account, referrer: Optional[Account]) -> list[Transaction]:
        """Credit both sides of the referral.

        ``referrer`` is what ``resolve_referrer`` returned for ``account``. The
        caller must hold the locks of both accounts and must already have stored
        the account with ``referral_bonus_applied`` set.
        """
        if referrer is None:
            if account.referrer_id is not None:
                logger.warning(
                    "Referrer %s of %s does not resolve, no referral bonus issued",
                    account.referrer_id, account.username,
                )
            return []

        settings = self.storage.settings.get()
        bonuses = []
        if settings.referral_bonus > Decimal("0"):
            bonuses.append(self.ledger.create_settled_bonus(
                referrer.username, settings.referral_bonus, TransactionType.REFERRAL_BONUS,
            ).transaction)
        if settings.signup_bonus > Decimal("0"):
            bonuses.append(self.ledger.create_settled_bonus(
                account.username, settings.signup_bonus, TransactionType.SIGNUP_BONUS,
            ).transaction)

        logger.info(
            "Referral cascade for %s paid %d bonus(es), referrer=%s",
            account.username, len(bonuses), referrer.username,
        )
        return bonuses
