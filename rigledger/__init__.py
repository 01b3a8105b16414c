"""
Account Ledger & Rig-State Engine for the idle mining game

This package provides:
- Per-account serialised balance mutations
- Deposit / withdraw lifecycle: pending → approved / rejected, with withdraw holds
- One-time referral and signup bonuses on first approval
- Hashrate derived from the active rigs of an account
- Atomic shop purchases turning catalog items into rigs
"""

from .models import (
    Account,
    AccountStatus,
    Rig,
    RigStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .accounts import AccountService
from .purchase import PurchaseService
from .rigs import RigService, recompute_hashrate
from .service import LedgerService

__all__ = [
    "Account",
    "AccountStatus",
    "Rig",
    "RigStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "AccountService",
    "LedgerService",
    "PurchaseService",
    "RigService",
    "recompute_hashrate",
]
