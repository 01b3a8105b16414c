"""
Environment configuration for the rig ledger.

Values are read once from the process environment (and a local ``.env`` file
if present) and cached. The runtime ``LedgerSettings`` held by the storage
layer are seeded from here and may be edited afterwards by an administrator.
"""

import logging
import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .models import AccountStatus, LedgerSettings


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default) or default)


@lru_cache
def get_settings() -> "Settings":
    return Settings()


class Settings:
    def __init__(self):
        load_dotenv(Path.cwd() / ".env")

        self.deposit_fee_percent = _decimal_env("RIGLEDGER_DEPOSIT_FEE_PERCENT", "0")
        self.withdraw_fee_percent = _decimal_env("RIGLEDGER_WITHDRAW_FEE_PERCENT", "0")
        self.signup_bonus = _decimal_env("RIGLEDGER_SIGNUP_BONUS", "100")
        self.referral_bonus = _decimal_env("RIGLEDGER_REFERRAL_BONUS", "50")
        self.default_status = AccountStatus(os.getenv("RIGLEDGER_DEFAULT_STATUS", "pending"))
        self.log_level = os.getenv("RIGLEDGER_LOG_LEVEL", "INFO").upper()
        catalog_file = os.getenv("RIGLEDGER_CATALOG_FILE", "")
        self.catalog_file: Optional[Path] = Path(catalog_file) if catalog_file else None

    def ledger_settings(self) -> LedgerSettings:
        return LedgerSettings(
            deposit_fee_percent=self.deposit_fee_percent,
            withdraw_fee_percent=self.withdraw_fee_percent,
            signup_bonus=self.signup_bonus,
            referral_bonus=self.referral_bonus,
        )


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
