from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    BANNED = "banned"


class RigStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    PURCHASE = "purchase"
    REFERRAL_BONUS = "referral_bonus"
    SIGNUP_BONUS = "signup_bonus"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ActivityType(str, Enum):
    REGISTER = "register"
    TRANSACTION = "transaction"
    ADMIN_ACTION = "admin_action"
    PURCHASE = "purchase"
    SYSTEM = "system"


BONUS_TYPES = (TransactionType.REFERRAL_BONUS, TransactionType.SIGNUP_BONUS)


class Rig(BaseModel):
    name: str
    speed: Decimal = Field(default=Decimal("0"), ge=0)
    status: RigStatus = RigStatus.ACTIVE
    type: str = "GPU"
    temp: Optional[float] = None
    power: Optional[float] = None
    fan: Optional[float] = None
    id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status != RigStatus.PAUSED


class Account(BaseModel):
    username: str
    id: int
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    hashrate: Decimal = Field(default=Decimal("0"), ge=0)
    status: AccountStatus = AccountStatus.PENDING
    referrer_id: Optional[int] = None
    rigs: list[Rig] = Field(default_factory=list)
    name: str = ""
    bank: str = ""
    bank_account: str = ""
    referral_bonus_applied: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(validate_assignment=True)

    def find_rig(self, rig_name: str) -> Optional[int]:
        for index, rig in enumerate(self.rigs):
            if rig.name == rig_name:
                return index
        return None


class Transaction(BaseModel):
    id: int
    user: str
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    status: TransactionStatus
    fee: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    method: Optional[str] = None
    bank: Optional[str] = None
    bank_account: Optional[str] = None
    item: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    def can_settle(self) -> bool:
        return self.status == TransactionStatus.PENDING


class ShopItem(BaseModel):
    id: str
    name: str
    price: Decimal = Field(..., gt=0)
    speed: Decimal = Field(..., ge=0)
    tier: str = ""
    icon: str = ""
    tag: str = ""


class LedgerSettings(BaseModel):
    deposit_fee_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    withdraw_fee_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    signup_bonus: Decimal = Field(default=Decimal("100"), ge=0)
    referral_bonus: Decimal = Field(default=Decimal("50"), ge=0)

    def fee_percent_for(self, tx_type: TransactionType) -> Decimal:
        if tx_type == TransactionType.DEPOSIT:
            return self.deposit_fee_percent
        if tx_type == TransactionType.WITHDRAW:
            return self.withdraw_fee_percent
        return Decimal("0")


class ActivityLogEntry(BaseModel):
    id: int
    type: ActivityType
    user: Optional[str] = None
    action: str
    details: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    user: str
    message: str
    level: str = "info"
    created_at: datetime = Field(default_factory=utcnow)


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    name: str = ""
    bank: str = ""
    bank_account: str = ""
    referrer_id: Optional[int] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "username": "satoshi",
            "name": "Satoshi N.",
            "bank": "KBank",
            "bank_account": "1234567890",
            "referrer_id": 482913
        }
    })


class DepositRequest(BaseModel):
    username: str
    amount: Decimal
    method: str = "qr_auto"


class WithdrawRequest(BaseModel):
    username: str
    amount: Decimal
    bank: str = ""
    bank_account: str = ""


class BuyRequest(BaseModel):
    username: str
    item_id: str


class UpdateStatusRequest(BaseModel):
    status: AccountStatus


class AdjustBalanceRequest(BaseModel):
    amount: Decimal


class RigNameRequest(BaseModel):
    rig_name: str


class ToggleRigResult(BaseModel):
    success: bool
    status: Optional[RigStatus] = None
    error: Optional[str] = None


class PurchaseResponse(BaseModel):
    account: Account
    rig: Rig
    transaction: Transaction
    message: str


class TransactionResponse(BaseModel):
    transaction: Transaction
    account: Account
    message: str


class StatusUpdateResponse(BaseModel):
    account: Account
    bonuses: list[Transaction] = Field(default_factory=list)
    message: str
