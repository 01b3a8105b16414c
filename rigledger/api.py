from typing import Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .accounts import AccountService
from .catalog import CatalogProvider, StaticCatalog
from .config import get_settings
from .errors import (
    AccountNotFoundError,
    DuplicateAccountError,
    ItemNotFoundError,
    LedgerServiceError,
    TransactionNotFoundError,
)
from .events import InMemoryEventSink
from .models import (
    Account,
    ActivityLogEntry,
    ActivityType,
    AdjustBalanceRequest,
    BuyRequest,
    DepositRequest,
    LedgerSettings,
    Notification,
    PurchaseResponse,
    RegisterRequest,
    RigNameRequest,
    ShopItem,
    StatusUpdateResponse,
    ToggleRigResult,
    Transaction,
    TransactionResponse,
    UpdateStatusRequest,
    WithdrawRequest,
)
from .purchase import PurchaseService
from .rigs import RigService
from .service import LedgerService
from .storage import InMemoryStorage

NOT_FOUND_ERRORS = (AccountNotFoundError, ItemNotFoundError, TransactionNotFoundError)


def _to_http(error: LedgerServiceError) -> HTTPException:
    if isinstance(error, NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, DuplicateAccountError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


def create_app(storage: Optional[InMemoryStorage] = None, catalog: Optional[CatalogProvider] = None,
               root_path: str = "") -> FastAPI:
    settings = get_settings()
    storage = storage or InMemoryStorage(settings.ledger_settings())
    if catalog is None:
        catalog = StaticCatalog.from_file(settings.catalog_file) if settings.catalog_file else StaticCatalog()

    notifications = InMemoryEventSink()
    ledger_service = LedgerService(storage, events=notifications)
    account_service = AccountService(ledger_service, default_status=settings.default_status)
    rig_service = RigService(storage)
    purchase_service = PurchaseService(ledger_service)

    app = FastAPI(
        title="Rig Ledger API",
        description="Account ledger and rig-state engine for the idle mining game",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "rig-ledger"}

    @app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def register(request: RegisterRequest) -> Account:
        try:
            return account_service.register(request)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.get("/accounts", response_model=list[Account], tags=["Admin"])
    def list_accounts() -> list[Account]:
        return account_service.list_accounts()

    @app.get("/accounts/{username}", response_model=Account, tags=["Accounts"])
    def get_account(username: str) -> Account:
        try:
            return account_service.get_account(username)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.delete("/accounts/{username}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
    def delete_account(username: str) -> None:
        try:
            account_service.delete_account(username)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.get("/referrals/{code}", tags=["Accounts"])
    def check_referral(code: str):
        referrer = account_service.check_referral(code)
        if referrer is None:
            return {"valid": False}
        return {"valid": True, "referrer": {"id": referrer.id, "username": referrer.username}}

    @app.get("/accounts/{username}/referrals", response_model=list[Account], tags=["Accounts"])
    def list_referrals(username: str) -> list[Account]:
        try:
            return account_service.list_referrals(username)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/accounts/{username}/status", response_model=StatusUpdateResponse, tags=["Admin"])
    def update_status(username: str, request: UpdateStatusRequest) -> StatusUpdateResponse:
        try:
            return account_service.update_status(username, request.status)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/accounts/{username}/balance", response_model=Account, tags=["Admin"])
    def adjust_balance(username: str, request: AdjustBalanceRequest) -> Account:
        try:
            return account_service.adjust_balance(username, request.amount)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/accounts/{username}/rigs/remove", tags=["Rigs"])
    def remove_rig(username: str, request: RigNameRequest):
        try:
            removed = rig_service.remove_rig(username, request.rig_name)
        except LedgerServiceError as e:
            raise _to_http(e)
        if not removed:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Rig {request.rig_name} not found")
        return {"success": True}

    @app.post("/accounts/{username}/rigs/toggle", response_model=ToggleRigResult, tags=["Rigs"])
    def toggle_rig(username: str, request: RigNameRequest) -> ToggleRigResult:
        try:
            result = rig_service.toggle_rig(username, request.rig_name)
        except LedgerServiceError as e:
            raise _to_http(e)
        if not result.success:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
        return result

    @app.get("/accounts/{username}/transactions", response_model=list[Transaction], tags=["Transactions"])
    def list_user_transactions(username: str) -> list[Transaction]:
        return ledger_service.list_transactions(username)

    @app.get("/accounts/{username}/notifications", response_model=list[Notification], tags=["Accounts"])
    def list_notifications(username: str, limit: Optional[int] = None) -> list[Notification]:
        return notifications.for_user(username, limit)

    @app.post("/transactions/deposit", response_model=TransactionResponse,
              status_code=status.HTTP_201_CREATED, tags=["Transactions"])
    def create_deposit(request: DepositRequest) -> TransactionResponse:
        try:
            return ledger_service.create_deposit(request.username, request.amount, request.method)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/transactions/withdraw", response_model=TransactionResponse,
              status_code=status.HTTP_201_CREATED, tags=["Transactions"])
    def create_withdraw(request: WithdrawRequest) -> TransactionResponse:
        try:
            return ledger_service.create_withdraw(
                request.username, request.amount, request.bank, request.bank_account,
            )
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.get("/transactions", response_model=list[Transaction], tags=["Admin"])
    def list_transactions() -> list[Transaction]:
        return ledger_service.list_transactions()

    @app.get("/transactions/{transaction_id}", response_model=Transaction, tags=["Transactions"])
    def get_transaction(transaction_id: int) -> Transaction:
        try:
            return ledger_service.get_transaction(transaction_id)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/transactions/{transaction_id}/approve", response_model=TransactionResponse, tags=["Admin"])
    def approve_transaction(transaction_id: int) -> TransactionResponse:
        try:
            return ledger_service.approve(transaction_id)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.post("/transactions/{transaction_id}/reject", response_model=TransactionResponse, tags=["Admin"])
    def reject_transaction(transaction_id: int) -> TransactionResponse:
        try:
            return ledger_service.reject(transaction_id)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.get("/shop/items", response_model=list[ShopItem], tags=["Shop"])
    def list_shop_items() -> list[ShopItem]:
        return catalog.items()

    @app.post("/shop/buy", response_model=PurchaseResponse, tags=["Shop"])
    def buy(request: BuyRequest) -> PurchaseResponse:
        try:
            return purchase_service.buy(request.username, request.item_id, catalog)
        except LedgerServiceError as e:
            raise _to_http(e)

    @app.get("/settings", response_model=LedgerSettings, tags=["Admin"])
    def get_ledger_settings() -> LedgerSettings:
        return storage.settings.get()

    @app.put("/settings", response_model=LedgerSettings, tags=["Admin"])
    def update_ledger_settings(request: LedgerSettings) -> LedgerSettings:
        return storage.settings.update(**request.model_dump())

    @app.get("/logs", response_model=list[ActivityLogEntry], tags=["Admin"])
    def list_logs(limit: Optional[int] = None) -> list[ActivityLogEntry]:
        return storage.activity.entries(limit)

    @app.delete("/logs", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
    def clear_logs() -> None:
        storage.activity.clear()
        storage.activity.add(ActivityType.SYSTEM, "clear_logs", details="Admin cleared system logs")

    return app


if __name__ == "__main__":
    import uvicorn
    from .config import configure_logging

    configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
