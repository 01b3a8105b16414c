import logging
import random
import time
from typing import Optional

from .catalog import CatalogProvider
from .errors import AccountNotFoundError, InsufficientFundsError, ItemNotFoundError
from .models import ActivityType, PurchaseResponse, Rig, RigStatus, ShopItem
from .rigs import with_rig_added
from .service import LedgerService

logger = logging.getLogger("purchase")


class PurchaseService:
    """Turns a catalog item into a rig on the buyer's account.

    The debit, the new rig and the purchase transaction are applied to one
    account snapshot and committed together; a failure leaves the stored
    account and transaction log as they were.
    """

    def __init__(self, ledger: LedgerService, rng: Optional[random.Random] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self._rng = rng or random.Random()

    def buy(self, username: str, item_id, catalog: CatalogProvider) -> PurchaseResponse:
        with self.storage.locks.hold(username):
            account = self.storage.accounts.get(username)
            if account is None:
                raise AccountNotFoundError(f"Account {username} not found")

            item = catalog.find(item_id)
            if item is None:
                raise ItemNotFoundError(f"Item {item_id} not found")

            if account.balance < item.price:
                raise InsufficientFundsError(
                    f"Insufficient balance for {username}: {account.balance} < {item.price}"
                )

            debited = account.model_copy(deep=True)
            debited.balance = account.balance - item.price
            rig = self.build_rig(item)
            updated = with_rig_added(debited, rig)
            tx = self.ledger.record_purchase(username, item.price, item.name)
            self.ledger.commit(account, updated, tx)

        self.storage.activity.add(
            ActivityType.PURCHASE, "Item Purchased", user=username,
            details=f"Item: {item.name}, Price: {item.price}",
        )
        logger.info("%s bought %r for %s, hashrate=%s", username, item.name, item.price, updated.hashrate)
        return PurchaseResponse(account=updated, rig=rig, transaction=tx, message="Purchase completed")

    def build_rig(self, item: ShopItem) -> Rig:
        return Rig(
            name=item.name,
            speed=item.speed,
            status=RigStatus.ACTIVE,
            type="GPU",
            temp=round(60 + self._rng.random() * 20, 1),
            power=round(120 + self._rng.random() * 50, 1),
            fan=round(50 + self._rng.random() * 30, 1),
            id=time.time_ns(),
        )
