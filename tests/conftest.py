from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytz

from app.domain.errors import NotFoundError, RemoteStoreError
from app.domain.order_numbers import next_order_number
from app.domain.schemas import Customer, KitchenStatus, Product, StaffUser, Transaction, TransactionStatus
from app.infrastructure.local_cache import LocalCache
from app.interfaces.IRemoteStore import IRemoteStore

TZ = pytz.timezone("America/Sao_Paulo")
NOW = TZ.localize(datetime(2026, 10, 19, 12, 0))


class FakeRemoteStore(IRemoteStore):
    """In-memory remote store; flip ``online`` to simulate an outage."""

    def __init__(self, clock: Callable[[], datetime] = lambda: NOW):
        self.online = True
        self.clock = clock
        self.products: Dict[str, Product] = {}
        self.users: Dict[str, StaffUser] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.customers: Dict[str, Customer] = {}
        self.listeners: List[Callable[[], Any]] = []
        self.writes: List[str] = []

    def _check(self) -> None:
        if not self.online:
            raise RemoteStoreError("remote unreachable")

    def _notify(self) -> None:
        for callback in list(self.listeners):
            callback()

    def subscribe_to_transactions(self, callback):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    async def fetch_products(self):
        self._check()
        return list(self.products.values())

    async def create_product(self, product):
        self._check()
        self.writes.append(f"product:{product.id}")
        self.products[product.id] = product

    async def update_product(self, product):
        await self.create_product(product)

    async def delete_product(self, product_id):
        self._check()
        self.products.pop(product_id, None)

    async def fetch_users(self):
        self._check()
        return list(self.users.values())

    async def create_user(self, user):
        self._check()
        self.users[user.id] = user

    async def update_user(self, user):
        await self.create_user(user)

    async def delete_user(self, user_id):
        self._check()
        self.users.pop(user_id, None)

    async def fetch_transactions(self):
        self._check()
        return sorted(self.transactions.values(), key=lambda t: t.timestamp)

    async def fetch_pending_transactions(self):
        return [t for t in await self.fetch_transactions() if t.status == TransactionStatus.PENDING_PAYMENT]

    async def fetch_transactions_by_ids(self, ids):
        self._check()
        return [self.transactions[i] for i in ids if i in self.transactions]

    async def create_transaction(self, transaction):
        self._check()
        self.writes.append(f"create:{transaction.id}")
        self.transactions[transaction.id] = transaction
        self._notify()

    def _require(self, transaction_id: str) -> Transaction:
        if transaction_id not in self.transactions:
            raise NotFoundError("transaction", transaction_id)
        return self.transactions[transaction_id]

    async def update_transaction_status(self, transaction_id, status: TransactionStatus):
        self._check()
        tx = self._require(transaction_id)
        self.writes.append(f"status:{transaction_id}")
        self.transactions[transaction_id] = tx.model_copy(update={"status": status})
        self._notify()

    async def update_kitchen_status(self, transaction_id, kitchen_status: KitchenStatus):
        self._check()
        tx = self._require(transaction_id)
        self.writes.append(f"kitchen:{transaction_id}")
        self.transactions[transaction_id] = tx.model_copy(update={"kitchen_status": kitchen_status})
        self._notify()

    async def confirm_transaction_payment(self, transaction):
        self._check()
        self._require(transaction.id)
        self.writes.append(f"confirm:{transaction.id}")
        self.transactions[transaction.id] = transaction
        self._notify()

    async def fetch_next_order_number(self):
        self._check()
        return next_order_number(self.transactions.values(), now=self.clock(), tz=TZ)

    async def get_customer_by_phone(self, phone) -> Optional[Customer]:
        self._check()
        return next((c for c in self.customers.values() if c.phone == phone), None)

    async def get_customer(self, customer_id):
        self._check()
        return self.customers.get(customer_id)

    async def create_customer(self, customer):
        self._check()
        self.customers[customer.id] = customer
        return customer

    async def set_customer_points(self, customer_id, points):
        self._check()
        if customer_id not in self.customers:
            raise NotFoundError("customer", customer_id)
        self.customers[customer_id] = self.customers[customer_id].model_copy(update={"points": points})


def make_product(product_id: str, stock: Optional[int] = None, price: float = 5.0, **extra) -> Product:
    return Product(id=product_id, name=product_id.title(), price=price, stock=stock, **extra)


@pytest.fixture()
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def cache() -> LocalCache:
    # RAM only: no Redis in unit tests
    return LocalCache(redis_url=None, prefix="test")


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: NOW
