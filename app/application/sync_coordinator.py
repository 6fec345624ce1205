"""Authoritative in-memory view of orders, products and staff for one terminal.

Reads come from memory. Writes land in memory and the local cache first,
then go to the remote store; anything the remote did not acknowledge stays
in ``pending`` and is pushed again on the next sync. The connectivity state
is explicit:

    ONLINE    last remote call worked and nothing is waiting to be pushed
    DEGRADED  a remote call failed or writes are still waiting
    OFFLINE   no remote store is configured at all
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from app.core.config import settings
from app.domain.errors import NotFoundError, RemoteStoreError
from app.domain.order_numbers import next_order_number, parse_order_number, todays_orders
from app.domain.schemas import KitchenStatus, Product, StaffUser, Transaction, TransactionStatus
from app.infrastructure.local_cache import LocalCache
from app.interfaces.IRemoteStore import IRemoteStore

logger = logging.getLogger(__name__)


class ConnectivityState(str, Enum):
    ONLINE = "online"
    DEGRADED = "degraded"
    OFFLINE = "offline"


class WriteKind(str, Enum):
    CREATE = "create"
    STATUS = "status"
    KITCHEN = "kitchen"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class Snapshot:
    state: ConnectivityState
    next_order_number: str
    transactions: Tuple[Transaction, ...] = ()
    products: Tuple[Product, ...] = ()
    users: Tuple[StaffUser, ...] = ()
    pending_sync: FrozenSet[str] = field(default_factory=frozenset)


class SyncCoordinator:
    def __init__(
        self,
        remote: Optional[IRemoteStore],
        cache: LocalCache,
        *,
        tz=None,
        clock: Optional[Callable[[], datetime]] = None,
        seed_products: Sequence[Product] = (),
    ):
        self.remote = remote
        self.cache = cache
        self.tz = tz or settings.tz
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.seed_products = list(seed_products)

        self.state = ConnectivityState.OFFLINE if remote is None else ConnectivityState.ONLINE
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[[Snapshot], None]] = []
        self._state_listeners: List[Callable[[ConnectivityState, int], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._reload_task: Optional[asyncio.Task] = None

        # Serve from the last snapshot until the first sync finishes
        self._transactions: Dict[str, Transaction] = {t.id: t for t in cache.load_transactions()}
        self._products: Dict[str, Product] = {p.id: p for p in cache.load_products()}
        self._users: Dict[str, StaffUser] = {u.id: u for u in cache.load_users()}
        pending = cache.load_pending_sync()
        self._pending_transactions: Set[str] = set(pending.get("transactions", []))
        self._pending_products: Set[str] = set(pending.get("products", []))
        self._next_number = self._local_next_number()

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------
    async def start(self) -> None:
        await self.sync()
        if self.remote is not None and self._unsubscribe is None:
            self._unsubscribe = self.remote.subscribe_to_transactions(self._on_remote_change)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_task.cancel()
            try:
                await self._reload_task
            except asyncio.CancelledError:
                pass
        self._reload_task = None

    def _on_remote_change(self) -> None:
        # One reload at a time; a burst of notifications collapses into it
        if self._reload_task is not None and not self._reload_task.done():
            return
        logger.debug("Remote change received, reloading")
        self._reload_task = asyncio.get_running_loop().create_task(self.sync())

    # ---------------------------------------------------------
    # Observers
    # ---------------------------------------------------------
    def subscribe(self, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Register a UI surface; it receives every republished snapshot."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback) if callback in self._listeners else None

    def on_state_change(self, callback: Callable[[ConnectivityState, int], None]) -> None:
        self._state_listeners.append(callback)

    def _publish(self) -> None:
        snap = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snap)
            except Exception:
                logger.exception("Snapshot listener failed")

    def _set_state(self, new_state: ConnectivityState) -> None:
        if new_state == self.state:
            return
        old_state, self.state = self.state, new_state
        pending = self.pending_count
        if new_state == ConnectivityState.DEGRADED:
            logger.warning(f"⚠️ Connectivity {old_state.value} -> degraded ({pending} writes waiting)")
        else:
            logger.info(f"✅ Connectivity {old_state.value} -> {new_state.value}")
        for callback in list(self._state_listeners):
            try:
                callback(new_state, pending)
            except Exception:
                logger.exception("State listener failed")

    # ---------------------------------------------------------
    # Reads
    # ---------------------------------------------------------
    @property
    def pending_count(self) -> int:
        return len(self._pending_transactions) + len(self._pending_products)

    @property
    def transactions(self) -> List[Transaction]:
        return sorted(self._transactions.values(), key=lambda t: t.timestamp)

    @property
    def products(self) -> List[Product]:
        return list(self._products.values())

    @property
    def catalog(self) -> Dict[str, Product]:
        return dict(self._products)

    @property
    def users(self) -> List[StaffUser]:
        return list(self._users.values())

    def snapshot(self) -> Snapshot:
        return Snapshot(
            state=self.state,
            next_order_number=self._next_number,
            transactions=tuple(self.transactions),
            products=tuple(self._products.values()),
            users=tuple(self._users.values()),
            pending_sync=frozenset(self._pending_transactions),
        )

    def needs_sync(self, transaction_id: str) -> bool:
        return transaction_id in self._pending_transactions

    def get_transaction(self, transaction_id: str) -> Transaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise NotFoundError("transaction", transaction_id) from None

    def get_product(self, product_id: str) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError("product", product_id) from None

    def get_user(self, user_id: str) -> StaffUser:
        try:
            return self._users[user_id]
        except KeyError:
            raise NotFoundError("user", user_id) from None

    def kitchen_queue(self) -> List[Transaction]:
        """Today's orders still being prepared, oldest first."""
        today = todays_orders(self.transactions, self.clock(), self.tz)
        return [t for t in today if not t.is_cancelled and t.kitchen_status == KitchenStatus.PENDING]

    def kitchen_history(self) -> List[Transaction]:
        today = todays_orders(self.transactions, self.clock(), self.tz)
        done = [t for t in today if not t.is_cancelled and t.kitchen_status == KitchenStatus.DONE]
        return sorted(done, key=lambda t: t.timestamp, reverse=True)

    async def pending_transactions(self) -> List[Transaction]:
        """Orders awaiting payment at the till, oldest first."""
        if self.remote is not None:
            try:
                remote = {t.id: t for t in await self.remote.fetch_pending_transactions()}
                # Local changes the remote has not seen yet take precedence
                for tx_id in self._pending_transactions:
                    local = self._transactions.get(tx_id)
                    if local is None:
                        continue
                    if local.status == TransactionStatus.PENDING_PAYMENT:
                        remote[tx_id] = local
                    else:
                        remote.pop(tx_id, None)
                return sorted(remote.values(), key=lambda t: t.timestamp)
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Pending orders from cache: {e}")
                self._set_state(ConnectivityState.DEGRADED)
        return [t for t in self.transactions if t.status == TransactionStatus.PENDING_PAYMENT]

    async def transactions_by_ids(self, ids: Iterable[str]) -> List[Transaction]:
        """Orders placed from one self-service device, newest first."""
        ids = list(dict.fromkeys(ids))
        found: Dict[str, Transaction] = {}
        if self.remote is not None:
            try:
                found = {t.id: t for t in await self.remote.fetch_transactions_by_ids(ids)}
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Order lookup from cache: {e}")
                self._set_state(ConnectivityState.DEGRADED)
        for tx_id in ids:
            if tx_id in self._transactions and (tx_id not in found or tx_id in self._pending_transactions):
                found[tx_id] = self._transactions[tx_id]
        return sorted(found.values(), key=lambda t: t.timestamp, reverse=True)

    def _local_next_number(self) -> str:
        return next_order_number(self._transactions.values(), now=self.clock(), tz=self.tz)

    async def next_order_number(self) -> str:
        """Fresh order number: asks the remote, never below what this terminal has seen."""
        async with self._lock:
            return await self._allocate_number()

    async def _allocate_number(self) -> str:
        # Caller holds _lock, so two orders from this terminal never share a number
        local = self._local_next_number()
        if self.remote is None:
            return local
        try:
            fresh = await self.remote.fetch_next_order_number()
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Order number from cache: {e}")
            self._set_state(ConnectivityState.DEGRADED)
            return local
        return str(max(parse_order_number(fresh), parse_order_number(local)))

    # ---------------------------------------------------------
    # Sync cycle
    # ---------------------------------------------------------
    async def sync(self) -> ConnectivityState:
        """Pull everything from the remote, push what is waiting, republish."""
        async with self._lock:
            if self.remote is None:
                self._set_state(ConnectivityState.OFFLINE)
            else:
                try:
                    remote_products = await self.remote.fetch_products()
                    remote_users = await self.remote.fetch_users()
                    remote_transactions = await self.remote.fetch_transactions()
                except RemoteStoreError as e:
                    logger.warning(f"⚠️ Sync failed, serving local cache: {e}")
                    self._fallback_to_cache()
                    self._set_state(ConnectivityState.DEGRADED)
                else:
                    await self._merge_products(remote_products)
                    self._merge_users(remote_users)
                    self._merge_transactions(remote_transactions)
                    await self._push_pending()
            self._next_number = self._local_next_number()
            self._persist_local()
        self._publish()
        return self.state

    def _fallback_to_cache(self) -> None:
        cached = {t.id: t for t in self.cache.load_transactions()}
        if len(cached) > len(self._transactions):
            self._transactions = cached
        if not self._products:
            self._products = {p.id: p for p in self.cache.load_products()}
        if not self._users:
            self._users = {u.id: u for u in self.cache.load_users()}

    async def _merge_products(self, remote_products: List[Product]) -> None:
        if not remote_products and not self.cache.is_seeded() and self.seed_products:
            logger.info(f"🌱 Seeding remote catalog with {len(self.seed_products)} products")
            self._products = {p.id: p for p in self.seed_products}
            self._pending_products |= set(self._products)
            self.cache.mark_seeded()
            return

        merged = {p.id: p for p in remote_products}
        for product_id in self._pending_products:
            if product_id in self._products:
                merged[product_id] = self._products[product_id]
        self._products = merged
        if remote_products:
            self.cache.mark_seeded()

    def _merge_users(self, remote_users: List[StaffUser]) -> None:
        if remote_users:
            self._users = {u.id: u for u in remote_users}

    def _merge_transactions(self, remote_transactions: List[Transaction]) -> None:
        local = {t.id: t for t in self.cache.load_transactions()}
        local.update(self._transactions)

        if not remote_transactions and local:
            # Remote is empty (fresh or wiped): the larger local set wins and is re-sent
            logger.info(f"🔄 Remote has no orders, re-sending {len(local)} from local cache")
            self._transactions = local
            self._pending_transactions |= set(local)
            return

        merged = {t.id: t for t in remote_transactions}
        for tx_id in self._pending_transactions:
            if tx_id in local:
                merged[tx_id] = local[tx_id]
        self._transactions = merged

    async def _push_pending(self) -> None:
        failed = False
        for tx_id in sorted(self._pending_transactions):
            tx = self._transactions.get(tx_id)
            if tx is None:
                self._pending_transactions.discard(tx_id)
                continue
            try:
                await self.remote.create_transaction(tx)
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Order {tx.order_number} still waiting for the remote: {e}")
                failed = True
                break
            self._pending_transactions.discard(tx_id)

        if not failed:
            for product_id in sorted(self._pending_products):
                product = self._products.get(product_id)
                if product is None:
                    self._pending_products.discard(product_id)
                    continue
                try:
                    await self.remote.update_product(product)
                except RemoteStoreError as e:
                    logger.warning(f"⚠️ Product {product.name} still waiting for the remote: {e}")
                    failed = True
                    break
                self._pending_products.discard(product_id)

        self._set_state(ConnectivityState.DEGRADED if failed or self.pending_count else ConnectivityState.ONLINE)

    def _persist_local(self) -> None:
        self.cache.save_transactions(self.transactions)
        self.cache.save_products(self.products)
        self.cache.save_users(self.users)
        self.cache.save_pending_sync({
            "transactions": self._pending_transactions,
            "products": self._pending_products,
        })

    # ---------------------------------------------------------
    # Writes
    # ---------------------------------------------------------
    async def create_transaction(self, build: Callable[[str], Transaction]) -> Transaction:
        """Allocate the next order number and commit the order ``build`` makes from it.

        Both steps run under one hold of the lock.
        """
        async with self._lock:
            transaction = build(await self._allocate_number())
            await self._commit(transaction, WriteKind.CREATE)
        self._publish()
        return transaction

    async def save_transaction(self, transaction: Transaction, kind: WriteKind = WriteKind.CREATE) -> bool:
        """Commit locally, then remotely. Returns False when the order needs sync."""
        async with self._lock:
            pushed = await self._commit(transaction, kind)
        self._publish()
        return pushed

    async def _commit(self, transaction: Transaction, kind: WriteKind) -> bool:
        self._transactions[transaction.id] = transaction
        self._pending_transactions.add(transaction.id)
        self._persist_local()

        pushed = await self._push_transaction(transaction, kind)
        if pushed:
            self._pending_transactions.discard(transaction.id)
            if not self.pending_count:
                self._set_state(ConnectivityState.ONLINE)
        self._next_number = self._local_next_number()
        self._persist_local()
        return pushed

    async def _push_transaction(self, tx: Transaction, kind: WriteKind) -> bool:
        if self.remote is None:
            return False
        try:
            try:
                if kind == WriteKind.STATUS:
                    await self.remote.update_transaction_status(tx.id, tx.status)
                elif kind == WriteKind.KITCHEN:
                    await self.remote.update_kitchen_status(tx.id, tx.kitchen_status)
                elif kind == WriteKind.CONFIRM:
                    await self.remote.confirm_transaction_payment(tx)
                else:
                    await self.remote.create_transaction(tx)
            except NotFoundError:
                # Created while degraded: the remote has never seen it
                await self.remote.create_transaction(tx)
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Order {tx.order_number} kept locally, needs sync: {e}")
            self._set_state(ConnectivityState.DEGRADED)
            return False
        return True

    async def save_products(self, products: Iterable[Product]) -> bool:
        products = list(products)
        if not products:
            return True
        async with self._lock:
            for product in products:
                self._products[product.id] = product
                self._pending_products.add(product.id)
            self._persist_local()

            pushed = self.remote is not None
            for product in products:
                if not pushed:
                    break
                try:
                    await self.remote.update_product(product)
                except RemoteStoreError as e:
                    logger.warning(f"⚠️ Product {product.name} kept locally, needs sync: {e}")
                    self._set_state(ConnectivityState.DEGRADED)
                    pushed = False
                    break
                self._pending_products.discard(product.id)
            if pushed and not self.pending_count:
                self._set_state(ConnectivityState.ONLINE)
            self._persist_local()
        self._publish()
        return pushed

    async def delete_product(self, product_id: str) -> bool:
        async with self._lock:
            self.get_product(product_id)
            self._products.pop(product_id)
            self._pending_products.discard(product_id)
            self._persist_local()
            deleted = await self._remote_call(self.remote.delete_product, product_id) if self.remote else False
        self._publish()
        return deleted

    async def save_user(self, user: StaffUser) -> bool:
        async with self._lock:
            self._users[user.id] = user
            self._persist_local()
            saved = await self._remote_call(self.remote.update_user, user) if self.remote else False
        self._publish()
        return saved

    async def delete_user(self, user_id: str) -> bool:
        async with self._lock:
            self.get_user(user_id)
            self._users.pop(user_id)
            self._persist_local()
            deleted = await self._remote_call(self.remote.delete_user, user_id) if self.remote else False
        self._publish()
        return deleted

    async def _remote_call(self, method, *args) -> bool:
        try:
            await method(*args)
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Remote write failed, kept locally: {e}")
            self._set_state(ConnectivityState.DEGRADED)
            return False
        return True
