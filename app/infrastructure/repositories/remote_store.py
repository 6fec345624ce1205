import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.domain.errors import NotFoundError, RemoteStoreError
from app.domain.models import CustomerRecord, ProductRecord, StaffUserRecord, TransactionRecord
from app.domain.order_numbers import next_order_number, start_of_local_day, to_epoch_ms
from app.domain.schemas import Customer, KitchenStatus, Product, StaffUser, Transaction, TransactionStatus
from app.infrastructure.database import bootstrap_schema
from app.interfaces.IRemoteStore import IRemoteStore

logger = logging.getLogger(__name__)


def _to_product(record: ProductRecord) -> Product:
    return Product.model_validate(record, from_attributes=True)


def _to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction.model_validate(record, from_attributes=True)


class PostgresRemoteStore(IRemoteStore):
    """SQLAlchemy-backed remote store.

    Sessions are blocking, so every public call hops to a worker thread.
    """

    def __init__(
        self,
        session_factory=None,
        tz=None,
        clock: Optional[Callable[[], datetime]] = None,
        schema_ready: bool = True,
    ):
        if session_factory is None:
            from app.infrastructure.database import SessionLocal
            session_factory = SessionLocal
        if session_factory is None:
            raise RemoteStoreError("DATABASE_URL is not configured")
        self.session_factory = session_factory
        self.bind = getattr(session_factory, "kw", {}).get("bind")
        # False when startup gave up on the database; tables are created on first contact
        self.schema_ready = schema_ready
        self.tz = tz or settings.tz
        self.clock = clock or (lambda: datetime.now(self.tz))
        self._listeners: List[Callable[[], Any]] = []

    # ---------------------------------------------------------
    # Session plumbing
    # ---------------------------------------------------------
    def _execute(self, work: Callable, write: bool = False):
        session = self.session_factory()
        try:
            result = work(session)
            if write:
                session.commit()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"❌ DB Error: {e}")
            raise RemoteStoreError(str(e)) from e
        finally:
            session.close()

    async def _ensure_schema(self) -> None:
        if self.schema_ready:
            return
        try:
            self.schema_ready = await asyncio.to_thread(bootstrap_schema, bind=self.bind, retries=1, wait_seconds=0)
        except SQLAlchemyError as e:
            raise RemoteStoreError(str(e)) from e
        if not self.schema_ready:
            raise RemoteStoreError("database schema not ready")

    async def _run(self, work: Callable, write: bool = False):
        await self._ensure_schema()
        return await asyncio.to_thread(self._execute, work, write)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception:
                logger.exception("Transaction listener failed")

    def subscribe_to_transactions(self, callback: Callable[[], Any]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # ---------------------------------------------------------
    # Products
    # ---------------------------------------------------------
    async def fetch_products(self) -> List[Product]:
        def work(session):
            return [_to_product(r) for r in session.query(ProductRecord).order_by(ProductRecord.name).all()]
        return await self._run(work)

    async def create_product(self, product: Product) -> None:
        await self._run(lambda s: s.merge(ProductRecord(**product.model_dump(mode="json"))), write=True)

    async def update_product(self, product: Product) -> None:
        await self.create_product(product)

    async def delete_product(self, product_id: str) -> None:
        await self._run(lambda s: s.query(ProductRecord).filter(ProductRecord.id == product_id).delete(), write=True)

    # ---------------------------------------------------------
    # Staff users
    # ---------------------------------------------------------
    async def fetch_users(self) -> List[StaffUser]:
        def work(session):
            return [StaffUser.model_validate(r, from_attributes=True) for r in session.query(StaffUserRecord).all()]
        return await self._run(work)

    async def create_user(self, user: StaffUser) -> None:
        await self._run(lambda s: s.merge(StaffUserRecord(**user.model_dump(mode="json"))), write=True)
        self._notify()

    async def update_user(self, user: StaffUser) -> None:
        await self.create_user(user)

    async def delete_user(self, user_id: str) -> None:
        await self._run(lambda s: s.query(StaffUserRecord).filter(StaffUserRecord.id == user_id).delete(), write=True)
        self._notify()

    # ---------------------------------------------------------
    # Transactions
    # ---------------------------------------------------------
    async def fetch_transactions(self) -> List[Transaction]:
        def work(session):
            rows = session.query(TransactionRecord).order_by(TransactionRecord.timestamp).all()
            return [_to_transaction(r) for r in rows]
        return await self._run(work)

    async def fetch_pending_transactions(self) -> List[Transaction]:
        def work(session):
            rows = (
                session.query(TransactionRecord)
                .filter(TransactionRecord.status == TransactionStatus.PENDING_PAYMENT.value)
                .order_by(TransactionRecord.timestamp)
                .all()
            )
            return [_to_transaction(r) for r in rows]
        return await self._run(work)

    async def fetch_transactions_by_ids(self, ids: List[str]) -> List[Transaction]:
        if not ids:
            return []

        def work(session):
            rows = (
                session.query(TransactionRecord)
                .filter(TransactionRecord.id.in_(ids))
                .order_by(TransactionRecord.timestamp.desc())
                .all()
            )
            return [_to_transaction(r) for r in rows]
        return await self._run(work)

    async def create_transaction(self, transaction: Transaction) -> None:
        await self._run(lambda s: s.merge(TransactionRecord(**transaction.model_dump(mode="json"))), write=True)
        self._notify()

    async def _update_transaction(self, transaction_id: str, values: dict) -> None:
        def work(session):
            count = session.query(TransactionRecord).filter(TransactionRecord.id == transaction_id).update(values)
            if count == 0:
                raise NotFoundError("transaction", transaction_id)
        await self._run(work, write=True)
        self._notify()

    async def update_transaction_status(self, transaction_id: str, status: TransactionStatus) -> None:
        await self._update_transaction(transaction_id, {"status": status.value})

    async def update_kitchen_status(self, transaction_id: str, kitchen_status: KitchenStatus) -> None:
        await self._update_transaction(transaction_id, {"kitchen_status": kitchen_status.value})

    async def confirm_transaction_payment(self, transaction: Transaction) -> None:
        data = transaction.model_dump(mode="json")
        await self._update_transaction(transaction.id, {
            "status": TransactionStatus.COMPLETED.value,
            "kitchen_status": KitchenStatus.PENDING.value,
            "payment_method": data["payment_method"],
            "amount_paid": data["amount_paid"],
            "change": data["change"],
            "seller_name": data["seller_name"],
            "subtotal": data["subtotal"],
            "discount": data["discount"],
            "total": data["total"],
            "items": data["items"],
            "points_earned": data["points_earned"],
        })

    async def fetch_next_order_number(self) -> str:
        now = self.clock()
        cutoff = to_epoch_ms(start_of_local_day(now, self.tz))

        def work(session):
            rows = session.query(TransactionRecord).filter(TransactionRecord.timestamp >= cutoff).all()
            return next_order_number([_to_transaction(r) for r in rows], now=now, tz=self.tz)
        return await self._run(work)

    # ---------------------------------------------------------
    # Customers
    # ---------------------------------------------------------
    async def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        def work(session):
            record = session.query(CustomerRecord).filter(CustomerRecord.phone == phone).first()
            return Customer.model_validate(record, from_attributes=True) if record else None
        return await self._run(work)

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        def work(session):
            record = session.get(CustomerRecord, customer_id)
            return Customer.model_validate(record, from_attributes=True) if record else None
        return await self._run(work)

    async def create_customer(self, customer: Customer) -> Customer:
        await self._run(lambda s: s.merge(CustomerRecord(**customer.model_dump())), write=True)
        return customer

    async def set_customer_points(self, customer_id: str, points: int) -> None:
        def work(session):
            count = session.query(CustomerRecord).filter(CustomerRecord.id == customer_id).update({"points": points})
            if count == 0:
                raise NotFoundError("customer", customer_id)
        await self._run(work, write=True)
