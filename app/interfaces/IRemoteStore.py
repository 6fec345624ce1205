from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from app.domain.schemas import Customer, KitchenStatus, Product, StaffUser, Transaction, TransactionStatus

class IRemoteStore(ABC):
    """Shared store every actor reads and writes.

    Implementations raise RemoteStoreError when unreachable. Creates are
    upserts on the primary key, so re-sending a record is harmless.
    """

    # --- Products ---
    @abstractmethod
    async def fetch_products(self) -> List[Product]:
        pass

    @abstractmethod
    async def create_product(self, product: Product) -> None:
        pass

    @abstractmethod
    async def update_product(self, product: Product) -> None:
        pass

    @abstractmethod
    async def delete_product(self, product_id: str) -> None:
        pass

    # --- Staff users ---
    @abstractmethod
    async def fetch_users(self) -> List[StaffUser]:
        pass

    @abstractmethod
    async def create_user(self, user: StaffUser) -> None:
        pass

    @abstractmethod
    async def update_user(self, user: StaffUser) -> None:
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        pass

    # --- Transactions ---
    @abstractmethod
    async def fetch_transactions(self) -> List[Transaction]:
        pass

    @abstractmethod
    async def fetch_pending_transactions(self) -> List[Transaction]:
        pass

    @abstractmethod
    async def fetch_transactions_by_ids(self, ids: List[str]) -> List[Transaction]:
        pass

    @abstractmethod
    async def create_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def update_transaction_status(self, transaction_id: str, status: TransactionStatus) -> None:
        pass

    @abstractmethod
    async def update_kitchen_status(self, transaction_id: str, kitchen_status: KitchenStatus) -> None:
        pass

    @abstractmethod
    async def confirm_transaction_payment(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def fetch_next_order_number(self) -> str:
        pass

    @abstractmethod
    def subscribe_to_transactions(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Call ``callback`` on every order change. Returns an unsubscribe function."""
        pass

    # --- Customers (loyalty) ---
    @abstractmethod
    async def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def create_customer(self, customer: Customer) -> Customer:
        pass

    @abstractmethod
    async def set_customer_points(self, customer_id: str, points: int) -> None:
        pass
