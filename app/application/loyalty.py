"""Customer points balances.

Earn and redeem are read-then-write against the customer row, with no lock
between the two steps. Two terminals redeeming for the same customer at the
same instant can both succeed; the till usage pattern makes this rare.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.domain.errors import NotFoundError, RemoteStoreError
from app.domain.schemas import Customer
from app.infrastructure.local_cache import LocalCache
from app.interfaces.IRemoteStore import IRemoteStore

logger = logging.getLogger(__name__)


class RedeemOutcome(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT_BALANCE = "insufficient_balance"


@dataclass(frozen=True)
class RedeemResult:
    outcome: RedeemOutcome
    balance: int

    @property
    def ok(self) -> bool:
        return self.outcome == RedeemOutcome.SUCCESS


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


class LoyaltyLedger:
    def __init__(self, remote: Optional[IRemoteStore], cache: LocalCache):
        self.remote = remote
        self.cache = cache

    def _require_remote(self) -> IRemoteStore:
        if self.remote is None:
            raise RemoteStoreError("Loyalty points need the remote store")
        return self.remote

    async def lookup(self, phone: str) -> Optional[Customer]:
        """Find a customer by phone; falls back to the cached copy when offline."""
        phone = normalize_phone(phone)
        try:
            customer = await self._require_remote().get_customer_by_phone(phone)
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Customer lookup from cache: {e}")
            return next((c for c in self.cache.load_customers() if c.phone == phone), None)
        if customer is not None:
            self.cache.save_customer(customer)
        return customer

    async def register(self, phone: str, name: str = "") -> Customer:
        phone = normalize_phone(phone)
        if not phone:
            raise ValueError("phone is required")
        existing = await self._require_remote().get_customer_by_phone(phone)
        if existing is not None:
            return existing
        customer = await self.remote.create_customer(
            Customer(id=uuid.uuid4().hex, phone=phone, name=name.strip(), points=0)
        )
        self.cache.save_customer(customer)
        logger.info(f"🎟️ Registered loyalty customer {customer.id}")
        return customer

    async def get(self, customer_id: str) -> Customer:
        customer = await self._require_remote().get_customer(customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)
        return customer

    async def earn(self, customer_id: str, amount: int) -> int:
        """Credit ``amount`` points; returns the new balance."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        customer = await self.get(customer_id)
        new_balance = customer.points + amount
        await self.remote.set_customer_points(customer_id, new_balance)
        self.cache.save_customer(customer.model_copy(update={"points": new_balance}))
        logger.info(f"🎟️ +{amount} pts for {customer_id} (balance {new_balance})")
        return new_balance

    async def redeem(self, customer_id: str, amount: int) -> RedeemResult:
        """Debit ``amount`` points unless that would drive the balance below zero."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        customer = await self.get(customer_id)
        if amount > customer.points:
            return RedeemResult(RedeemOutcome.INSUFFICIENT_BALANCE, customer.points)
        new_balance = customer.points - amount
        await self.remote.set_customer_points(customer_id, new_balance)
        self.cache.save_customer(customer.model_copy(update={"points": new_balance}))
        logger.info(f"🎟️ -{amount} pts for {customer_id} (balance {new_balance})")
        return RedeemResult(RedeemOutcome.SUCCESS, new_balance)
