import json
import logging
from typing import Any, Dict, List, Optional, Set

import redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.domain.schemas import Customer, Product, StaffUser, Transaction

logger = logging.getLogger(__name__)

# Snapshot keys
KEY_PRODUCTS = "products"
KEY_TRANSACTIONS = "transactions"
KEY_USERS = "users"
KEY_CUSTOMERS = "customers"
KEY_ACTIVE_SESSION = "active_session"
KEY_SEEDED = "seeded"
KEY_PENDING_SYNC = "pending_sync"


class LocalCache:
    """Per-terminal mirror of the remote data, served while the remote is down.

    Redis is the durable store; if it is unreachable the cache keeps going
    from process memory for the rest of its life.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None, prefix: Optional[str] = None):
        self.prefix = prefix if prefix is not None else settings.CACHE_KEY_PREFIX
        self.redis = client
        self.redis_available = False

        # 1. Primary Memory (Redis)
        if self.redis is None and redis_url:
            try:
                self.redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=1  # Fail fast if Redis is down
                )
            except (RedisError, ValueError) as e:
                logger.warning(f"⚠️ LocalCache: bad Redis URL ({e}). Using RAM fallback.")
                self.redis = None

        if self.redis is not None:
            try:
                self.redis.ping()
                self.redis_available = True
                logger.info("✅ LocalCache: Connected to Redis.")
            except RedisError as e:
                logger.warning(f"⚠️ LocalCache: Redis unreachable ({e}). Using RAM fallback.")

        # 2. Fallback Memory (RAM)
        self._memory_store: dict = {}

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    # ---------------------------------------------------------
    # Raw JSON get/set/remove
    # ---------------------------------------------------------
    def get(self, name: str, default: Any = None) -> Any:
        key = self._key(name)

        if self.redis_available:
            try:
                data = self.redis.get(key)
                if data is not None:
                    return json.loads(data)
            except RedisError as e:
                self._handle_redis_error(e)

        return self._memory_store.get(key, default)

    def set(self, name: str, value: Any) -> None:
        key = self._key(name)
        json_data = json.dumps(value)

        if self.redis_available:
            try:
                self.redis.set(key, json_data)
            except RedisError as e:
                self._handle_redis_error(e)

        # Always write to RAM (keeps working if Redis drops mid-session)
        self._memory_store[key] = json.loads(json_data)

    def remove(self, name: str) -> None:
        key = self._key(name)

        if self.redis_available:
            try:
                self.redis.delete(key)
            except RedisError as e:
                self._handle_redis_error(e)

        self._memory_store.pop(key, None)

    def _handle_redis_error(self, e):
        """Log error and stop trying Redis for the rest of the process."""
        logger.error(f"❌ Redis Error: {e}. Switching to RAM mode.")
        self.redis_available = False

    # ---------------------------------------------------------
    # Typed snapshots
    # ---------------------------------------------------------
    def load_products(self) -> List[Product]:
        return [Product.model_validate(p) for p in self.get(KEY_PRODUCTS, [])]

    def save_products(self, products: List[Product]) -> None:
        self.set(KEY_PRODUCTS, [p.model_dump(mode="json") for p in products])

    def load_transactions(self) -> List[Transaction]:
        return [Transaction.model_validate(t) for t in self.get(KEY_TRANSACTIONS, [])]

    def save_transactions(self, transactions: List[Transaction]) -> None:
        self.set(KEY_TRANSACTIONS, [t.model_dump(mode="json") for t in transactions])

    def load_users(self) -> List[StaffUser]:
        return [StaffUser.model_validate(u) for u in self.get(KEY_USERS, [])]

    def save_users(self, users: List[StaffUser]) -> None:
        self.set(KEY_USERS, [u.model_dump(mode="json") for u in users])

    def load_customers(self) -> List[Customer]:
        return [Customer.model_validate(c) for c in self.get(KEY_CUSTOMERS, [])]

    def save_customer(self, customer: Customer) -> None:
        others = [c for c in self.load_customers() if c.id != customer.id]
        self.set(KEY_CUSTOMERS, [c.model_dump() for c in others + [customer]])

    def load_pending_sync(self) -> Dict[str, List[str]]:
        """Ids changed locally that the remote has not acknowledged, per kind."""
        return self.get(KEY_PENDING_SYNC) or {}

    def save_pending_sync(self, pending: Dict[str, Set[str]]) -> None:
        self.set(KEY_PENDING_SYNC, {kind: sorted(ids) for kind, ids in pending.items()})

    def is_seeded(self) -> bool:
        return bool(self.get(KEY_SEEDED, False))

    def mark_seeded(self) -> None:
        self.set(KEY_SEEDED, True)

    def get_active_session(self) -> Optional[StaffUser]:
        data = self.get(KEY_ACTIVE_SESSION)
        return StaffUser.model_validate(data) if data else None

    def set_active_session(self, user: StaffUser) -> None:
        self.set(KEY_ACTIVE_SESSION, user.model_dump(mode="json"))

    def clear_active_session(self) -> None:
        self.remove(KEY_ACTIVE_SESSION)
