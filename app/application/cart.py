from typing import List, Mapping, Optional

from app.domain.errors import InsufficientStockError, NotFoundError
from app.domain.schemas import CartItem, Product, Transaction
from app.domain.stock import allows, as_count, availability


class Cart:
    """Lines being assembled at a till or self-service device.

    Every add and every quantity increase is checked against the current
    availability; a rejected request leaves the cart untouched.
    """

    def __init__(self):
        self.items: List[CartItem] = []
        self.pending_order_id: Optional[str] = None
        self.customer_name = ""

    @classmethod
    def from_order(cls, order: Transaction) -> "Cart":
        """Load a pending self-service order so the cashier can take payment."""
        cart = cls()
        cart.items = [item.model_copy() for item in order.items]
        cart.pending_order_id = order.id
        cart.customer_name = order.customer_name
        return cart

    def find(self, product_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.product_id == product_id), None)

    def _check(self, product: Product, catalog: Mapping[str, Product], wanted: int) -> None:
        avail = availability(product, catalog)
        if not allows(avail, wanted):
            raise InsufficientStockError(product.id, product.name, as_count(avail))

    def add(self, product: Product, catalog: Mapping[str, Product], quantity: int = 1) -> CartItem:
        existing = self.find(product.id)
        current = existing.quantity if existing else 0
        self._check(product, catalog, current + quantity)

        if existing:
            existing.quantity += quantity
            return existing
        item = CartItem.from_product(product, quantity)
        self.items.append(item)
        return item

    def change_quantity(self, product_id: str, delta: int, catalog: Mapping[str, Product]) -> CartItem:
        item = self.find(product_id)
        if item is None:
            raise NotFoundError("cart item", product_id)
        if delta > 0 and product_id in catalog:
            self._check(catalog[product_id], catalog, item.quantity + delta)
        item.quantity = max(1, item.quantity + delta)
        return item

    def set_note(self, product_id: str, note: str) -> None:
        item = self.find(product_id)
        if item is None:
            raise NotFoundError("cart item", product_id)
        item.notes = note

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i.product_id != product_id]

    def clear(self) -> None:
        self.items = []
        self.pending_order_id = None
        self.customer_name = ""

    def validate(self, catalog: Mapping[str, Product]) -> None:
        """Re-check every line against the catalog at checkout time.

        Lines whose product has left the catalog are kept as the snapshot they are.
        """
        for item in self.items:
            product = catalog.get(item.product_id)
            if product is not None:
                self._check(product, catalog, item.quantity)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def subtotal(self) -> float:
        return round(sum(i.line_total for i in self.items), 2)

    @property
    def count(self) -> int:
        return sum(i.quantity for i in self.items)
