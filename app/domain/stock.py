"""Sellable quantity of products, including composites built from components.

Everything here is pure: it only reads the catalog snapshot it is given.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Union

from app.domain.schemas import CartItem, Product


@dataclass(frozen=True)
class Bounded:
    count: int


@dataclass(frozen=True)
class Unbounded:
    pass


UNBOUNDED = Unbounded()

Availability = Union[Bounded, Unbounded]


def as_catalog(products: Iterable[Product]) -> Dict[str, Product]:
    return {p.id: p for p in products}


def availability(product: Product, catalog: Mapping[str, Product]) -> Availability:
    """Current sellable quantity of ``product``.

    A manual ``is_available=False`` always wins. A composite is limited by its
    scarcest component; a missing or disabled component makes it unsellable.
    """
    if not product.is_available:
        return Bounded(0)

    if not product.is_composite:
        if product.stock is None:
            return UNBOUNDED
        return Bounded(max(0, product.stock))

    ratios: List[int] = []
    for item in product.combo_items:
        component = catalog.get(item.product_id)
        if component is None or not component.is_available:
            return Bounded(0)
        if component.stock is not None:
            ratios.append(max(0, component.stock) // item.quantity)

    if not ratios:
        return UNBOUNDED
    return Bounded(min(ratios))


def allows(avail: Availability, quantity: int) -> bool:
    if isinstance(avail, Unbounded):
        return True
    return quantity <= avail.count


def as_count(avail: Availability):
    """JSON-friendly form: an int, or None for unbounded."""
    return None if isinstance(avail, Unbounded) else avail.count


def compute_deductions(items: Iterable[CartItem]) -> Dict[str, int]:
    """Units to remove per simple product id when ``items`` are sold."""
    deductions: Dict[str, int] = {}
    for item in items:
        if item.combo_items:
            for component in item.combo_items:
                qty = component.quantity * item.quantity
                deductions[component.product_id] = deductions.get(component.product_id, 0) + qty
        else:
            deductions[item.product_id] = deductions.get(item.product_id, 0) + item.quantity
    return deductions


def apply_deductions(catalog: Mapping[str, Product], deductions: Mapping[str, int]) -> List[Product]:
    """Return updated copies of the stock-tracked products touched by ``deductions``.

    Stock is floored at 0 and a product that runs out is marked unavailable.
    """
    updated: List[Product] = []
    for product_id, qty in deductions.items():
        product = catalog.get(product_id)
        if product is None or product.stock is None:
            continue
        new_stock = max(0, product.stock - qty)
        updated.append(product.model_copy(update={
            "stock": new_stock,
            "is_available": False if new_stock == 0 else product.is_available,
        }))
    return updated
