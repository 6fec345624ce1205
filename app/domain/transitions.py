"""Order state machine.

    pending_payment --confirm_payment--> completed
    pending_payment | completed --cancel--> cancelled   (terminal)

kitchen_status toggles pending <-> done on any order that is not cancelled
and never touches ``status``. Every function returns a new Transaction.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import List, Optional

from app.core.config import settings
from app.domain.errors import InvalidTransitionError
from app.domain.schemas import CartItem, KitchenStatus, PaymentMethod, Transaction, TransactionStatus


def points_for_total(total: float, points_per_unit: Optional[int] = None) -> int:
    """floor(total x points_per_unit), computed in decimal to dodge float drift."""
    rate = settings.POINTS_PER_CURRENCY_UNIT if points_per_unit is None else points_per_unit
    value = Decimal(str(total)) * rate
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _with(order: Transaction, **updates) -> Transaction:
    # Revalidate so total stays max(0, subtotal - discount)
    return Transaction.model_validate({**order.model_dump(), **updates})


def confirm_payment(
    order: Transaction,
    *,
    payment_method: PaymentMethod,
    seller_name: Optional[str] = None,
    discount: Optional[float] = None,
    items: Optional[List[CartItem]] = None,
    amount_paid: Optional[float] = None,
    change: Optional[float] = None,
    points_per_unit: Optional[int] = None,
) -> Transaction:
    if order.status != TransactionStatus.PENDING_PAYMENT:
        raise InvalidTransitionError(order.id, "confirm payment of", order.status.value)

    updates = {
        "status": TransactionStatus.COMPLETED,
        "kitchen_status": KitchenStatus.PENDING,
        "payment_method": payment_method,
        "seller_name": seller_name,
        "amount_paid": amount_paid,
        "change": change,
    }
    if items is not None:
        updates["items"] = [i.model_dump() for i in items]
        updates["subtotal"] = round(sum(i.line_total for i in items), 2)
    if discount is not None:
        updates["discount"] = discount

    confirmed = _with(order, **updates)
    if confirmed.customer_id and payment_method != PaymentMethod.LOYALTY_POINTS:
        confirmed = confirmed.model_copy(update={
            "points_earned": points_for_total(confirmed.total, points_per_unit),
        })
    return confirmed


def cancel(order: Transaction) -> Transaction:
    """Cancel an order. Cancelling a cancelled order is a no-op."""
    if order.is_cancelled:
        return order
    return order.model_copy(update={"status": TransactionStatus.CANCELLED})


def set_kitchen_status(order: Transaction, kitchen_status: KitchenStatus) -> Transaction:
    if order.is_cancelled:
        raise InvalidTransitionError(order.id, f"set kitchen status {kitchen_status.value} on", order.status.value)
    return order.model_copy(update={"kitchen_status": kitchen_status})


def mark_kitchen_done(order: Transaction) -> Transaction:
    return set_kitchen_status(order, KitchenStatus.DONE)


def return_to_prep(order: Transaction) -> Transaction:
    return set_kitchen_status(order, KitchenStatus.PENDING)
