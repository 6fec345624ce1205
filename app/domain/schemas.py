"""JSON-shaped entities shared by the remote store, the local cache and the API."""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class PaymentMethod(str, Enum):
    CREDIT = "Crédito"
    DEBIT = "Débito"
    CASH = "Dinheiro"
    PIX = "Pix"
    AWAITING = "Aguardando"
    LOYALTY_POINTS = "Pontos Fidelidade"


class TransactionStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class KitchenStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"


class ComboItem(BaseModel):
    product_id: str
    quantity: int = Field(default=1, gt=0)


class Product(BaseModel):
    id: str
    name: str
    price: float = 0.0
    category: str = ""
    image_url: str = ""
    description: Optional[str] = None
    barcode: Optional[str] = None
    # None means the product is not stock-tracked (unbounded)
    stock: Optional[int] = None
    is_available: bool = True
    combo_items: List[ComboItem] = Field(default_factory=list)
    points_price: Optional[int] = None

    @property
    def is_composite(self) -> bool:
        return len(self.combo_items) > 0


class CartItem(BaseModel):
    """Snapshot of a product at the moment it was put in a cart."""

    product_id: str
    name: str
    price: float
    quantity: int = Field(default=1, gt=0)
    notes: str = ""
    combo_items: List[ComboItem] = Field(default_factory=list)
    points_price: Optional[int] = None

    @classmethod
    def from_product(cls, product: Product, quantity: int = 1) -> "CartItem":
        return cls(
            product_id=product.id,
            name=product.name,
            price=product.price,
            quantity=quantity,
            combo_items=[c.model_copy() for c in product.combo_items],
            points_price=product.points_price,
        )

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class Transaction(BaseModel):
    id: str
    order_number: str
    customer_name: str = ""
    timestamp: int  # epoch milliseconds
    items: List[CartItem] = Field(default_factory=list)
    subtotal: float = 0.0
    discount: float = 0.0
    total: float = 0.0
    payment_method: PaymentMethod = PaymentMethod.AWAITING
    amount_paid: Optional[float] = None
    change: Optional[float] = None
    seller_name: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING_PAYMENT
    kitchen_status: KitchenStatus = KitchenStatus.PENDING
    customer_id: Optional[str] = None
    points_earned: Optional[int] = None
    points_redeemed: Optional[int] = None

    @model_validator(mode="after")
    def _clamp_total(self) -> "Transaction":
        self.total = round(max(0.0, self.subtotal - self.discount), 2)
        return self

    @property
    def is_cancelled(self) -> bool:
        return self.status == TransactionStatus.CANCELLED


class Customer(BaseModel):
    id: str
    phone: str
    name: str = ""
    points: int = Field(default=0, ge=0)


class StaffUser(BaseModel):
    id: str
    name: str
    password: str = ""
    role: Literal["admin", "manager", "staff", "kitchen", "display"] = "staff"
