import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from app.application.cart import Cart
from app.application.loyalty import LoyaltyLedger
from app.application.sync_coordinator import SyncCoordinator, WriteKind
from app.domain import transitions
from app.domain.errors import (
    EmptyCartError,
    InsufficientPointsError,
    InvalidTransitionError,
    MissingCustomerNameError,
    NotFoundError,
    NotRedeemableError,
    RemoteStoreError,
)
from app.domain.order_numbers import to_epoch_ms
from app.domain.schemas import CartItem, KitchenStatus, PaymentMethod, Transaction, TransactionStatus
from app.domain.stock import Availability, apply_deductions, availability, compute_deductions
from app.infrastructure.local_cache import LocalCache

logger = logging.getLogger(__name__)

# --- CONFIG ---
DEFAULT_SELLER_NAME = "Caixa"

# (product_id, quantity, note)
CartLine = Tuple[str, int, str]


class Orchestrator:
    """Entry point for every till, kitchen and self-service action."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        ledger: LoyaltyLedger,
        cache: Optional[LocalCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
        points_per_unit: Optional[int] = None,
    ):
        self.coordinator = coordinator
        self.ledger = ledger
        self.cache = cache or coordinator.cache
        self.clock = clock or coordinator.clock
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.points_per_unit = points_per_unit

    # --- AVAILABILITY & CART ---

    def availability(self, product_id: str) -> Availability:
        return availability(self.coordinator.get_product(product_id), self.coordinator.catalog)

    def add_to_cart(self, cart: Cart, product_id: str, quantity: int = 1) -> CartItem:
        return cart.add(self.coordinator.get_product(product_id), self.coordinator.catalog, quantity)

    def change_quantity(self, cart: Cart, product_id: str, delta: int) -> CartItem:
        return cart.change_quantity(product_id, delta, self.coordinator.catalog)

    def build_cart(self, lines: Iterable[CartLine]) -> Cart:
        """Cart from (product_id, quantity, note) lines, validated one add at a time."""
        cart = Cart()
        for product_id, quantity, note in lines:
            self.add_to_cart(cart, product_id, quantity)
            if note:
                cart.set_note(product_id, note)
        return cart

    def load_pending_order(self, order_id: str) -> Cart:
        order = self.coordinator.get_transaction(order_id)
        if order.status != TransactionStatus.PENDING_PAYMENT:
            raise InvalidTransitionError(order.id, "load for payment", order.status.value)
        return Cart.from_order(order)

    # --- SESSION ---

    def seller_name(self, explicit: Optional[str] = None) -> str:
        if explicit:
            return explicit
        active = self.cache.get_active_session()
        return active.name if active else DEFAULT_SELLER_NAME

    # --- ORDER CREATION ---

    def _existing(self, order_id: Optional[str]) -> Optional[Transaction]:
        # Re-submitting the same client id returns the first result instead of a second order
        if order_id is None:
            return None
        try:
            return self.coordinator.get_transaction(order_id)
        except NotFoundError:
            return None

    def _draft(self, cart: Cart, order_id: Optional[str], order_number: str, **fields) -> Transaction:
        fields.setdefault("subtotal", cart.subtotal)
        return Transaction(
            id=order_id or self.id_factory(),
            order_number=order_number,
            timestamp=to_epoch_ms(self.clock()),
            items=[i.model_copy() for i in cart.items],
            **fields,
        )

    async def submit_self_order(self, cart: Cart, customer_name: str, order_id: Optional[str] = None) -> Transaction:
        """Customer device: order goes to the till inbox awaiting payment."""
        existing = self._existing(order_id)
        if existing is not None:
            return existing
        if not (customer_name or "").strip():
            raise MissingCustomerNameError()
        if cart.is_empty:
            raise EmptyCartError()
        cart.validate(self.coordinator.catalog)

        order = await self.coordinator.create_transaction(lambda number: self._draft(
            cart,
            order_id,
            number,
            customer_name=customer_name.strip(),
            payment_method=PaymentMethod.AWAITING,
            status=TransactionStatus.PENDING_PAYMENT,
            kitchen_status=KitchenStatus.PENDING,
        ))
        logger.info(f"📥 Self-service order #{order.order_number} for {order.customer_name}")
        return order

    async def checkout(
        self,
        cart: Cart,
        *,
        payment_method: PaymentMethod,
        discount: float = 0.0,
        seller_name: Optional[str] = None,
        customer_name: str = "",
        customer_id: Optional[str] = None,
        amount_paid: Optional[float] = None,
        change: Optional[float] = None,
        order_id: Optional[str] = None,
    ) -> Transaction:
        """Till sale. Confirms the loaded pending order, or creates and confirms a new one."""
        if cart.is_empty:
            raise EmptyCartError()

        if cart.pending_order_id:
            return await self.confirm_payment(
                cart.pending_order_id,
                payment_method=payment_method,
                seller_name=seller_name,
                discount=discount,
                items=cart.items,
                amount_paid=amount_paid,
                change=change,
                customer_name=customer_name or None,
                customer_id=customer_id,
            )

        existing = self._existing(order_id)
        if existing is not None:
            return existing
        cart.validate(self.coordinator.catalog)
        seller = self.seller_name(seller_name)

        def build(number: str) -> Transaction:
            pending = self._draft(
                cart,
                order_id,
                number,
                customer_name=customer_name or cart.customer_name,
                customer_id=customer_id,
                discount=discount,
            )
            return transitions.confirm_payment(
                pending,
                payment_method=payment_method,
                seller_name=seller,
                amount_paid=amount_paid,
                change=change,
                points_per_unit=self.points_per_unit,
            )

        order = await self._after_payment(await self.coordinator.create_transaction(build))
        logger.info(f"💰 Order #{order.order_number} paid ({order.payment_method.value}, {order.total:.2f})")
        return order

    async def redeem_order(
        self,
        customer_id: str,
        cart: Cart,
        seller_name: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Transaction:
        """Order paid entirely with loyalty points."""
        # Checked before the debit: a retried request must not spend the points twice
        existing = self._existing(order_id)
        if existing is not None:
            return existing
        if cart.is_empty:
            raise EmptyCartError()
        for item in cart.items:
            if not item.points_price:
                raise NotRedeemableError(item.product_id, item.name)
        cart.validate(self.coordinator.catalog)

        cost = sum(item.points_price * item.quantity for item in cart.items)
        customer = await self.ledger.get(customer_id)
        result = await self.ledger.redeem(customer_id, cost)
        if not result.ok:
            raise InsufficientPointsError(cost, result.balance)

        seller = self.seller_name(seller_name)
        order = await self.coordinator.create_transaction(lambda number: self._draft(
            cart,
            order_id,
            number,
            customer_name=customer.name,
            customer_id=customer_id,
            payment_method=PaymentMethod.LOYALTY_POINTS,
            status=TransactionStatus.COMPLETED,
            kitchen_status=KitchenStatus.PENDING,
            seller_name=seller,
            points_redeemed=cost,
            subtotal=0.0,
        ))
        await self._deduct_stock(order.items)
        logger.info(f"🎟️ Order #{order.order_number} redeemed for {cost} pts")
        return order

    # --- TRANSITIONS ---

    async def confirm_payment(
        self,
        order_id: str,
        *,
        payment_method: PaymentMethod,
        seller_name: Optional[str] = None,
        discount: Optional[float] = None,
        items: Optional[List[CartItem]] = None,
        amount_paid: Optional[float] = None,
        change: Optional[float] = None,
        customer_name: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Transaction:
        order = self.coordinator.get_transaction(order_id)
        if items is not None:
            edited = Cart()
            edited.items = list(items)
            edited.validate(self.coordinator.catalog)
        attached = {k: v for k, v in {"customer_name": customer_name, "customer_id": customer_id}.items() if v}
        if attached:
            order = order.model_copy(update=attached)

        confirmed = transitions.confirm_payment(
            order,
            payment_method=payment_method,
            seller_name=self.seller_name(seller_name),
            discount=discount,
            items=items,
            amount_paid=amount_paid,
            change=change,
            points_per_unit=self.points_per_unit,
        )
        await self.coordinator.save_transaction(confirmed, WriteKind.CONFIRM)
        confirmed = await self._after_payment(confirmed)
        logger.info(f"💰 Order #{confirmed.order_number} payment confirmed")
        return confirmed

    async def cancel(self, order_id: str) -> Transaction:
        order = self.coordinator.get_transaction(order_id)
        cancelled = transitions.cancel(order)
        if cancelled is order:
            return order
        await self.coordinator.save_transaction(cancelled, WriteKind.STATUS)
        logger.info(f"🚫 Order #{cancelled.order_number} cancelled")
        return cancelled

    async def mark_kitchen_done(self, order_id: str) -> Transaction:
        order = transitions.mark_kitchen_done(self.coordinator.get_transaction(order_id))
        await self.coordinator.save_transaction(order, WriteKind.KITCHEN)
        return order

    async def return_to_prep(self, order_id: str) -> Transaction:
        order = transitions.return_to_prep(self.coordinator.get_transaction(order_id))
        await self.coordinator.save_transaction(order, WriteKind.KITCHEN)
        return order

    # --- LOYALTY ---

    async def add_points(self, customer_id: str, amount: int) -> int:
        return await self.ledger.earn(customer_id, amount)

    async def redeem_points(self, customer_id: str, amount: int) -> int:
        result = await self.ledger.redeem(customer_id, amount)
        if not result.ok:
            raise InsufficientPointsError(amount, result.balance)
        return result.balance

    # --- SIDE EFFECTS OF A SALE ---

    async def _after_payment(self, order: Transaction) -> Transaction:
        await self._deduct_stock(order.items)
        if order.customer_id and order.points_earned:
            try:
                await self.ledger.earn(order.customer_id, order.points_earned)
            except (RemoteStoreError, NotFoundError) as e:
                # Stored without points_earned so the order reads as not credited
                logger.warning(f"⚠️ {order.points_earned} pts for order #{order.order_number} not credited: {e}")
                order = order.model_copy(update={"points_earned": None})
                await self.coordinator.save_transaction(order, WriteKind.CREATE)
        return order

    async def _deduct_stock(self, items: List[CartItem]) -> None:
        updated = apply_deductions(self.coordinator.catalog, compute_deductions(items))
        if updated:
            await self.coordinator.save_products(updated)
            sold_out = [p.name for p in updated if not p.is_available]
            if sold_out:
                logger.info(f"📦 Sold out: {', '.join(sold_out)}")
