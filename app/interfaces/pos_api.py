from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from app.application.orchestrator import Orchestrator
from app.domain.reports import daily_summary
from app.domain.schemas import Customer, PaymentMethod, Product, StaffUser, Transaction
from app.domain.stock import as_count, availability

router = APIRouter()


# ---------------------------------------------------------
# Request bodies
# ---------------------------------------------------------
class CartLineIn(BaseModel):
    product_id: str
    quantity: int = Field(default=1, gt=0)
    notes: str = ""


class CheckoutIn(BaseModel):
    items: List[CartLineIn]
    payment_method: PaymentMethod
    discount: float = Field(default=0.0, ge=0)
    seller_name: Optional[str] = None
    customer_name: str = ""
    customer_id: Optional[str] = None
    amount_paid: Optional[float] = None
    change: Optional[float] = None
    pending_order_id: Optional[str] = None
    order_id: Optional[str] = None  # client-generated, makes retries idempotent


class SelfOrderIn(BaseModel):
    items: List[CartLineIn]
    customer_name: str = ""
    order_id: Optional[str] = None


class ConfirmPaymentIn(BaseModel):
    payment_method: PaymentMethod
    seller_name: Optional[str] = None
    discount: Optional[float] = Field(default=None, ge=0)
    amount_paid: Optional[float] = None
    change: Optional[float] = None
    customer_id: Optional[str] = None
    items: Optional[List[CartLineIn]] = None


class RedeemOrderIn(BaseModel):
    customer_id: str
    items: List[CartLineIn]
    seller_name: Optional[str] = None
    order_id: Optional[str] = None


class RegisterCustomerIn(BaseModel):
    phone: str
    name: str = ""


class PointsIn(BaseModel):
    amount: int = Field(gt=0)


class SessionIn(BaseModel):
    user_id: str


class PollingIn(BaseModel):
    active: bool


class ProductOut(Product):
    available: Optional[int] = None  # None = unbounded


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _lines(items: List[CartLineIn]):
    return [(i.product_id, i.quantity, i.notes) for i in items]


# ---------------------------------------------------------
# Health & snapshot
# ---------------------------------------------------------
@router.get("/health")
def health_check(request: Request):
    coordinator = _orchestrator(request).coordinator
    return {"status": coordinator.state.value, "pending_sync": coordinator.pending_count}


@router.get("/snapshot")
def read_snapshot(request: Request):
    snap = _orchestrator(request).coordinator.snapshot()
    return {
        "state": snap.state.value,
        "next_order_number": snap.next_order_number,
        "pending_sync": sorted(snap.pending_sync),
        "transactions": [t.model_dump(mode="json") for t in snap.transactions],
        "products": [p.model_dump(mode="json") for p in snap.products],
    }


@router.post("/sync")
async def trigger_sync(request: Request):
    coordinator = _orchestrator(request).coordinator
    state = await coordinator.sync()
    return {"status": state.value, "pending_sync": coordinator.pending_count}


@router.put("/sync/polling")
def set_polling(body: PollingIn, request: Request):
    scheduler = request.app.state.scheduler
    scheduler.set_active(body.active)
    return {"active": scheduler.active, "running": scheduler.running, "interval": scheduler.interval}


# ---------------------------------------------------------
# Catalog
# ---------------------------------------------------------
@router.get("/products", response_model=List[ProductOut])
def list_products(request: Request):
    catalog = _orchestrator(request).coordinator.catalog
    return [
        ProductOut(**p.model_dump(), available=as_count(availability(p, catalog)))
        for p in catalog.values()
    ]


@router.get("/products/{product_id}/availability")
def product_availability(product_id: str, request: Request):
    avail = _orchestrator(request).availability(product_id)
    return {"product_id": product_id, "available": as_count(avail), "unbounded": as_count(avail) is None}


@router.put("/products/{product_id}", response_model=Product)
async def upsert_product(product_id: str, product: Product, request: Request):
    product = product.model_copy(update={"id": product_id})
    await _orchestrator(request).coordinator.save_products([product])
    return product


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, request: Request):
    synced = await _orchestrator(request).coordinator.delete_product(product_id)
    return {"deleted": product_id, "synced": synced}


# ---------------------------------------------------------
# Orders
# ---------------------------------------------------------
@router.post("/orders/checkout", response_model=Transaction)
async def checkout(body: CheckoutIn, request: Request):
    orchestrator = _orchestrator(request)
    if body.pending_order_id:
        cart = orchestrator.load_pending_order(body.pending_order_id)
        cart.items = orchestrator.build_cart(_lines(body.items)).items
    else:
        cart = orchestrator.build_cart(_lines(body.items))
    return await orchestrator.checkout(
        cart,
        payment_method=body.payment_method,
        discount=body.discount,
        seller_name=body.seller_name,
        customer_name=body.customer_name,
        customer_id=body.customer_id,
        amount_paid=body.amount_paid,
        change=body.change,
        order_id=body.order_id,
    )


@router.post("/orders/self-service", response_model=Transaction)
async def self_service_order(body: SelfOrderIn, request: Request):
    orchestrator = _orchestrator(request)
    cart = orchestrator.build_cart(_lines(body.items))
    return await orchestrator.submit_self_order(cart, body.customer_name, order_id=body.order_id)


@router.post("/orders/redeem", response_model=Transaction)
async def redeem_order(body: RedeemOrderIn, request: Request):
    orchestrator = _orchestrator(request)
    cart = orchestrator.build_cart(_lines(body.items))
    return await orchestrator.redeem_order(
        body.customer_id, cart, seller_name=body.seller_name, order_id=body.order_id
    )


@router.get("/orders/pending", response_model=List[Transaction])
async def pending_orders(request: Request):
    return await _orchestrator(request).coordinator.pending_transactions()


@router.get("/orders/mine", response_model=List[Transaction])
async def my_orders(request: Request, ids: List[str] = Query(default=[])):
    return await _orchestrator(request).coordinator.transactions_by_ids(ids)


@router.get("/orders/{order_id}", response_model=Transaction)
def read_order(order_id: str, request: Request):
    return _orchestrator(request).coordinator.get_transaction(order_id)


@router.post("/orders/{order_id}/confirm-payment", response_model=Transaction)
async def confirm_payment(order_id: str, body: ConfirmPaymentIn, request: Request):
    orchestrator = _orchestrator(request)
    items = orchestrator.build_cart(_lines(body.items)).items if body.items is not None else None
    return await orchestrator.confirm_payment(
        order_id,
        payment_method=body.payment_method,
        seller_name=body.seller_name,
        discount=body.discount,
        items=items,
        amount_paid=body.amount_paid,
        change=body.change,
        customer_id=body.customer_id,
    )


@router.post("/orders/{order_id}/cancel", response_model=Transaction)
async def cancel_order(order_id: str, request: Request):
    return await _orchestrator(request).cancel(order_id)


@router.post("/orders/{order_id}/kitchen/done", response_model=Transaction)
async def kitchen_done(order_id: str, request: Request):
    return await _orchestrator(request).mark_kitchen_done(order_id)


@router.post("/orders/{order_id}/kitchen/pending", response_model=Transaction)
async def kitchen_return(order_id: str, request: Request):
    return await _orchestrator(request).return_to_prep(order_id)


# ---------------------------------------------------------
# Kitchen board
# ---------------------------------------------------------
@router.get("/kitchen/queue", response_model=List[Transaction])
def kitchen_queue(request: Request):
    return _orchestrator(request).coordinator.kitchen_queue()


@router.get("/kitchen/history", response_model=List[Transaction])
def kitchen_history(request: Request):
    return _orchestrator(request).coordinator.kitchen_history()


# ---------------------------------------------------------
# Loyalty
# ---------------------------------------------------------
@router.get("/loyalty/customers/{phone}", response_model=Optional[Customer])
async def lookup_customer(phone: str, request: Request):
    return await _orchestrator(request).ledger.lookup(phone)


@router.post("/loyalty/customers", response_model=Customer)
async def register_customer(body: RegisterCustomerIn, request: Request):
    return await _orchestrator(request).ledger.register(body.phone, body.name)


@router.post("/loyalty/customers/{customer_id}/points")
async def add_points(customer_id: str, body: PointsIn, request: Request):
    balance = await _orchestrator(request).add_points(customer_id, body.amount)
    return {"customer_id": customer_id, "points": balance}


@router.post("/loyalty/customers/{customer_id}/redeem")
async def redeem_points(customer_id: str, body: PointsIn, request: Request):
    balance = await _orchestrator(request).redeem_points(customer_id, body.amount)
    return {"customer_id": customer_id, "points": balance}


# ---------------------------------------------------------
# Staff session & reports
# ---------------------------------------------------------
@router.get("/users")
def list_users(request: Request):
    return [{"id": u.id, "name": u.name, "role": u.role} for u in _orchestrator(request).coordinator.users]


@router.put("/users/{user_id}")
async def upsert_user(user_id: str, user: StaffUser, request: Request):
    user = user.model_copy(update={"id": user_id})
    synced = await _orchestrator(request).coordinator.save_user(user)
    return {"id": user.id, "name": user.name, "role": user.role, "synced": synced}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, request: Request):
    synced = await _orchestrator(request).coordinator.delete_user(user_id)
    return {"deleted": user_id, "synced": synced}


@router.put("/session")
def start_session(body: SessionIn, request: Request):
    orchestrator = _orchestrator(request)
    user = orchestrator.coordinator.get_user(body.user_id)
    orchestrator.cache.set_active_session(user)
    return {"id": user.id, "name": user.name, "role": user.role}


@router.delete("/session")
def end_session(request: Request):
    _orchestrator(request).cache.clear_active_session()
    return {"ok": True}


@router.get("/reports/daily")
def read_daily_summary(request: Request):
    coordinator = _orchestrator(request).coordinator
    return asdict(daily_summary(coordinator.transactions, now=coordinator.clock(), tz=coordinator.tz))
