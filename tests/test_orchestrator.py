import asyncio
import itertools

import pytest

from app.application.cart import Cart
from app.application.loyalty import LoyaltyLedger
from app.application.orchestrator import DEFAULT_SELLER_NAME, Orchestrator
from app.application.sync_coordinator import ConnectivityState, SyncCoordinator
from app.domain.errors import (
    EmptyCartError,
    InsufficientPointsError,
    InsufficientStockError,
    InvalidTransitionError,
    MissingCustomerNameError,
    NotRedeemableError,
)
from app.domain.schemas import ComboItem, KitchenStatus, PaymentMethod, StaffUser, TransactionStatus
from app.domain.stock import Bounded

from conftest import TZ, FakeRemoteStore, make_product


@pytest.fixture()
def build(remote, cache, clock):
    """Returns a coroutine that wires an orchestrator and runs the first sync."""
    ids = itertools.count(1)

    async def _build(**products):
        remote.products = {p.id: p for p in products.values()}
        coordinator = SyncCoordinator(remote, cache, tz=TZ, clock=clock)
        await coordinator.sync()
        return Orchestrator(
            coordinator,
            LoyaltyLedger(remote, cache),
            id_factory=lambda: f"tx-{next(ids)}",
            points_per_unit=100,
        )

    return _build


def test_checkout_with_discount_and_loyalty(build, remote):
    async def scenario():
        orch = await build(pao=make_product("pao", stock=10, price=5.0))
        customer = await orch.ledger.register("11999990000", "Ana")
        cart = orch.build_cart([("pao", 2, "sem manteiga")])
        order = await orch.checkout(
            cart,
            payment_method=PaymentMethod.CASH,
            discount=2.0,
            customer_id=customer.id,
            amount_paid=10.0,
            change=2.0,
        )
        return orch, customer, order

    orch, customer, order = asyncio.run(scenario())
    assert order.subtotal == 10.0
    assert order.total == 8.0
    assert order.status == TransactionStatus.COMPLETED
    assert order.kitchen_status == KitchenStatus.PENDING
    assert order.order_number == "1"
    assert order.seller_name == DEFAULT_SELLER_NAME
    assert order.items[0].notes == "sem manteiga"
    assert order.points_earned == 800
    assert remote.customers[customer.id].points == 800
    assert remote.transactions[order.id].total == 8.0
    assert orch.coordinator.get_product("pao").stock == 8
    assert orch.coordinator.kitchen_queue()[0].id == order.id


def test_sale_that_empties_stock_marks_product_sold_out(build, remote):
    async def scenario():
        orch = await build(pao=make_product("pao", stock=3))
        await orch.checkout(orch.build_cart([("pao", 3, "")]), payment_method=PaymentMethod.PIX)
        return orch

    orch = asyncio.run(scenario())
    assert remote.products["pao"].stock == 0
    assert remote.products["pao"].is_available is False
    assert orch.availability("pao") == Bounded(0)
    with pytest.raises(InsufficientStockError):
        orch.build_cart([("pao", 1, "")])


def test_combo_sale_deducts_components(build):
    async def scenario():
        orch = await build(
            pao=make_product("pao", stock=5),
            queijo=make_product("queijo", stock=2),
            misto=make_product("misto", price=9.0, combo_items=[
                ComboItem(product_id="pao", quantity=2),
                ComboItem(product_id="queijo", quantity=1),
            ]),
        )
        assert orch.availability("misto") == Bounded(2)
        await orch.checkout(orch.build_cart([("misto", 2, "")]), payment_method=PaymentMethod.DEBIT)
        return orch

    orch = asyncio.run(scenario())
    assert orch.coordinator.get_product("pao").stock == 1
    assert orch.coordinator.get_product("queijo").stock == 0
    assert orch.availability("misto") == Bounded(0)


def test_checkout_rejects_an_empty_cart(build):
    async def scenario():
        orch = await build()
        await orch.checkout(Cart(), payment_method=PaymentMethod.CASH)

    with pytest.raises(EmptyCartError):
        asyncio.run(scenario())


def test_self_order_needs_a_name_and_lands_in_the_inbox(build, remote):
    async def scenario():
        orch = await build(cafe=make_product("cafe", price=4.0))
        with pytest.raises(MissingCustomerNameError):
            await orch.submit_self_order(orch.build_cart([("cafe", 1, "")]), "   ")
        order = await orch.submit_self_order(orch.build_cart([("cafe", 2, "")]), " Joao ")
        inbox = await orch.coordinator.pending_transactions()
        return order, inbox

    order, inbox = asyncio.run(scenario())
    assert order.customer_name == "Joao"
    assert order.status == TransactionStatus.PENDING_PAYMENT
    assert order.payment_method == PaymentMethod.AWAITING
    assert order.total == 8.0
    assert [t.id for t in inbox] == [order.id]
    assert remote.transactions[order.id].status == TransactionStatus.PENDING_PAYMENT


def test_self_order_is_idempotent_on_client_id(build, remote):
    async def scenario():
        orch = await build(cafe=make_product("cafe"))
        first = await orch.submit_self_order(orch.build_cart([("cafe", 1, "")]), "Joao", order_id="device-1")
        retry = await orch.submit_self_order(orch.build_cart([("cafe", 1, "")]), "Joao", order_id="device-1")
        return first, retry

    first, retry = asyncio.run(scenario())
    assert first.id == retry.id == "device-1"
    assert first.order_number == retry.order_number
    assert len(remote.transactions) == 1


def test_cashier_confirms_a_pending_self_order(build, remote):
    async def scenario():
        orch = await build(pao=make_product("pao", stock=10, price=5.0))
        orch.cache.set_active_session(StaffUser(id="u1", name="Bia"))
        pending = await orch.submit_self_order(orch.build_cart([("pao", 1, "")]), "Joao")
        cart = orch.load_pending_order(pending.id)
        orch.change_quantity(cart, "pao", 1)
        paid = await orch.checkout(cart, payment_method=PaymentMethod.CREDIT)
        with pytest.raises(InvalidTransitionError):
            orch.load_pending_order(pending.id)
        return orch, pending, paid

    orch, pending, paid = asyncio.run(scenario())
    assert paid.id == pending.id
    assert paid.order_number == pending.order_number
    assert paid.status == TransactionStatus.COMPLETED
    assert paid.subtotal == 10.0
    assert paid.seller_name == "Bia"
    assert remote.transactions[paid.id].status == TransactionStatus.COMPLETED
    assert orch.coordinator.get_product("pao").stock == 8


def test_order_numbers_increase_through_the_day(build):
    async def scenario():
        orch = await build(cafe=make_product("cafe"))
        numbers = []
        for _ in range(3):
            order = await orch.checkout(orch.build_cart([("cafe", 1, "")]), payment_method=PaymentMethod.CASH)
            numbers.append(order.order_number)
        return numbers

    assert asyncio.run(scenario()) == ["1", "2", "3"]


def test_concurrent_checkouts_get_distinct_numbers(cache, clock):
    class SlowNumbers(FakeRemoteStore):
        async def fetch_next_order_number(self):
            # Yield mid-request the way a network round trip would
            await asyncio.sleep(0)
            return await super().fetch_next_order_number()

    remote = SlowNumbers(clock=clock)
    remote.products = {"cafe": make_product("cafe")}

    async def scenario():
        coordinator = SyncCoordinator(remote, cache, tz=TZ, clock=clock)
        await coordinator.sync()
        orch = Orchestrator(coordinator, LoyaltyLedger(remote, cache))
        return await asyncio.gather(*(
            orch.checkout(orch.build_cart([("cafe", 1, "")]), payment_method=PaymentMethod.PIX)
            for _ in range(3)
        ))

    orders = asyncio.run(scenario())
    assert sorted(o.order_number for o in orders) == ["1", "2", "3"]
    assert sorted(t.order_number for t in remote.transactions.values()) == ["1", "2", "3"]


def test_checkout_while_remote_is_down(build, remote):
    async def scenario():
        orch = await build(cafe=make_product("cafe"))
        remote.online = False
        order = await orch.checkout(orch.build_cart([("cafe", 1, "")]), payment_method=PaymentMethod.CASH)
        state_during = orch.coordinator.state
        remote.online = True
        state_after = await orch.coordinator.sync()
        return order, state_during, state_after

    order, during, after = asyncio.run(scenario())
    assert during == ConnectivityState.DEGRADED
    assert after == ConnectivityState.ONLINE
    assert remote.transactions[order.id].status == TransactionStatus.COMPLETED


def test_redeem_order_spends_points(build, remote):
    async def scenario():
        orch = await build(
            cafe=make_product("cafe", price=4.0, points_price=400),
            bolo=make_product("bolo", price=7.0),
        )
        customer = await orch.ledger.register("11999990000", "Ana")
        await orch.add_points(customer.id, 1000)

        with pytest.raises(NotRedeemableError):
            await orch.redeem_order(customer.id, orch.build_cart([("bolo", 1, "")]))
        with pytest.raises(InsufficientPointsError):
            await orch.redeem_order(customer.id, orch.build_cart([("cafe", 3, "")]))

        order = await orch.redeem_order(customer.id, orch.build_cart([("cafe", 2, "")]))
        return customer, order

    customer, order = asyncio.run(scenario())
    assert order.payment_method == PaymentMethod.LOYALTY_POINTS
    assert order.status == TransactionStatus.COMPLETED
    assert order.total == 0.0
    assert order.points_redeemed == 800
    assert order.points_earned is None
    assert order.customer_name == "Ana"
    assert remote.customers[customer.id].points == 200


def test_cancel_then_kitchen_is_blocked(build, remote):
    async def scenario():
        orch = await build(cafe=make_product("cafe"))
        order = await orch.checkout(orch.build_cart([("cafe", 1, "")]), payment_method=PaymentMethod.CASH)
        done = await orch.mark_kitchen_done(order.id)
        back = await orch.return_to_prep(order.id)
        cancelled = await orch.cancel(order.id)
        again = await orch.cancel(order.id)
        with pytest.raises(InvalidTransitionError):
            await orch.mark_kitchen_done(order.id)
        return orch, done, back, cancelled, again

    orch, done, back, cancelled, again = asyncio.run(scenario())
    assert done.kitchen_status == KitchenStatus.DONE
    assert back.kitchen_status == KitchenStatus.PENDING
    assert cancelled.status == TransactionStatus.CANCELLED
    assert again is orch.coordinator.get_transaction(cancelled.id)
    assert remote.transactions[cancelled.id].status == TransactionStatus.CANCELLED
    assert orch.coordinator.kitchen_queue() == []


def test_redeem_order_is_idempotent_on_client_id(build, remote):
    async def scenario():
        orch = await build(cafe=make_product("cafe", price=4.0, points_price=400))
        customer = await orch.ledger.register("11999990000", "Ana")
        await orch.add_points(customer.id, 1000)
        first = await orch.redeem_order(customer.id, orch.build_cart([("cafe", 1, "")]), order_id="device-9")
        retry = await orch.redeem_order(customer.id, orch.build_cart([("cafe", 1, "")]), order_id="device-9")
        return customer, first, retry

    customer, first, retry = asyncio.run(scenario())
    assert first.id == retry.id == "device-9"
    assert first.order_number == retry.order_number
    assert len(remote.transactions) == 1
    assert remote.customers[customer.id].points == 600


def test_uncredited_points_are_cleared_from_the_order(build, remote):
    async def scenario():
        orch = await build(pao=make_product("pao", price=5.0))
        order = await orch.checkout(
            orch.build_cart([("pao", 2, "")]),
            payment_method=PaymentMethod.CASH,
            customer_id="ghost",
        )
        return orch, order

    orch, order = asyncio.run(scenario())
    assert order.customer_id == "ghost"
    assert order.points_earned is None
    assert orch.coordinator.get_transaction(order.id).points_earned is None
    assert remote.transactions[order.id].points_earned is None
    assert remote.transactions[order.id].status == TransactionStatus.COMPLETED


def test_uncredited_points_are_cleared_on_confirmed_self_order(build, remote):
    async def scenario():
        orch = await build(pao=make_product("pao", price=5.0))
        pending = await orch.submit_self_order(orch.build_cart([("pao", 1, "")]), "Joao")
        return await orch.confirm_payment(pending.id, payment_method=PaymentMethod.PIX, customer_id="ghost")

    paid = asyncio.run(scenario())
    assert paid.status == TransactionStatus.COMPLETED
    assert paid.points_earned is None
    assert remote.transactions[paid.id].points_earned is None
