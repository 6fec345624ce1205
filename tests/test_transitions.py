import pytest

from app.domain import transitions
from app.domain.errors import InvalidTransitionError
from app.domain.order_numbers import to_epoch_ms
from app.domain.schemas import CartItem, KitchenStatus, PaymentMethod, Transaction, TransactionStatus

from conftest import NOW


@pytest.fixture()
def pending():
    return Transaction(
        id="tx-1",
        order_number="1",
        customer_name="Ana",
        timestamp=to_epoch_ms(NOW),
        items=[CartItem(product_id="pao", name="Pao", price=5.0, quantity=2)],
        subtotal=10.0,
    )


def test_total_is_never_negative():
    tx = Transaction(id="t", order_number="1", timestamp=0, subtotal=5.0, discount=7.5)
    assert tx.total == 0.0


def test_confirm_payment_completes_and_queues_for_kitchen(pending):
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.PIX, seller_name="Bia", discount=2.0)

    assert paid.status == TransactionStatus.COMPLETED
    assert paid.kitchen_status == KitchenStatus.PENDING
    assert paid.payment_method == PaymentMethod.PIX
    assert paid.seller_name == "Bia"
    assert paid.total == 8.0
    # no customer attached, nothing earned
    assert paid.points_earned is None
    assert pending.status == TransactionStatus.PENDING_PAYMENT


def test_confirm_payment_with_customer_earns_points(pending):
    pending = pending.model_copy(update={"customer_id": "c-1"})
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.CASH, discount=2.0)
    assert paid.points_earned == 800


def test_confirm_payment_recomputes_subtotal_from_edited_items(pending):
    items = [CartItem(product_id="pao", name="Pao", price=5.0, quantity=3)]
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.DEBIT, items=items)
    assert paid.subtotal == 15.0
    assert paid.total == 15.0
    assert paid.items[0].quantity == 3


def test_confirm_payment_only_from_pending(pending):
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.CASH)
    with pytest.raises(InvalidTransitionError):
        transitions.confirm_payment(paid, payment_method=PaymentMethod.CASH)


def test_cancel_is_idempotent_and_terminal(pending):
    cancelled = transitions.cancel(pending)
    assert cancelled.status == TransactionStatus.CANCELLED
    assert transitions.cancel(cancelled) is cancelled

    with pytest.raises(InvalidTransitionError):
        transitions.confirm_payment(cancelled, payment_method=PaymentMethod.CASH)


def test_completed_orders_can_be_cancelled(pending):
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.CASH)
    assert transitions.cancel(paid).status == TransactionStatus.CANCELLED


def test_kitchen_toggle_leaves_status_alone(pending):
    paid = transitions.confirm_payment(pending, payment_method=PaymentMethod.CASH)
    done = transitions.mark_kitchen_done(paid)
    assert done.kitchen_status == KitchenStatus.DONE
    assert done.status == TransactionStatus.COMPLETED

    back = transitions.return_to_prep(done)
    assert back.kitchen_status == KitchenStatus.PENDING
    assert back.status == TransactionStatus.COMPLETED


def test_kitchen_changes_rejected_on_cancelled_orders(pending):
    cancelled = transitions.cancel(pending)
    with pytest.raises(InvalidTransitionError):
        transitions.mark_kitchen_done(cancelled)
    with pytest.raises(InvalidTransitionError):
        transitions.return_to_prep(cancelled)


@pytest.mark.parametrize("total, expected", [(8.0, 800), (0.29, 29), (10.999, 1099), (0.0, 0)])
def test_points_are_floored(total, expected):
    assert transitions.points_for_total(total, 100) == expected
