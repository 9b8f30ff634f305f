from datetime import datetime, timedelta

import pytest

from cafe_billing.models import PartialPayment
from cafe_billing.services import bill_service, order_service, payment_service
from cafe_billing.services import device_session_service as sessions
from cafe_billing.validation import (
    InvalidStateError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)


T0 = datetime(2026, 10, 18, 18, 0, 0)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def balanced(bill_id: int) -> bool:
    bill = bill_service.get_bill(bill_id)
    return bill.remaining_cents == bill.total_cents - bill.paid_cents


# =============================================================================
# ITEMIZED PAYMENTS
# =============================================================================

def test_partial_item_payment_respects_ordered_quantity(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))

    payment_service.add_partial_payment(
        cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 2}], "cash"
    )
    assert payment_service.get_remaining_quantity_for_item(order.order_number, "Tea") == 1
    assert balanced(cafe_bill.id)

    with pytest.raises(OverpaymentError) as exc_info:
        payment_service.add_partial_payment(
            cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 2}], "cash"
        )
    offending = exc_info.value.details["items"]
    assert offending[0]["item_name"] == "Tea"
    assert offending[0]["remaining_quantity"] == 1

    assert payment_service.get_paid_quantity_for_item(order.order_number, "Tea") == 2
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.paid_cents == 1000
    assert bill.remaining_cents == 500
    assert bill.status == "partial"


def test_partial_payment_is_all_or_nothing(cafe_bill, make_order, db_session):
    order = make_order(cafe_bill.id, ("Tea", 500, 3), ("Cake", 800, 1), ("Juice", 400, 1))

    with pytest.raises(OverpaymentError) as exc_info:
        payment_service.add_partial_payment(
            cafe_bill.id,
            order.order_number,
            [
                {"item_name": "Tea", "quantity": 1},
                {"item_name": "Cake", "quantity": 2},
                {"item_name": "Juice", "quantity": 0},
            ],
            "card",
        )

    names = sorted(line["item_name"] for line in exc_info.value.details["items"])
    assert names == ["Cake", "Juice"]
    assert db_session.query(PartialPayment).count() == 0
    assert payment_service.get_paid_quantity_for_item(order.order_number, "Tea") == 0
    assert bill_service.get_bill(cafe_bill.id).paid_cents == 0


def test_repeated_lines_in_one_batch_are_summed(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))

    with pytest.raises(OverpaymentError):
        payment_service.add_partial_payment(
            cafe_bill.id,
            order.order_number,
            [{"item_name": "Tea", "quantity": 2}, {"item_name": "Tea", "quantity": 2}],
            "cash",
        )

    partial = payment_service.add_partial_payment(
        cafe_bill.id,
        order.order_number,
        [{"item_name": "Tea", "quantity": 1}, {"item_name": "Tea", "quantity": 2}],
        "cash",
    )
    assert partial.total_cents == 1500
    assert bill_service.get_bill(cafe_bill.id).status == "paid"


def test_partial_payment_unknown_order_or_item(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))
    elsewhere = make_order(None, ("Tea", 500, 3))

    with pytest.raises(NotFoundError):
        payment_service.add_partial_payment(
            cafe_bill.id, order.order_number, [{"item_name": "Coffee", "quantity": 1}], "cash"
        )
    with pytest.raises(NotFoundError):
        payment_service.add_partial_payment(
            cafe_bill.id, elsewhere.order_number, [{"item_name": "Tea", "quantity": 1}], "cash"
        )
    with pytest.raises(NotFoundError):
        payment_service.get_remaining_quantity_for_item("ORD-9999", "Tea")


def test_partial_payment_input_validation(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))

    with pytest.raises(ValidationError):
        payment_service.add_partial_payment(cafe_bill.id, order.order_number, [], "cash")
    with pytest.raises(ValidationError):
        payment_service.add_partial_payment(
            cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": "2"}], "cash"
        )
    with pytest.raises(ValidationError):
        payment_service.add_partial_payment(
            cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 1}], "bitcoin"
        )


def test_order_with_partial_payments_cannot_be_cancelled(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))
    payment_service.add_partial_payment(
        cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 1}], "cash"
    )
    with pytest.raises(InvalidStateError):
        order_service.update_order_status(order.id, "cancelled")


# =============================================================================
# FULL PAYMENTS
# =============================================================================

def test_payments_move_status_draft_partial_paid(cafe_bill, make_order):
    make_order(cafe_bill.id, ("Burger", 2500, 2))
    assert bill_service.get_bill(cafe_bill.id).status == "draft"

    payment_service.add_payment(cafe_bill.id, 2000, "card")
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.status == "partial"
    assert bill.remaining_cents == 3000

    payment_service.add_payment(cafe_bill.id, 3000, "transfer", reference="TRX-1")
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.status == "paid"
    assert bill.remaining_cents == 0

    with pytest.raises(InvalidStateError):
        payment_service.add_payment(cafe_bill.id, 100, "cash")


def test_overpayment_by_amount_is_allowed(cafe_bill, make_order):
    make_order(cafe_bill.id, ("Tea", 500, 1))
    payment_service.add_payment(cafe_bill.id, 2000, "cash")

    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.paid_cents == 2000
    assert bill.remaining_cents == -1500
    assert bill.status == "paid"


def test_payment_validation(cafe_bill):
    with pytest.raises(ValidationError):
        payment_service.add_payment(cafe_bill.id, 0, "cash")
    with pytest.raises(ValidationError):
        payment_service.add_payment(cafe_bill.id, -100, "cash")
    with pytest.raises(ValidationError):
        payment_service.add_payment(cafe_bill.id, 100, "voucher")
    with pytest.raises(NotFoundError):
        payment_service.add_payment(4242, 100, "cash")


def test_payment_on_empty_bill_keeps_it_partial(cafe_bill):
    payment_service.add_payment(cafe_bill.id, 500, "cash")
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.total_cents == 0
    assert bill.remaining_cents == -500
    assert bill.status == "partial"


# =============================================================================
# SESSION PAYMENTS
# =============================================================================

def test_session_payment_is_bounded_by_final_cost(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)

    with pytest.raises(InvalidStateError):
        payment_service.add_session_payment(session.bill_id, session.id, 500, "cash")

    sessions.end_session(session.id, now=at(60))
    payment_service.add_session_payment(session.bill_id, session.id, 1500, "cash")
    assert payment_service.get_session_paid_cents(session.id) == 1500

    with pytest.raises(OverpaymentError) as exc_info:
        payment_service.add_session_payment(session.bill_id, session.id, 600, "card")
    assert exc_info.value.details["unpaid_cents"] == 500

    payment_service.add_session_payment(session.bill_id, session.id, 500, "card")
    bill = bill_service.get_bill(session.bill_id)
    assert bill.status == "paid"
    assert bill.remaining_cents == 0


def test_session_payment_requires_session_on_bill(playstation, cafe_bill):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.end_session(session.id, now=at(30))
    with pytest.raises(NotFoundError):
        payment_service.add_session_payment(cafe_bill.id, session.id, 100, "cash")


# =============================================================================
# CANCELLATION + HISTORY
# =============================================================================

def test_cancel_bill_rules(playstation, cafe_bill, make_order):
    make_order(cafe_bill.id, ("Tea", 500, 3))
    payment_service.add_payment(cafe_bill.id, 500, "cash")
    session = sessions.start_session(playstation.id, "playstation", 1, bill_id=cafe_bill.id, now=T0)

    with pytest.raises(InvalidStateError) as exc_info:
        payment_service.cancel_bill(cafe_bill.id)
    assert exc_info.value.details["active_session_ids"] == [session.id]

    sessions.end_session(session.id, now=at(30))
    bill = payment_service.cancel_bill(cafe_bill.id, reason="Customer left")
    assert bill.status == "cancelled"
    assert bill.cancel_reason == "Customer left"
    assert len(bill.payments) == 1
    assert bill.paid_cents == 500

    with pytest.raises(InvalidStateError):
        payment_service.cancel_bill(cafe_bill.id)
    with pytest.raises(InvalidStateError):
        payment_service.add_payment(cafe_bill.id, 100, "cash")


def test_paid_bill_cannot_be_cancelled(cafe_bill, make_order):
    make_order(cafe_bill.id, ("Tea", 500, 1))
    payment_service.add_payment(cafe_bill.id, 500, "cash")
    with pytest.raises(InvalidStateError):
        payment_service.cancel_bill(cafe_bill.id)


def test_payment_history_and_partial_summary(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3), ("Cake", 800, 2))
    payment_service.add_partial_payment(
        cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 1}], "cash", now=at(1)
    )
    payment_service.add_partial_payment(
        cafe_bill.id,
        order.order_number,
        [{"item_name": "Tea", "quantity": 1}, {"item_name": "Cake", "quantity": 1}],
        "card",
        now=at(2),
    )
    payment_service.add_payment(cafe_bill.id, 700, "cash", now=at(3))

    history = payment_service.get_payment_history(cafe_bill.id)
    assert [h["event_type"] for h in history] == [
        "payment.partial_items",
        "payment.partial_items",
        "payment.full",
    ]
    assert [h["amount_cents"] for h in history] == [500, 1300, 700]

    summary = payment_service.get_partial_payments_summary(cafe_bill.id)
    by_name = {i["item_name"]: i for i in summary["items"]}
    assert summary["partial_payment_count"] == 2
    assert by_name["Tea"]["paid_quantity"] == 2
    assert by_name["Cake"]["paid_cents"] == 800
    assert summary["total_paid_cents"] == 1800

    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.paid_cents == 2500
    assert bill.total_cents == 3100
    assert balanced(cafe_bill.id)
