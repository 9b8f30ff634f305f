from datetime import datetime, timedelta

import pytest

from cafe_billing.models.billing import Bill
from cafe_billing.services import bill_service, order_service, payment_service
from cafe_billing.services import device_session_service as sessions
from cafe_billing.services.bill_service import derive_bill_status
from cafe_billing.services.ledger_service import get_bill_events
from cafe_billing.validation import ConflictError, InvalidStateError, NotFoundError, ValidationError


T0 = datetime(2026, 10, 18, 18, 0, 0)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def assert_balanced(bill: Bill):
    assert bill.remaining_cents == bill.total_cents - bill.paid_cents


def test_bill_numbers_are_sequential(db_session):
    first = bill_service.create_bill()
    second = bill_service.create_bill(bill_type="computer")
    assert first.bill_number == "BILL-0001"
    assert second.bill_number == "BILL-0002"
    assert second.bill_type == "computer"


def test_create_bill_rejects_unknown_type(db_session):
    with pytest.raises(ValidationError):
        bill_service.create_bill(bill_type="arcade")


def test_active_session_counts_zero_until_it_ends(computer, cafe_bill, make_order):
    make_order(cafe_bill.id, ("Burger", 2500, 2))
    session = sessions.start_session(computer.id, "computer", 1, bill_id=cafe_bill.id, now=T0)

    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.total_cents == 5000
    summary = bill_service.get_bill_summary(bill.id, now=at(88))
    assert summary["live_estimate_cents"] == 2200
    assert summary["has_active_sessions"] is True

    sessions.end_session(session.id, now=at(88))
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.total_cents == 7200
    assert bill.remaining_cents == 7200
    assert bill_service.get_bill_summary(bill.id)["live_estimate_cents"] == 0


def test_attach_is_idempotent_for_same_bill(cafe_bill, make_order):
    order = make_order(None, ("Tea", 500, 3))
    bill_service.attach_order_to_bill(cafe_bill.id, order.id)
    bill = bill_service.attach_order_to_bill(cafe_bill.id, order.id)

    assert bill.total_cents == 1500
    assert [o.id for o in bill.orders] == [order.id]
    attached = [e for e in get_bill_events(bill.id) if e.event_type == "order.attached"]
    assert len(attached) == 1


def test_attach_owned_by_other_bill_conflicts(playstation, cafe_bill, make_order):
    other = bill_service.create_bill()
    order = make_order(other.id, ("Tea", 500, 1))
    with pytest.raises(ConflictError):
        bill_service.attach_order_to_bill(cafe_bill.id, order.id)

    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    with pytest.raises(ConflictError):
        bill_service.attach_session_to_bill(cafe_bill.id, session.id)


def test_attach_to_closed_bill_is_rejected(cafe_bill, make_order):
    order = make_order(None, ("Tea", 500, 1))
    payment_service.cancel_bill(cafe_bill.id)
    with pytest.raises(InvalidStateError):
        bill_service.attach_order_to_bill(cafe_bill.id, order.id)


def test_cancelled_order_cannot_be_attached(cafe_bill, make_order):
    order = make_order(None, ("Tea", 500, 1))
    order_service.update_order_status(order.id, "cancelled")
    with pytest.raises(InvalidStateError):
        bill_service.attach_order_to_bill(cafe_bill.id, order.id)


def test_attach_unknown_entities(cafe_bill):
    with pytest.raises(NotFoundError):
        bill_service.attach_order_to_bill(cafe_bill.id, 4242)
    with pytest.raises(NotFoundError):
        bill_service.attach_session_to_bill(cafe_bill.id, 4242)
    with pytest.raises(NotFoundError):
        bill_service.attach_order_to_bill(4242, 1)


def test_ending_session_reopens_a_settled_bill(playstation, cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 2))
    session = sessions.start_session(playstation.id, "playstation", 1, bill_id=cafe_bill.id, now=T0)
    payment_service.add_payment(cafe_bill.id, 1000, "cash", now=at(10))
    assert bill_service.get_bill(cafe_bill.id).status == "paid"

    # The running session was not part of the settled total; its cost is folded in at end
    sessions.end_session(session.id, now=at(60))
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.total_cents == 3000
    assert bill.paid_cents == 1000
    assert bill.status == "partial"
    assert order.bill_id == cafe_bill.id


def test_discount_percentage_wins_over_fixed_discount(cafe_bill, make_order):
    make_order(cafe_bill.id, ("Pizza", 1999, 1))

    bill = bill_service.update_bill(cafe_bill.id, discount_cents=500, tax_cents=100)
    assert bill.applied_discount_cents == 500
    assert bill.total_cents == 1999 + 100 - 500

    bill = bill_service.update_bill(cafe_bill.id, discount_percentage=10)
    assert bill.applied_discount_cents == 200  # 199.9 -> 200
    assert bill.total_cents == 1999 + 100 - 200
    assert_balanced(bill)

    bill = bill_service.update_bill(cafe_bill.id, discount_percentage=None, discount_cents=99999)
    assert bill.total_cents == 0
    assert bill.status == "draft"


def test_update_bill_validates_input(cafe_bill):
    with pytest.raises(ValidationError):
        bill_service.update_bill(cafe_bill.id, discount_cents=-1)
    with pytest.raises(ValidationError):
        bill_service.update_bill(cafe_bill.id, discount_percentage=120)
    with pytest.raises(ValidationError):
        bill_service.update_bill(cafe_bill.id, tax_cents=-5)


def test_status_derivation():
    assert derive_bill_status("draft", 0, 0, 0) == "draft"
    assert derive_bill_status("draft", 1000, 0, 1000) == "draft"
    assert derive_bill_status("draft", 1000, 400, 600) == "partial"
    assert derive_bill_status("partial", 1000, 1000, 0) == "paid"
    assert derive_bill_status("partial", 1000, 1500, -500) == "paid"
    assert derive_bill_status("paid", 2000, 1000, 1000) == "partial"
    assert derive_bill_status("cancelled", 1000, 1000, 0) == "cancelled"


def test_overdue_is_a_read_time_overlay(db_session):
    bill = bill_service.create_bill(due_at=at(30))

    assert bill.effective_status(now=at(10)) == "draft"
    assert bill.effective_status(now=at(31)) == "overdue"
    assert bill.status == "draft"
    assert bill.to_dict(now=at(31))["status"] == "overdue"
    assert [b.id for b in bill_service.list_bills(status="overdue", now=at(31))] == [bill.id]
    assert bill_service.list_bills(status="overdue", now=at(10)) == []


def test_bill_items_report_paid_and_remaining(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3), ("Cake", 800, 1))
    payment_service.add_partial_payment(
        cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 2}], "cash"
    )

    items = {i["item_name"]: i for i in bill_service.get_bill_items(cafe_bill.id)}
    assert items["Tea"]["paid_quantity"] == 2
    assert items["Tea"]["remaining_quantity"] == 1
    assert items["Tea"]["remaining_cents"] == 500
    assert items["Tea"]["is_settled"] is False
    assert items["Cake"]["paid_quantity"] == 0


def test_cancelling_order_refolds_bill(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))
    assert bill_service.get_bill(cafe_bill.id).total_cents == 1500

    order_service.update_order_status(order.id, "cancelled")
    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.total_cents == 0
    assert_balanced(bill)


def test_cancelling_order_on_paid_bill_is_rejected(cafe_bill, make_order):
    make_order(cafe_bill.id, ("Tea", 1000, 1))
    cake = make_order(cafe_bill.id, ("Cake", 2000, 1))
    payment_service.add_payment(cafe_bill.id, 3000, "cash")

    with pytest.raises(InvalidStateError):
        order_service.update_order_status(cake.id, "cancelled")

    bill = bill_service.get_bill(cafe_bill.id)
    assert (bill.status, bill.total_cents, bill.remaining_cents) == ("paid", 3000, 0)
    assert order_service.get_order(cake.id).status == "pending"


def test_cancelling_order_on_cancelled_bill_is_rejected(cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Cake", 2000, 1))
    payment_service.cancel_bill(cafe_bill.id)

    with pytest.raises(InvalidStateError):
        order_service.update_order_status(order.id, "cancelled")

    bill = bill_service.get_bill(cafe_bill.id)
    assert bill.status == "cancelled"
    assert bill.total_cents == 2000
    assert order_service.get_order(order.id).status == "pending"


def test_attach_session_to_its_own_bill_is_a_no_op(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    bill = bill_service.attach_session_to_bill(session.bill_id, session.id)

    assert [s.id for s in bill.sessions] == [session.id]
    attached = [e for e in get_bill_events(bill.id) if e.event_type == "session.attached"]
    assert len(attached) == 1


def test_recompute_repairs_drifted_totals(cafe_bill, make_order, db_session):
    make_order(cafe_bill.id, ("Tea", 500, 2))
    bill = bill_service.get_bill(cafe_bill.id)
    bill.total_cents = 1
    bill.remaining_cents = 1
    db_session.commit()

    bill = bill_service.recompute_bill_totals(cafe_bill.id)
    assert bill.total_cents == 1000
    assert bill.remaining_cents == 1000


def test_order_lines_merge_and_reject_price_mismatch(db_session):
    order = order_service.create_order([
        {"name": "Tea", "price_cents": 500, "quantity": 1},
        {"name": "Tea", "price_cents": 500, "quantity": 2},
    ])
    assert [(i.name, i.quantity) for i in order.items] == [("Tea", 3)]

    with pytest.raises(ValidationError):
        order_service.create_order([
            {"name": "Tea", "price_cents": 500, "quantity": 1},
            {"name": "Tea", "price_cents": 600, "quantity": 1},
        ])


def test_order_status_flow_and_prepared_count(db_session):
    order = order_service.create_order([
        {"name": "Tea", "price_cents": 500, "quantity": 2},
        {"name": "Cake", "price_cents": 800, "quantity": 1},
    ])
    order = order_service.update_prepared_count(order.id, "Tea", 2)
    assert order.status == "preparing"
    order = order_service.update_prepared_count(order.id, "Cake", 1, now=at(15))
    assert order.status == "ready"
    assert order.ready_at == at(15)

    with pytest.raises(InvalidStateError):
        order_service.update_order_status(order.id, "cancelled")
    order = order_service.update_order_status(order.id, "delivered")
    assert order.status == "delivered"

    with pytest.raises(InvalidStateError):
        order_service.update_prepared_count(order.id, "Tea", 1)
    with pytest.raises(ValidationError):
        order_service.update_order_status(order.id, "eaten")
