from datetime import datetime, timedelta, timezone

import pytest

from cafe_billing.services import device_session_service as sessions
from cafe_billing.services import payment_service
from cafe_billing.services.receipt_service import (
    get_public_receipt,
    normalize_receipt,
    normalize_timestamp,
)
from cafe_billing.validation import NotFoundError


T0 = datetime(2026, 10, 18, 18, 0, 0)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _keys(value):
    """Every dict key anywhere in a nested structure."""
    if isinstance(value, dict):
        for key, nested in value.items():
            yield key
            yield from _keys(nested)
    elif isinstance(value, list):
        for nested in value:
            yield from _keys(nested)


def test_public_receipt_hides_actor_identity(playstation, cafe_bill, make_order):
    order = make_order(cafe_bill.id, ("Tea", 500, 3))
    payment_service.add_partial_payment(
        cafe_bill.id, order.order_number, [{"item_name": "Tea", "quantity": 1}], "cash",
        user_id=7, now=at(5),
    )
    sessions.start_session(playstation.id, "playstation", 1, bill_id=cafe_bill.id, user_id=7, now=T0)

    receipt = get_public_receipt(cafe_bill.id, now=at(60)).to_dict()

    assert not any("user" in key for key in _keys(receipt))
    assert receipt["bill_number"] == cafe_bill.bill_number
    assert receipt["orders"][0]["items"][0]["remaining_quantity"] == 2
    assert receipt["sessions"][0]["cost_cents"] == 2000
    assert receipt["sessions"][0]["status"] == "active"
    assert receipt["total_cents"] == 1500
    assert receipt["paid_cents"] == 500
    assert receipt["remaining_cents"] == 1000
    assert receipt["payments"][0]["kind"] == "items"


def test_receipt_refresh_interval_comes_from_config(app, cafe_bill):
    assert get_public_receipt(cafe_bill.id).refresh_seconds == app.config["RECEIPT_REFRESH_SECONDS"]


def test_unknown_or_cancelled_bill_has_no_receipt(cafe_bill):
    with pytest.raises(NotFoundError):
        get_public_receipt(4242)

    payment_service.cancel_bill(cafe_bill.id)
    with pytest.raises(NotFoundError):
        get_public_receipt(cafe_bill.id)


def test_normalize_receipt_drops_bare_references():
    receipt = normalize_receipt({
        "bill_number": "BILL-0007",
        "status": "draft",
        "orders": [
            "17",
            {"order_number": "ORD-0001", "status": "pending",
             "items": [{"name": "Tea", "price_cents": 500, "quantity": 2}]},
        ],
        "sessions": [
            42,
            {"id": 3, "device_type": "computer", "status": "completed", "final_cost_cents": 1500},
        ],
    })

    assert receipt.dropped_references == 2
    assert [o.order_number for o in receipt.orders] == ["ORD-0001"]
    assert receipt.sessions[0].cost_cents == 1500
    assert receipt.subtotal_cents == 2500
    assert receipt.total_cents == 2500
    assert receipt.remaining_cents == 2500


def test_normalize_receipt_ignores_cancelled_orders_and_active_sessions():
    receipt = normalize_receipt({
        "orders": [
            {"order_number": "ORD-0002", "status": "cancelled",
             "items": [{"name": "Cake", "price_cents": 800, "quantity": 1}]},
        ],
        "sessions": [{"id": 9, "status": "active", "cost_cents": 700}],
        "payments": [{"amount_cents": 300, "method": "cash", "paid_at": 0}],
    })
    assert receipt.subtotal_cents == 0
    assert receipt.paid_cents == 300
    assert receipt.remaining_cents == -300
    assert receipt.payments[0].paid_at == "1970-01-01T00:00:00Z"


@pytest.mark.parametrize("value, expected", [
    ("2026-10-18T18:00:00Z", "2026-10-18T18:00:00Z"),
    ("2026-10-18T20:00:00+02:00", "2026-10-18T18:00:00Z"),
    ("2026-10-18T18:00", "2026-10-18T18:00:00Z"),
    (86_400_000, "1970-01-02T00:00:00Z"),
    ("86400000", "1970-01-02T00:00:00Z"),
    (datetime(2026, 10, 18, 18, 0, 0, 999), "2026-10-18T18:00:00Z"),
    (datetime(2026, 10, 18, 21, 0, tzinfo=timezone(timedelta(hours=3))), "2026-10-18T18:00:00Z"),
    ("yesterday-ish", None),
    ("", None),
    (None, None),
    (True, None),
])
def test_normalize_timestamp(value, expected):
    assert normalize_timestamp(value) == expected
