# Overview: Service-layer operations for food and drink orders.

"""
Order Service

DESIGN PRINCIPLES:
- Item names are unique within an order; duplicate name+price lines merge
- Status moves forward only: pending -> preparing -> ready -> delivered,
  with cancellation allowed before the order is ready
- Orders that carry partial payments cannot be cancelled
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Order, OrderItem, PartialPaymentItem
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PREPARING,
    ORDER_STATUS_READY,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
)
from ..validation import ValidationError, NotFoundError, InvalidStateError
from cafe_billing.time_utils import utcnow
from .bill_service import lock_bill, require_open_bill, attach_order, recompute_totals
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, DOCUMENT_TYPE_ORDER


ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_PREPARING, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_PREPARING: {ORDER_STATUS_READY, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_READY: {ORDER_STATUS_DELIVERED},
    ORDER_STATUS_DELIVERED: set(),
    ORDER_STATUS_CANCELLED: set(),
}


def _normalize_items(items: list[dict]) -> list[dict]:
    if not items:
        raise ValidationError("An order needs at least one item")

    merged: dict[str, dict] = {}
    for index, line in enumerate(items):
        if not isinstance(line, dict):
            raise ValidationError(f"items[{index}] must be an object")

        name = line.get("name")
        if not name or not isinstance(name, str) or not name.strip():
            raise ValidationError(f"items[{index}].name is required")
        name = name.strip()

        price_cents = line.get("price_cents")
        quantity = line.get("quantity", 1)
        for field, value in (("price_cents", price_cents), ("quantity", quantity)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"items[{index}].{field} must be an integer")
        if price_cents < 0:
            raise ValidationError(f"items[{index}].price_cents cannot be negative")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be positive")

        existing = merged.get(name)
        if existing is None:
            merged[name] = {"name": name, "price_cents": price_cents, "quantity": quantity}
        elif existing["price_cents"] != price_cents:
            raise ValidationError(
                f"Item '{name}' appears with two different prices",
                details={"item_name": name},
            )
        else:
            existing["quantity"] += quantity

    return list(merged.values())


def get_order(order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(status: str | None = None, bill_id: int | None = None) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter_by(status=status)
    if bill_id is not None:
        query = query.filter_by(bill_id=bill_id)
    return query.order_by(Order.id.desc()).all()


def create_order(
    items: list[dict],
    bill_id: int | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Create an order, optionally attached to an open bill.

    Args:
        items: [{"name": "Tea", "price_cents": 500, "quantity": 3}, ...]
    """
    lines = _normalize_items(items)
    now = now or utcnow()

    def _op():
        bill = lock_bill(bill_id) if bill_id is not None else None

        order = Order(
            order_number=next_document_number(document_type=DOCUMENT_TYPE_ORDER),
            status=ORDER_STATUS_PENDING,
            customer_name=customer_name,
            notes=notes,
            created_at=now,
            created_by_user_id=user_id,
        )
        for position, line in enumerate(lines):
            order.items.append(OrderItem(position=position, **line))
        db.session.add(order)
        db.session.flush()

        if bill is not None:
            attach_order(bill, order, user_id=user_id, now=now)

        db.session.commit()
        return order

    return run_with_retry(_op)


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _has_partial_payments(order: Order) -> bool:
    return (
        db.session.query(PartialPaymentItem.id)
        .filter(PartialPaymentItem.order_number == order.order_number)
        .first()
        is not None
    )


def update_order_status(order_id: int, status: str, now: datetime | None = None) -> Order:
    """
    Move an order along its lifecycle.

    Cancelling refolds the bill the order belongs to, which must still be open.
    """
    if status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Invalid order status: {status}. Must be one of {list(ALLOWED_TRANSITIONS)}")
    now = now or utcnow()

    def _op():
        order = _lock_order(order_id)
        if order.status == status:
            return order
        if status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidStateError(
                f"Order {order.order_number} cannot go from {order.status} to {status}",
                details={"order_id": order.id, "status": order.status, "requested": status},
            )

        if status == ORDER_STATUS_CANCELLED:
            if _has_partial_payments(order):
                raise InvalidStateError(
                    f"Order {order.order_number} has partial payments and cannot be cancelled",
                    details={"order_id": order.id},
                )
            if order.bill_id is not None:
                bill = lock_bill(order.bill_id)
                require_open_bill(bill)
                order.status = status
                recompute_totals(bill, now)

        order.status = status
        if status == ORDER_STATUS_READY:
            order.ready_at = now
        elif status == ORDER_STATUS_DELIVERED:
            order.delivered_at = now

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_prepared_count(order_id: int, item_name: str, prepared_count: int, now: datetime | None = None) -> Order:
    """Kitchen progress for one item; a fully prepared order becomes ready."""
    if isinstance(prepared_count, bool) or not isinstance(prepared_count, int):
        raise ValidationError("prepared_count must be an integer")
    now = now or utcnow()

    def _op():
        order = _lock_order(order_id)
        if order.status in (ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED):
            raise InvalidStateError(
                f"Order {order.order_number} is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        item = order.item_named(item_name)
        if not item:
            raise NotFoundError(
                f"Item '{item_name}' not found on order {order.order_number}",
                details={"order_id": order.id, "item_name": item_name},
            )
        if not 0 <= prepared_count <= item.quantity:
            raise ValidationError(
                f"prepared_count must be between 0 and {item.quantity}",
                details={"item_name": item_name, "quantity": item.quantity},
            )

        item.prepared_count = prepared_count
        all_prepared = all(i.prepared_count >= i.quantity for i in order.items)
        if all_prepared and order.status in (ORDER_STATUS_PENDING, ORDER_STATUS_PREPARING):
            order.status = ORDER_STATUS_READY
            order.ready_at = now
        elif prepared_count > 0 and order.status == ORDER_STATUS_PENDING:
            order.status = ORDER_STATUS_PREPARING

        db.session.commit()
        return order

    return run_with_retry(_op)
