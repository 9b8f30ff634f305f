# Overview: Service-layer operations for bill payments; full, itemized and per-session settlement.

"""
Payment Ledger Service

WHY: Customers split bills: one pays for the tea, another for the
PlayStation hour, a third drops cash on the table. Every one of those must
land on the bill without losing or double-counting money or quantity.

DESIGN PRINCIPLES:
- Payment records are immutable; bill totals are refolded after each one
- Itemized payments are all-or-nothing: one bad line rejects the batch
- Paid quantity per (order_number, item_name) never exceeds ordered quantity
- Session payments never exceed the session's final cost
- Every payment is mirrored to the append-only bill event history
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Bill,
    BillPayment,
    DeviceSession,
    Order,
    PartialPayment,
    PartialPaymentItem,
    SessionPayment,
)
from ..models.billing import BILL_STATUS_CANCELLED, OPEN_BILL_STATUSES
from ..models.orders import ORDER_STATUS_CANCELLED
from ..models.sessions import SESSION_STATUS_ACTIVE, SESSION_STATUS_COMPLETED
from ..validation import (
    ValidationError,
    NotFoundError,
    InvalidStateError,
    OverpaymentError,
)
from cafe_billing.time_utils import utcnow
from .bill_service import get_bill, lock_bill, require_open_bill, recompute_totals
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import (
    append_bill_event,
    get_bill_events,
    EVENT_PAYMENT_FULL,
    EVENT_PAYMENT_PARTIAL_ITEMS,
    EVENT_PAYMENT_PARTIAL_SESSION,
    EVENT_BILL_CANCELLED,
)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_TRANSFER = "transfer"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_TRANSFER,
]


def _validate_method(method: str) -> str:
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}",
            details={"method": method},
        )
    return method


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive", details={"amount_cents": amount_cents})
    return amount_cents


# =============================================================================
# FULL PAYMENTS
# =============================================================================

def add_payment(
    bill_id: int,
    amount_cents: int,
    method: str,
    user_id: int | None = None,
    reference: str | None = None,
    now: datetime | None = None,
) -> BillPayment:
    """
    Record an amount-based payment against a bill.

    Not checked against the remaining balance: overpayment is an accepted
    admin correction and shows up as a negative remaining.

    Raises:
        InvalidStateError: bill is paid or cancelled
    """
    _validate_amount(amount_cents)
    _validate_method(method)
    now = now or utcnow()

    def _op():
        bill = lock_bill(bill_id)
        require_open_bill(bill)

        payment = BillPayment(
            bill=bill,
            amount_cents=amount_cents,
            method=method,
            reference=reference,
            user_id=user_id,
            created_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        append_bill_event(
            bill_id=bill.id,
            event_type=EVENT_PAYMENT_FULL,
            amount_cents=amount_cents,
            method=method,
            entity_type="payment",
            entity_id=payment.id,
            actor_user_id=user_id,
            payload={"reference": reference} if reference else None,
            occurred_at=now,
        )
        recompute_totals(bill, now)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# ITEMIZED (PARTIAL) PAYMENTS
# =============================================================================

def _paid_quantity_query(order_number: str, item_name: str, bill_id: int | None = None):
    query = (
        db.session.query(func.coalesce(func.sum(PartialPaymentItem.quantity), 0))
        .filter(
            PartialPaymentItem.order_number == order_number,
            PartialPaymentItem.item_name == item_name,
        )
    )
    if bill_id is not None:
        query = query.join(PartialPayment).filter(PartialPayment.bill_id == bill_id)
    return query


def get_paid_quantity_for_item(order_number: str, item_name: str, bill_id: int | None = None) -> int:
    """Quantity of an order item already covered by partial payments."""
    return int(_paid_quantity_query(order_number, item_name, bill_id).scalar() or 0)


def get_remaining_quantity_for_item(order_number: str, item_name: str, bill_id: int | None = None) -> int:
    """
    Ordered quantity minus paid quantity.

    Raises:
        NotFoundError: unknown order or item
    """
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise NotFoundError(f"Order {order_number} not found", details={"order_number": order_number})
    item = order.item_named(item_name)
    if not item:
        raise NotFoundError(
            f"Item '{item_name}' not found on order {order_number}",
            details={"order_number": order_number, "item_name": item_name},
        )
    return item.quantity - get_paid_quantity_for_item(order_number, item_name, bill_id)


def _aggregate_lines(items: list[dict]) -> dict[str, int]:
    """Sum requested quantities per item name, preserving first-seen order."""
    if not items:
        raise ValidationError("At least one item is required")

    requested: dict[str, int] = {}
    for index, line in enumerate(items):
        if not isinstance(line, dict):
            raise ValidationError(f"items[{index}] must be an object")
        name = line.get("item_name")
        if not name or not isinstance(name, str):
            raise ValidationError(f"items[{index}].item_name is required")
        quantity = line.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError(f"items[{index}].quantity must be an integer")
        requested[name] = requested.get(name, 0) + quantity
    return requested


def add_partial_payment(
    bill_id: int,
    order_number: str,
    items: list[dict],
    method: str,
    user_id: int | None = None,
    now: datetime | None = None,
) -> PartialPayment:
    """
    Settle specific item quantities of one order on a bill.

    Args:
        items: [{"item_name": "Tea", "quantity": 2}, ...]; repeated names are summed

    Raises:
        NotFoundError: order not on this bill, or unknown item
        OverpaymentError: any line with quantity <= 0 or beyond the remaining
            quantity; details["items"] lists every offending line and nothing
            is recorded
    """
    _validate_method(method)
    requested = _aggregate_lines(items)
    now = now or utcnow()

    def _op():
        bill = lock_bill(bill_id)
        require_open_bill(bill)

        order = (
            db.session.query(Order)
            .filter_by(order_number=order_number, bill_id=bill.id)
            .first()
        )
        if not order:
            raise NotFoundError(
                f"Order {order_number} is not on bill {bill.bill_number}",
                details={"order_number": order_number, "bill_id": bill.id},
            )
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidStateError(
                f"Order {order_number} is cancelled",
                details={"order_number": order_number},
            )

        offending = []
        lines = []
        for item_name, quantity in requested.items():
            item = order.item_named(item_name)
            if not item:
                raise NotFoundError(
                    f"Item '{item_name}' not found on order {order_number}",
                    details={"order_number": order_number, "item_name": item_name},
                )

            paid_quantity = get_paid_quantity_for_item(order_number, item_name)
            remaining_quantity = item.quantity - paid_quantity
            if quantity <= 0 or quantity > remaining_quantity:
                offending.append({
                    "item_name": item_name,
                    "requested_quantity": quantity,
                    "ordered_quantity": item.quantity,
                    "paid_quantity": paid_quantity,
                    "remaining_quantity": remaining_quantity,
                })
                continue
            lines.append((item, quantity))

        if offending:
            raise OverpaymentError(
                "Payment exceeds remaining quantity for "
                + ", ".join(line["item_name"] for line in offending),
                details={"order_number": order_number, "items": offending},
            )

        partial_payment = PartialPayment(
            bill=bill,
            order_id=order.id,
            order_number=order_number,
            payment_method=method,
            total_cents=sum(item.price_cents * quantity for item, quantity in lines),
            user_id=user_id,
            paid_at=now,
        )
        for item, quantity in lines:
            partial_payment.items.append(PartialPaymentItem(
                order_number=order_number,
                item_name=item.name,
                quantity=quantity,
                price_cents=item.price_cents,
            ))
        db.session.add(partial_payment)
        db.session.flush()

        append_bill_event(
            bill_id=bill.id,
            event_type=EVENT_PAYMENT_PARTIAL_ITEMS,
            amount_cents=partial_payment.total_cents,
            method=method,
            entity_type="partial_payment",
            entity_id=partial_payment.id,
            actor_user_id=user_id,
            payload={
                "order_number": order_number,
                "items": [{"item_name": item.name, "quantity": quantity} for item, quantity in lines],
            },
            occurred_at=now,
        )
        recompute_totals(bill, now)
        db.session.commit()
        return partial_payment

    return run_with_retry(_op)


# =============================================================================
# SESSION PAYMENTS
# =============================================================================

def get_session_paid_cents(session_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(SessionPayment.amount_cents), 0))
        .filter(SessionPayment.session_id == session_id)
        .scalar()
    )
    return int(total or 0)


def add_session_payment(
    bill_id: int,
    session_id: int,
    amount_cents: int,
    method: str,
    user_id: int | None = None,
    now: datetime | None = None,
) -> SessionPayment:
    """
    Pay (part of) one completed session's final cost.

    Raises:
        NotFoundError: session unknown or not on this bill
        InvalidStateError: session not completed yet
        OverpaymentError: amount above the session's unpaid cost
    """
    _validate_amount(amount_cents)
    _validate_method(method)
    now = now or utcnow()

    def _op():
        bill = lock_bill(bill_id)
        require_open_bill(bill)

        session = (
            lock_for_update(db.session.query(DeviceSession).filter_by(id=session_id, bill_id=bill.id))
            .first()
        )
        if not session:
            raise NotFoundError(
                f"Session {session_id} is not on bill {bill.bill_number}",
                details={"session_id": session_id, "bill_id": bill.id},
            )
        if session.status != SESSION_STATUS_COMPLETED:
            raise InvalidStateError(
                f"Session {session_id} is {session.status}; only completed sessions can be paid",
                details={"session_id": session_id, "status": session.status},
            )

        already_paid = get_session_paid_cents(session_id)
        unpaid = (session.final_cost_cents or 0) - already_paid
        if amount_cents > unpaid:
            raise OverpaymentError(
                f"Payment exceeds unpaid cost of session {session_id}",
                details={
                    "session_id": session_id,
                    "amount_cents": amount_cents,
                    "final_cost_cents": session.final_cost_cents,
                    "paid_cents": already_paid,
                    "unpaid_cents": unpaid,
                },
            )

        payment = SessionPayment(
            bill=bill,
            session_id=session_id,
            amount_cents=amount_cents,
            method=method,
            user_id=user_id,
            paid_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        append_bill_event(
            bill_id=bill.id,
            event_type=EVENT_PAYMENT_PARTIAL_SESSION,
            amount_cents=amount_cents,
            method=method,
            entity_type="session",
            entity_id=session_id,
            actor_user_id=user_id,
            occurred_at=now,
        )
        recompute_totals(bill, now)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_bill(
    bill_id: int,
    user_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Bill:
    """
    Cancel an open bill.

    Payments already recorded are kept; attached sessions and orders keep
    their reference to the bill.

    Raises:
        InvalidStateError: bill is paid/cancelled, or still has an active session
    """
    now = now or utcnow()

    def _op():
        bill = lock_bill(bill_id)
        if bill.status not in OPEN_BILL_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel bill {bill.bill_number}: bill is {bill.status}",
                details={"bill_id": bill.id, "status": bill.status},
            )

        active = [s.id for s in bill.sessions if s.status == SESSION_STATUS_ACTIVE]
        if active:
            raise InvalidStateError(
                f"Cannot cancel bill {bill.bill_number}: sessions still active",
                details={"bill_id": bill.id, "active_session_ids": active},
            )

        bill.status = BILL_STATUS_CANCELLED
        bill.cancelled_at = now
        bill.cancel_reason = reason
        bill.cancelled_by_user_id = user_id

        append_bill_event(
            bill_id=bill.id,
            event_type=EVENT_BILL_CANCELLED,
            actor_user_id=user_id,
            note=reason,
            occurred_at=now,
        )
        recompute_totals(bill, now)
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# REPORTING
# =============================================================================

def get_partial_payments_summary(bill_id: int) -> dict:
    """Paid quantities and amounts per (order, item) across all partial payments."""
    bill = get_bill(bill_id)

    by_item: dict[tuple[str, str], dict] = {}
    for partial_payment in bill.partial_payments:
        for item in partial_payment.items:
            key = (item.order_number, item.item_name)
            entry = by_item.setdefault(key, {
                "order_number": item.order_number,
                "item_name": item.item_name,
                "price_cents": item.price_cents,
                "paid_quantity": 0,
                "paid_cents": 0,
            })
            entry["paid_quantity"] += item.quantity
            entry["paid_cents"] += item.amount_cents

    return {
        "bill_id": bill.id,
        "partial_payment_count": len(bill.partial_payments),
        "total_paid_cents": sum(entry["paid_cents"] for entry in by_item.values()),
        "items": list(by_item.values()),
    }


def get_payment_history(bill_id: int) -> list[dict]:
    """All payment events on a bill, oldest first."""
    get_bill(bill_id)
    return [event.to_dict() for event in get_bill_events(bill_id, payments_only=True)]
