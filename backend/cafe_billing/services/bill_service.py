# Overview: Service-layer operations for bills; membership, derived totals and status.

"""
Bill Aggregation Service

WHY: One payable record per visit, no matter how many rentals and orders
the customer ran up.

DESIGN PRINCIPLES:
- Membership is by reference: DeviceSession.bill_id and Order.bill_id
- Totals are derived: recompute_totals() rebuilds every derived column from
  the attached records in the caller's transaction, never incrementally
- remaining == total - paid after every mutation (may go negative on an
  admin overpayment)
- Active sessions contribute nothing to the total; their running cost is
  reported separately as live_estimate_cents
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Bill, DeviceSession, Order
from ..models.billing import (
    BILL_STATUS_DRAFT,
    BILL_STATUS_PARTIAL,
    BILL_STATUS_PAID,
    BILL_STATUS_CANCELLED,
    BILL_STATUS_OVERDUE,
    OPEN_BILL_STATUSES,
    VALID_BILL_TYPES,
    BILL_TYPE_CAFE,
)
from ..models.orders import ORDER_STATUS_CANCELLED
from ..models.sessions import SESSION_STATUS_ACTIVE, SESSION_STATUS_COMPLETED, SESSION_STATUS_CANCELLED
from ..validation import ValidationError, NotFoundError, ConflictError, InvalidStateError
from cafe_billing.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, DOCUMENT_TYPE_BILL
from .ledger_service import (
    append_bill_event,
    EVENT_BILL_CREATED,
    EVENT_SESSION_ATTACHED,
    EVENT_ORDER_ATTACHED,
)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_bill(bill_id: int) -> Bill:
    bill = db.session.query(Bill).filter_by(id=bill_id).first()
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})
    return bill


def lock_bill(bill_id: int) -> Bill:
    """Load a bill with a row lock for the rest of the transaction."""
    bill = lock_for_update(db.session.query(Bill).filter_by(id=bill_id)).first()
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found", details={"bill_id": bill_id})
    return bill


def require_open_bill(bill: Bill) -> None:
    if bill.status not in OPEN_BILL_STATUSES:
        raise InvalidStateError(
            f"Bill {bill.bill_number} is {bill.status}",
            details={"bill_id": bill.id, "status": bill.status},
        )


def list_bills(status: str | None = None, now: datetime | None = None) -> list[Bill]:
    """
    List bills, newest first.

    status may be any stored status or "overdue" (open bills past due_at).
    """
    query = db.session.query(Bill)
    if status == BILL_STATUS_OVERDUE:
        now = now or utcnow()
        query = query.filter(
            Bill.status.in_(OPEN_BILL_STATUSES),
            Bill.due_at.isnot(None),
            Bill.due_at < now,
        )
    elif status:
        query = query.filter_by(status=status)
    return query.order_by(Bill.created_at.desc(), Bill.id.desc()).all()


# =============================================================================
# CREATION
# =============================================================================

def new_bill(
    *,
    bill_type: str = BILL_TYPE_CAFE,
    customer_name: str | None = None,
    due_at: datetime | None = None,
    user_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Bill:
    """Create a draft bill inside the caller's transaction (no commit)."""
    if bill_type not in VALID_BILL_TYPES:
        raise ValidationError(f"Invalid bill type: {bill_type}. Must be one of {list(VALID_BILL_TYPES)}")

    now = now or utcnow()
    bill = Bill(
        bill_number=next_document_number(document_type=DOCUMENT_TYPE_BILL),
        bill_type=bill_type,
        status=BILL_STATUS_DRAFT,
        customer_name=customer_name,
        notes=notes,
        due_at=due_at,
        created_by_user_id=user_id,
        created_at=now,
        updated_at=now,
    )
    db.session.add(bill)
    db.session.flush()

    append_bill_event(
        bill_id=bill.id,
        event_type=EVENT_BILL_CREATED,
        actor_user_id=user_id,
        payload={"bill_type": bill_type},
        occurred_at=now,
    )
    return bill


def create_bill(
    bill_type: str = BILL_TYPE_CAFE,
    customer_name: str | None = None,
    due_at: datetime | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> Bill:
    def _op():
        bill = new_bill(
            bill_type=bill_type,
            customer_name=customer_name,
            due_at=due_at,
            user_id=user_id,
            notes=notes,
        )
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# TOTALS
# =============================================================================

def derive_bill_status(current_status: str, total_cents: int, paid_cents: int, remaining_cents: int) -> str:
    """
    Stored status from amounts.

    cancelled is terminal. A zero-total bill is never "paid": an empty draft
    must not read as settled.
    """
    if current_status == BILL_STATUS_CANCELLED:
        return BILL_STATUS_CANCELLED
    if total_cents > 0 and remaining_cents <= 0:
        return BILL_STATUS_PAID
    if paid_cents > 0:
        return BILL_STATUS_PARTIAL
    return BILL_STATUS_DRAFT


def percentage_of(amount_cents: int, percentage: int) -> int:
    raw = Decimal(amount_cents) * Decimal(percentage) / Decimal(100)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def order_subtotal_cents(bill: Bill) -> int:
    return sum(
        order.total_cents
        for order in bill.orders
        if order.status != ORDER_STATUS_CANCELLED
    )


def session_subtotal_cents(bill: Bill) -> int:
    return sum(
        session.final_cost_cents or 0
        for session in bill.sessions
        if session.status == SESSION_STATUS_COMPLETED
    )


def paid_total_cents(bill: Bill) -> int:
    full = sum(payment.amount_cents for payment in bill.payments)
    partial = sum(
        item.amount_cents
        for partial_payment in bill.partial_payments
        for item in partial_payment.items
    )
    sessions = sum(payment.amount_cents for payment in bill.session_payments)
    return full + partial + sessions


def recompute_totals(bill: Bill, now: datetime | None = None) -> Bill:
    """
    Rebuild every derived amount and the stored status from attached records.

    Runs inside the caller's transaction; flushes, never commits.
    """
    subtotal = order_subtotal_cents(bill) + session_subtotal_cents(bill)

    if bill.discount_percentage is not None:
        discount = percentage_of(subtotal, bill.discount_percentage)
    else:
        discount = bill.discount_cents or 0

    tax = bill.tax_cents or 0
    total = max(subtotal + tax - discount, 0)
    paid = paid_total_cents(bill)
    remaining = total - paid

    bill.subtotal_cents = subtotal
    bill.applied_discount_cents = discount
    bill.total_cents = total
    bill.paid_cents = paid
    bill.remaining_cents = remaining
    bill.status = derive_bill_status(bill.status, total, paid, remaining)
    bill.updated_at = now or utcnow()

    db.session.flush()
    return bill


def recompute_bill_totals(bill_id: int) -> Bill:
    """Recompute and commit; repairs a bill after out-of-band edits."""
    def _op():
        bill = lock_bill(bill_id)
        recompute_totals(bill)
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# MEMBERSHIP
# =============================================================================

def attach_session(bill: Bill, session: DeviceSession, *, user_id: int | None = None, now: datetime | None = None) -> bool:
    """
    Attach inside the caller's transaction.

    Returns False when the session already belongs to this bill.
    """
    if session.bill_id == bill.id:
        return False
    if session.bill_id is not None:
        raise ConflictError(
            f"Session {session.id} already belongs to bill {session.bill_id}",
            details={"session_id": session.id, "bill_id": session.bill_id},
        )
    if session.status == SESSION_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Session {session.id} is cancelled",
            details={"session_id": session.id, "status": session.status},
        )
    require_open_bill(bill)

    session.bill = bill
    append_bill_event(
        bill_id=bill.id,
        event_type=EVENT_SESSION_ATTACHED,
        entity_type="session",
        entity_id=session.id,
        actor_user_id=user_id,
        occurred_at=now,
    )
    recompute_totals(bill, now)
    return True


def attach_order(bill: Bill, order: Order, *, user_id: int | None = None, now: datetime | None = None) -> bool:
    if order.bill_id == bill.id:
        return False
    if order.bill_id is not None:
        raise ConflictError(
            f"Order {order.order_number} already belongs to bill {order.bill_id}",
            details={"order_id": order.id, "bill_id": order.bill_id},
        )
    if order.status == ORDER_STATUS_CANCELLED:
        raise InvalidStateError(
            f"Order {order.order_number} is cancelled",
            details={"order_id": order.id, "status": order.status},
        )
    require_open_bill(bill)

    order.bill = bill
    append_bill_event(
        bill_id=bill.id,
        event_type=EVENT_ORDER_ATTACHED,
        entity_type="order",
        entity_id=order.id,
        actor_user_id=user_id,
        payload={"order_number": order.order_number, "total_cents": order.total_cents},
        occurred_at=now,
    )
    recompute_totals(bill, now)
    return True


def attach_session_to_bill(bill_id: int, session_id: int, user_id: int | None = None) -> Bill:
    """
    Attach a session to a bill (idempotent for the same bill).

    start_session always gives a session a bill, so this never moves a session:
    the same bill is a no-op and any other bill raises ConflictError.
    """
    def _op():
        bill = lock_bill(bill_id)
        session = lock_for_update(db.session.query(DeviceSession).filter_by(id=session_id)).first()
        if not session:
            raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})

        if attach_session(bill, session, user_id=user_id):
            db.session.commit()
        return bill

    return run_with_retry(_op)


def attach_order_to_bill(bill_id: int, order_id: int, user_id: int | None = None) -> Bill:
    """Attach an order to a bill (idempotent for the same bill)."""
    def _op():
        bill = lock_bill(bill_id)
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        if attach_order(bill, order, user_id=user_id):
            db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# ADJUSTMENTS
# =============================================================================

_UNSET = object()


def update_bill(
    bill_id: int,
    *,
    discount_cents=_UNSET,
    discount_percentage=_UNSET,
    tax_cents=_UNSET,
    due_at=_UNSET,
    customer_name=_UNSET,
    notes=_UNSET,
) -> Bill:
    """
    Update bill inputs and refold totals.

    Only arguments that are passed are changed; pass None to clear
    discount_percentage, due_at, customer_name or notes.
    """
    if discount_cents is not _UNSET and (discount_cents is None or discount_cents < 0):
        raise ValidationError("discount_cents must be zero or positive")
    if tax_cents is not _UNSET and (tax_cents is None or tax_cents < 0):
        raise ValidationError("tax_cents must be zero or positive")
    if discount_percentage is not _UNSET and discount_percentage is not None:
        if not 0 <= discount_percentage <= 100:
            raise ValidationError("discount_percentage must be between 0 and 100")

    def _op():
        bill = lock_bill(bill_id)
        require_open_bill(bill)

        if discount_cents is not _UNSET:
            bill.discount_cents = discount_cents
        if discount_percentage is not _UNSET:
            bill.discount_percentage = discount_percentage
        if tax_cents is not _UNSET:
            bill.tax_cents = tax_cents
        if due_at is not _UNSET:
            bill.due_at = due_at
        if customer_name is not _UNSET:
            bill.customer_name = customer_name
        if notes is not _UNSET:
            bill.notes = notes

        recompute_totals(bill)
        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# VIEWS
# =============================================================================

def paid_quantities_by_item(bill: Bill) -> dict[tuple[str, str], int]:
    """{(order_number, item_name): quantity already covered by partial payments}"""
    paid: dict[tuple[str, str], int] = {}
    for partial_payment in bill.partial_payments:
        for item in partial_payment.items:
            key = (item.order_number, item.item_name)
            paid[key] = paid.get(key, 0) + item.quantity
    return paid


def get_bill_items(bill_id: int) -> list[dict]:
    """
    Flat list of every order item on the bill with its payment position.

    Cancelled orders are listed but flagged, and carry no amount due.
    """
    bill = get_bill(bill_id)
    paid = paid_quantities_by_item(bill)

    items = []
    for order in bill.orders:
        cancelled = order.status == ORDER_STATUS_CANCELLED
        for item in order.items:
            paid_quantity = paid.get((order.order_number, item.name), 0)
            remaining_quantity = 0 if cancelled else item.quantity - paid_quantity
            items.append({
                "order_id": order.id,
                "order_number": order.order_number,
                "order_status": order.status,
                "item_name": item.name,
                "price_cents": item.price_cents,
                "quantity": item.quantity,
                "line_total_cents": item.line_total_cents,
                "paid_quantity": paid_quantity,
                "remaining_quantity": remaining_quantity,
                "remaining_cents": remaining_quantity * item.price_cents,
                "is_settled": remaining_quantity <= 0,
            })
    return items


def live_estimate_cents(bill: Bill, now: datetime | None = None) -> int:
    """Running cost of the bill's active sessions (not part of the total)."""
    from .device_session_service import session_live_cost

    return sum(
        session_live_cost(session, now)
        for session in bill.sessions
        if session.status == SESSION_STATUS_ACTIVE
    )


def get_bill_summary(bill_id: int, now: datetime | None = None) -> dict:
    """Consolidated view: bill, sessions, orders, items and payments."""
    now = now or utcnow()
    bill = get_bill(bill_id)

    data = bill.to_dict(now)
    data["live_estimate_cents"] = live_estimate_cents(bill, now)
    data["has_active_sessions"] = any(s.status == SESSION_STATUS_ACTIVE for s in bill.sessions)
    data["sessions"] = [session.to_dict() for session in bill.sessions]
    data["orders"] = [order.to_dict() for order in bill.orders]
    data["items"] = get_bill_items(bill_id)
    data["payments"] = [payment.to_dict() for payment in bill.payments]
    data["partial_payments"] = [pp.to_dict() for pp in bill.partial_payments]
    data["session_payments"] = [sp.to_dict() for sp in bill.session_payments]
    return data
