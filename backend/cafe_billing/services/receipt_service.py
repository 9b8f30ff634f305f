# Overview: Public read-only receipt projection and boundary normalization of bill payloads.

"""
Receipt Projection

WHY: Customers follow their bill from a QR code on the table. That page is
unauthenticated, polls, and must never show who rang up what.

- get_public_receipt(): bill -> Receipt, read-only, no actor identity
- normalize_receipt(): loosely shaped bill dict (older clients send bare
  ids instead of nested objects, and timestamps as ISO strings, epoch
  milliseconds or datetimes) -> typed Receipt. Bare ids are dropped from
  the totals; unparseable timestamps become None.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime

from flask import current_app

from ..models.billing import BILL_STATUS_CANCELLED
from ..validation import NotFoundError
from cafe_billing.time_utils import utcnow, to_utc_z, parse_iso_datetime, from_epoch_millis
from .bill_service import get_bill, paid_quantities_by_item
from .device_session_service import session_live_cost


@dataclass
class ReceiptItem:
    name: str
    price_cents: int
    quantity: int
    paid_quantity: int = 0

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity


@dataclass
class ReceiptOrder:
    order_number: str | None
    status: str | None
    items: list[ReceiptItem] = field(default_factory=list)
    created_at: str | None = None

    @property
    def total_cents(self) -> int:
        if self.status == "cancelled":
            return 0
        return sum(item.line_total_cents for item in self.items)


@dataclass
class ReceiptSession:
    session_id: int | None
    device_type: str | None
    status: str | None
    cost_cents: int = 0
    started_at: str | None = None
    ended_at: str | None = None


@dataclass
class ReceiptPayment:
    kind: str
    amount_cents: int
    method: str | None
    paid_at: str | None = None


@dataclass
class Receipt:
    bill_number: str | None
    status: str | None
    orders: list[ReceiptOrder] = field(default_factory=list)
    sessions: list[ReceiptSession] = field(default_factory=list)
    payments: list[ReceiptPayment] = field(default_factory=list)
    subtotal_cents: int = 0
    discount_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    paid_cents: int = 0
    remaining_cents: int = 0
    created_at: str | None = None
    due_at: str | None = None
    dropped_references: int = 0
    refresh_seconds: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for order_data, order in zip(data["orders"], self.orders):
            order_data["total_cents"] = order.total_cents
            for item_data, item in zip(order_data["items"], order.items):
                item_data["line_total_cents"] = item.line_total_cents
                item_data["remaining_quantity"] = max(item.quantity - item.paid_quantity, 0)
        return data


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_timestamp(value) -> str | None:
    """datetime, ISO-8601 string or epoch milliseconds -> "YYYY-MM-DDTHH:MM:SSZ"."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            return to_utc_z(value)
        if isinstance(value, (int, float)):
            return to_utc_z(from_epoch_millis(value))
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.isdigit():
                return to_utc_z(from_epoch_millis(int(stripped)))
            return to_utc_z(parse_iso_datetime(stripped))
    except (ValueError, OverflowError, OSError):
        return None
    return None


def _int_or(value, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _normalize_item(raw: dict) -> ReceiptItem | None:
    name = raw.get("name") or raw.get("item_name")
    if not name:
        return None
    return ReceiptItem(
        name=str(name),
        price_cents=_int_or(raw.get("price_cents")),
        quantity=_int_or(raw.get("quantity")),
        paid_quantity=_int_or(raw.get("paid_quantity")),
    )


def _normalize_order(raw: dict) -> ReceiptOrder:
    items = []
    for raw_item in raw.get("items") or []:
        if isinstance(raw_item, dict):
            item = _normalize_item(raw_item)
            if item is not None:
                items.append(item)
    return ReceiptOrder(
        order_number=raw.get("order_number"),
        status=raw.get("status"),
        items=items,
        created_at=normalize_timestamp(raw.get("created_at")),
    )


def _normalize_session(raw: dict) -> ReceiptSession:
    cost_cents = raw.get("cost_cents")
    if cost_cents is None:
        cost_cents = raw.get("final_cost_cents")
    return ReceiptSession(
        session_id=_int_or(raw.get("id", raw.get("session_id")), default=None),
        device_type=raw.get("device_type"),
        status=raw.get("status"),
        cost_cents=_int_or(cost_cents),
        started_at=normalize_timestamp(raw.get("started_at")),
        ended_at=normalize_timestamp(raw.get("ended_at")),
    )


def _normalize_payment(raw: dict) -> ReceiptPayment:
    paid_at = raw.get("paid_at")
    if paid_at is None:
        paid_at = raw.get("created_at")
    return ReceiptPayment(
        kind=raw.get("kind") or "payment",
        amount_cents=_int_or(raw.get("amount_cents")),
        method=raw.get("method"),
        paid_at=normalize_timestamp(paid_at),
    )


def normalize_receipt(payload: dict, refresh_seconds: int | None = None) -> Receipt:
    """
    Build a typed Receipt from a loosely shaped bill payload.

    Nested orders/sessions given as bare ids (str or int) cannot be priced
    and are counted in dropped_references instead of raising. Missing totals
    are derived from the nested objects.
    """
    dropped = 0
    orders: list[ReceiptOrder] = []
    for raw in payload.get("orders") or []:
        if isinstance(raw, dict):
            orders.append(_normalize_order(raw))
        else:
            dropped += 1

    sessions: list[ReceiptSession] = []
    for raw in payload.get("sessions") or []:
        if isinstance(raw, dict):
            sessions.append(_normalize_session(raw))
        else:
            dropped += 1

    payments = [_normalize_payment(raw) for raw in payload.get("payments") or [] if isinstance(raw, dict)]

    computed_subtotal = (
        sum(order.total_cents for order in orders)
        + sum(s.cost_cents for s in sessions if s.status == "completed")
    )
    subtotal = _int_or(payload.get("subtotal_cents"), default=computed_subtotal)
    discount = _int_or(payload.get("discount_cents"))
    tax = _int_or(payload.get("tax_cents"))
    total = _int_or(payload.get("total_cents"), default=max(subtotal + tax - discount, 0))
    paid = _int_or(payload.get("paid_cents"), default=sum(p.amount_cents for p in payments))

    return Receipt(
        bill_number=payload.get("bill_number"),
        status=payload.get("status"),
        orders=orders,
        sessions=sessions,
        payments=payments,
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=total,
        paid_cents=paid,
        remaining_cents=total - paid,
        created_at=normalize_timestamp(payload.get("created_at")),
        due_at=normalize_timestamp(payload.get("due_at")),
        dropped_references=dropped,
        refresh_seconds=refresh_seconds,
    )


# =============================================================================
# PUBLIC RECEIPT
# =============================================================================

def _public_payload(bill, now: datetime) -> dict:
    paid = paid_quantities_by_item(bill)

    orders = []
    for order in bill.orders:
        orders.append({
            "order_number": order.order_number,
            "status": order.status,
            "created_at": order.created_at,
            "items": [
                {
                    "name": item.name,
                    "price_cents": item.price_cents,
                    "quantity": item.quantity,
                    "paid_quantity": paid.get((order.order_number, item.name), 0),
                }
                for item in order.items
            ],
        })

    sessions = [
        {
            "id": session.id,
            "device_type": session.device_type,
            "status": session.status,
            "cost_cents": session_live_cost(session, now),
            "started_at": session.started_at,
            "ended_at": session.ended_at,
        }
        for session in bill.sessions
    ]

    payments = (
        [{"kind": "payment", "amount_cents": p.amount_cents, "method": p.method, "paid_at": p.created_at}
         for p in bill.payments]
        + [{"kind": "items", "amount_cents": sum(i.amount_cents for i in pp.items),
            "method": pp.payment_method, "paid_at": pp.paid_at}
           for pp in bill.partial_payments]
        + [{"kind": "session", "amount_cents": sp.amount_cents, "method": sp.method, "paid_at": sp.paid_at}
           for sp in bill.session_payments]
    )
    payments.sort(key=lambda p: p["paid_at"])

    return {
        "bill_number": bill.bill_number,
        "status": bill.effective_status(now),
        "orders": orders,
        "sessions": sessions,
        "payments": payments,
        "subtotal_cents": bill.subtotal_cents,
        "discount_cents": bill.applied_discount_cents,
        "tax_cents": bill.tax_cents,
        "total_cents": bill.total_cents,
        "paid_cents": bill.paid_cents,
        "created_at": bill.created_at,
        "due_at": bill.due_at,
    }


def get_public_receipt(bill_id: int, now: datetime | None = None) -> Receipt:
    """
    Read-only customer view of a bill.

    Raises:
        NotFoundError: unknown or cancelled bill
    """
    now = now or utcnow()
    try:
        bill = get_bill(bill_id)
    except NotFoundError:
        raise NotFoundError("Receipt not found", details={"bill_id": bill_id}) from None
    if bill.status == BILL_STATUS_CANCELLED:
        raise NotFoundError("Receipt not found", details={"bill_id": bill_id})

    return normalize_receipt(
        _public_payload(bill, now),
        refresh_seconds=current_app.config.get("RECEIPT_REFRESH_SECONDS", 30),
    )
