# Overview: Append-only bill event history.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import BillEvent
from cafe_billing.time_utils import utcnow
"""
Bill event invariants:

- Append-only; no deletes/updates of existing events.
- Events are written inside the same DB transaction as the change they record.
- occurred_at is business time; created_at is system time (DB default).
"""


EVENT_PAYMENT_FULL = "payment.full"
EVENT_PAYMENT_PARTIAL_ITEMS = "payment.partial_items"
EVENT_PAYMENT_PARTIAL_SESSION = "payment.partial_session"
EVENT_BILL_CREATED = "bill.created"
EVENT_BILL_CANCELLED = "bill.cancelled"
EVENT_SESSION_ATTACHED = "session.attached"
EVENT_SESSION_ENDED = "session.ended"
EVENT_ORDER_ATTACHED = "order.attached"

PAYMENT_EVENT_TYPES = (
    EVENT_PAYMENT_FULL,
    EVENT_PAYMENT_PARTIAL_ITEMS,
    EVENT_PAYMENT_PARTIAL_SESSION,
)


def append_bill_event(
    *,
    bill_id: int,
    event_type: str,
    amount_cents: int | None = None,
    method: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor_user_id: int | None = None,
    payload: dict | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> BillEvent:
    """Append one event; flushes but never commits."""
    ev = BillEvent(
        bill_id=bill_id,
        event_type=event_type,
        amount_cents=amount_cents,
        method=method,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        payload=payload,
        note=note,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def get_bill_events(bill_id: int, payments_only: bool = False) -> list[BillEvent]:
    query = db.session.query(BillEvent).filter_by(bill_id=bill_id)
    if payments_only:
        query = query.filter(BillEvent.event_type.in_(PAYMENT_EVENT_TYPES))
    return query.order_by(BillEvent.occurred_at, BillEvent.id).all()
