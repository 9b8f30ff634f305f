from __future__ import annotations

from datetime import datetime

from ..extensions import db
from cafe_billing.time_utils import to_utc_z, utcnow


BILL_STATUS_DRAFT = "draft"
BILL_STATUS_PARTIAL = "partial"
BILL_STATUS_PAID = "paid"
BILL_STATUS_CANCELLED = "cancelled"
BILL_STATUS_OVERDUE = "overdue"  # read-time overlay, never stored

OPEN_BILL_STATUSES = (BILL_STATUS_DRAFT, BILL_STATUS_PARTIAL)

BILL_TYPE_CAFE = "cafe"
BILL_TYPE_PLAYSTATION = "playstation"
BILL_TYPE_COMPUTER = "computer"
VALID_BILL_TYPES = (BILL_TYPE_CAFE, BILL_TYPE_PLAYSTATION, BILL_TYPE_COMPUTER)


class Bill(db.Model):
    """
    Consolidated payable record for sessions and orders.

    Totals are derived columns: every mutation recomputes them from the
    attached sessions, orders and payment records in the same transaction
    (see bill_service.recompute_totals). They are never adjusted in place.

    STATUS:
    - draft: nothing paid yet
    - partial: something paid, balance left
    - paid: total > 0 and remaining <= 0
    - cancelled: terminal, set explicitly
    - overdue: draft/partial past due_at, computed on read only
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("bill_number", name="uq_bills_bill_number"),
        db.Index("ix_bills_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "BILL-0007")
    bill_number = db.Column(db.String(64), nullable=False)
    bill_type = db.Column(db.String(16), nullable=False, default=BILL_TYPE_CAFE)
    status = db.Column(db.String(16), nullable=False, default=BILL_STATUS_DRAFT, index=True)

    customer_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Adjustments (inputs)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percentage = db.Column(db.Integer, nullable=True)  # 0-100, wins over discount_cents
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    # Derived totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    applied_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sessions = db.relationship("DeviceSession", back_populates="bill", order_by="DeviceSession.id")
    orders = db.relationship("Order", back_populates="bill", order_by="Order.id")
    payments = db.relationship("BillPayment", back_populates="bill", order_by="BillPayment.id")
    partial_payments = db.relationship("PartialPayment", back_populates="bill", order_by="PartialPayment.id")
    session_payments = db.relationship("SessionPayment", back_populates="bill", order_by="SessionPayment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def effective_status(self, now: datetime | None = None) -> str:
        if self.status in OPEN_BILL_STATUSES and self.due_at is not None:
            if self.due_at < (now or utcnow()):
                return BILL_STATUS_OVERDUE
        return self.status

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "bill_number": self.bill_number,
            "bill_type": self.bill_type,
            "status": self.effective_status(now),
            "stored_status": self.status,
            "customer_name": self.customer_name,
            "notes": self.notes,
            "due_at": to_utc_z(self.due_at) if self.due_at else None,
            "discount_cents": self.discount_cents,
            "discount_percentage": self.discount_percentage,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
            "applied_discount_cents": self.applied_discount_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "session_ids": [s.id for s in self.sessions],
            "order_ids": [o.id for o in self.orders],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
        }


class BillPayment(db.Model):
    """
    Full (amount-based) payment against a bill.

    Not validated against the remaining balance: an admin may overpay to
    correct a mistake, which shows up as a negative remaining.
    """
    __tablename__ = "bill_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)  # cash, card, transfer
    reference = db.Column(db.String(128), nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    bill = db.relationship("Bill", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PartialPayment(db.Model):
    """Settlement of specific item quantities within one order."""
    __tablename__ = "partial_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_number = db.Column(db.String(64), nullable=False, index=True)

    payment_method = db.Column(db.String(16), nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    bill = db.relationship("Bill", back_populates="partial_payments")
    items = db.relationship(
        "PartialPaymentItem",
        back_populates="partial_payment",
        order_by="PartialPaymentItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "user_id": self.user_id,
            "paid_at": to_utc_z(self.paid_at),
            "items": [item.to_dict() for item in self.items],
        }


class PartialPaymentItem(db.Model):
    __tablename__ = "partial_payment_items"
    __table_args__ = (
        db.Index("ix_partial_payment_items_name", "order_number", "item_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    partial_payment_id = db.Column(db.Integer, db.ForeignKey("partial_payments.id"), nullable=False, index=True)

    # Denormalized so paid quantities can be summed without joining orders
    order_number = db.Column(db.String(64), nullable=False)
    item_name = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    partial_payment = db.relationship("PartialPayment", back_populates="items")

    @property
    def amount_cents(self) -> int:
        return self.price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "item_name": self.item_name,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "amount_cents": self.amount_cents,
        }


class SessionPayment(db.Model):
    """Amount paid against one completed session's final cost."""
    __tablename__ = "session_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("device_sessions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    bill = db.relationship("Bill", back_populates="session_payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "session_id": self.session_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "user_id": self.user_id,
            "paid_at": to_utc_z(self.paid_at),
        }


class BillEvent(db.Model):
    """
    Append-only history of everything that moved money or membership on a bill.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "bill_events"
    __table_args__ = (
        db.Index("ix_bill_events_bill_occurred", "bill_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    method = db.Column(db.String(16), nullable=True)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "event_type": self.event_type,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "payload": self.payload,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
