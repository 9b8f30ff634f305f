from __future__ import annotations

from ..extensions import db
from cafe_billing.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PREPARING = "preparing"
ORDER_STATUS_READY = "ready"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"


class Order(db.Model):
    """
    Food and drink order.

    Quantities and prices are read by the billing core; the kitchen only
    touches status and prepared counts.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "ORD-0042")
    order_number = db.Column(db.String(64), nullable=False)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    customer_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    ready_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    bill = db.relationship("Bill", back_populates="orders")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    def item_named(self, item_name: str) -> "OrderItem | None":
        for item in self.items:
            if item.name == item_name:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "bill_id": self.bill_id,
            "status": self.status,
            "customer_name": self.customer_name,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
            "ready_at": to_utc_z(self.ready_at) if self.ready_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "created_by_user_id": self.created_by_user_id,
        }


class OrderItem(db.Model):
    """Line item on an order. Names are unique within an order."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "name", name="uq_order_items_order_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    prepared_count = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "prepared_count": self.prepared_count,
            "line_total_cents": self.line_total_cents,
        }
