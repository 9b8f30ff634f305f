from __future__ import annotations

from ..extensions import db
from cafe_billing.time_utils import to_utc_z


SESSION_STATUS_ACTIVE = "active"
SESSION_STATUS_COMPLETED = "completed"
SESSION_STATUS_CANCELLED = "cancelled"


class DeviceSession(db.Model):
    """
    Timed rental of one device.

    LIFECYCLE:
    - active: segments are still being appended, cost is a live estimate
    - completed: final_cost_cents written once at end, never again
    - cancelled: rental voided, contributes nothing to its bill

    The partial unique index keeps at most one active session per device even
    if two writers get past the device status check.
    """
    __tablename__ = "device_sessions"
    __table_args__ = (
        db.Index(
            "uq_device_sessions_one_active",
            "device_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_device_sessions_status_started", "status", "started_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey("devices.id"), nullable=False, index=True)
    device_type = db.Column(db.String(16), nullable=False)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_ACTIVE, index=True)
    customer_name = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cost tracking (all amounts in cents), written at end
    total_cost_cents = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_cost_cents = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    ended_by_user_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    device = db.relationship("Device", backref=db.backref("sessions", lazy=True))
    bill = db.relationship("Bill", back_populates="sessions")
    segments = db.relationship(
        "SessionSegment",
        back_populates="session",
        order_by="SessionSegment.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def open_segment(self) -> "SessionSegment | None":
        if self.segments and self.segments[-1].ended_at is None:
            return self.segments[-1]
        return None

    @property
    def controller_count(self) -> int | None:
        if not self.segments:
            return None
        return self.segments[-1].controller_count

    def to_dict(self, include_segments: bool = True) -> dict:
        data = {
            "id": self.id,
            "device_id": self.device_id,
            "device_type": self.device_type,
            "bill_id": self.bill_id,
            "status": self.status,
            "customer_name": self.customer_name,
            "notes": self.notes,
            "controller_count": self.controller_count,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "total_cost_cents": self.total_cost_cents,
            "discount_cents": self.discount_cents,
            "final_cost_cents": self.final_cost_cents,
            "created_by_user_id": self.created_by_user_id,
            "ended_by_user_id": self.ended_by_user_id,
            "version_id": self.version_id,
        }
        if include_segments:
            data["segments"] = [segment.to_dict() for segment in self.segments]
        return data


class SessionSegment(db.Model):
    """
    Controller-count history of a session.

    Append-only interval list: the only mutations are closing the open
    segment (ended_at) and appending the next one starting at that instant.
    """
    __tablename__ = "session_segments"
    __table_args__ = (
        db.UniqueConstraint("session_id", "position", name="uq_session_segments_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("device_sessions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    controller_count = db.Column(db.Integer, nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    session = db.relationship("DeviceSession", back_populates="segments")

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "controller_count": self.controller_count,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
        }
