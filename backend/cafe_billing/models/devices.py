from __future__ import annotations

from ..extensions import db
from cafe_billing.time_utils import to_utc_z


DEVICE_TYPE_PLAYSTATION = "playstation"
DEVICE_TYPE_COMPUTER = "computer"
VALID_DEVICE_TYPES = (DEVICE_TYPE_PLAYSTATION, DEVICE_TYPE_COMPUTER)

DEVICE_STATUS_AVAILABLE = "available"
DEVICE_STATUS_ACTIVE = "active"
DEVICE_STATUS_MAINTENANCE = "maintenance"


class Device(db.Model):
    """
    Rentable console or PC.

    The status column doubles as the device's rental slot: it only moves
    available -> active through a conditional UPDATE, so two sessions can
    never be opened on the same device.

    Rates are optional overrides of the configured tariff:
    - hourly_rate_cents: flat rate for computers
    - playstation_rates: {"1": 2000, "2": 2500, ...} cents/hour by controllers
    """
    __tablename__ = "devices"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_devices_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)

    # Human-readable identifier (e.g., "PS-01", "PC-03")
    number = db.Column(db.String(32), nullable=False)
    device_type = db.Column(db.String(16), nullable=False, index=True)  # playstation, computer
    status = db.Column(db.String(16), nullable=False, default=DEVICE_STATUS_AVAILABLE, index=True)

    hourly_rate_cents = db.Column(db.Integer, nullable=True)
    playstation_rates = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def rate_overrides(self) -> dict[int, int]:
        """PlayStation overrides with integer keys (JSON stores them as strings)."""
        if not self.playstation_rates:
            return {}
        return {int(count): int(cents) for count, cents in self.playstation_rates.items()}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "device_type": self.device_type,
            "status": self.status,
            "hourly_rate_cents": self.hourly_rate_cents,
            "playstation_rates": self.playstation_rates,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
