# Overview: Device registry; rental slot check-and-set and per-device tariffs.

"""
Device Registry Service

DESIGN PRINCIPLES:
- Devices are never deleted (sessions keep referencing them)
- The status column is the rental slot: it only changes through conditional
  UPDATEs (available -> active, active -> available, available <-> maintenance)
  so a lost race shows up as rowcount == 0 instead of a double booking
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Device
from ..models.devices import (
    VALID_DEVICE_TYPES,
    DEVICE_TYPE_PLAYSTATION,
    DEVICE_STATUS_AVAILABLE,
    DEVICE_STATUS_ACTIVE,
    DEVICE_STATUS_MAINTENANCE,
)
from ..validation import ValidationError, NotFoundError, ConflictError, InvalidStateError
from .cost_calculator import RateTable, rates_from_config


NUMBER_PREFIXES = {
    "playstation": "PS",
    "computer": "PC",
}


def _validate_rates(hourly_rate_cents: int | None, playstation_rates: dict | None) -> dict | None:
    if hourly_rate_cents is not None and hourly_rate_cents <= 0:
        raise ValidationError("hourly_rate_cents must be positive")

    if playstation_rates is None:
        return None

    cleaned = {}
    for count, cents in playstation_rates.items():
        try:
            count_int = int(count)
            cents_int = int(cents)
        except (TypeError, ValueError):
            raise ValidationError("playstation_rates must map controller counts to cents")
        if count_int < 1 or cents_int <= 0:
            raise ValidationError("playstation_rates must use counts >= 1 and positive rates")
        cleaned[str(count_int)] = cents_int
    return cleaned


def create_device(
    name: str,
    device_type: str,
    number: str | None = None,
    hourly_rate_cents: int | None = None,
    playstation_rates: dict | None = None,
) -> Device:
    """
    Register a rentable device.

    Args:
        name: Display name
        device_type: playstation or computer
        number: Unique identifier (auto-assigned as PS-01, PC-02, ... if omitted)
        hourly_rate_cents: Flat rate override for computers
        playstation_rates: {controllers: cents/hour} override for consoles
    """
    if not name or not name.strip():
        raise ValidationError("Device name is required")

    if device_type not in VALID_DEVICE_TYPES:
        raise ValidationError(f"Invalid device type: {device_type}. Must be one of {list(VALID_DEVICE_TYPES)}")

    if device_type == DEVICE_TYPE_PLAYSTATION and hourly_rate_cents is not None:
        raise ValidationError("PlayStation devices are priced by playstation_rates, not hourly_rate_cents")

    rates = _validate_rates(hourly_rate_cents, playstation_rates)

    if not number:
        existing = db.session.query(Device).filter_by(device_type=device_type).count()
        number = f"{NUMBER_PREFIXES[device_type]}-{existing + 1:02d}"

    if db.session.query(Device).filter_by(number=number).first():
        raise ConflictError(f"Device '{number}' already exists")

    device = Device(
        name=name.strip(),
        number=number,
        device_type=device_type,
        status=DEVICE_STATUS_AVAILABLE,
        hourly_rate_cents=hourly_rate_cents,
        playstation_rates=rates,
    )
    db.session.add(device)
    db.session.commit()
    return device


def get_device(device_id: int) -> Device:
    device = db.session.query(Device).filter_by(id=device_id).first()
    if not device:
        raise NotFoundError(f"Device {device_id} not found", details={"device_id": device_id})
    return device


def list_devices(status: str | None = None, device_type: str | None = None) -> list[Device]:
    query = db.session.query(Device)
    if status:
        query = query.filter_by(status=status)
    if device_type:
        query = query.filter_by(device_type=device_type)
    return query.order_by(Device.number).all()


def _transition(device_id: int, from_status: str, to_status: str) -> bool:
    """Conditional status swap; True if this caller won the row."""
    result = db.session.execute(
        update(Device)
        .where(Device.id == device_id, Device.status == from_status)
        .values(status=to_status, updated_at=db.func.now())
    )
    return bool(result.rowcount)


def claim_device(device: Device) -> None:
    """
    Take the device's rental slot (available -> active) without committing.

    Raises:
        ConflictError: device already has an active session
        InvalidStateError: device is under maintenance
    """
    if _transition(device.id, DEVICE_STATUS_AVAILABLE, DEVICE_STATUS_ACTIVE):
        return

    db.session.refresh(device)
    if device.status == DEVICE_STATUS_MAINTENANCE:
        raise InvalidStateError(
            f"Device {device.number} is under maintenance",
            details={"device_id": device.id, "status": device.status},
        )
    raise ConflictError(
        f"Device {device.number} already has an active session",
        details={"device_id": device.id, "status": device.status},
    )


def release_device(device: Device) -> bool:
    """Give the rental slot back (active -> available) without committing."""
    return _transition(device.id, DEVICE_STATUS_ACTIVE, DEVICE_STATUS_AVAILABLE)


def set_maintenance(device_id: int, enabled: bool) -> Device:
    device = get_device(device_id)

    if enabled:
        if device.status == DEVICE_STATUS_MAINTENANCE:
            return device
        if not _transition(device.id, DEVICE_STATUS_AVAILABLE, DEVICE_STATUS_MAINTENANCE):
            raise InvalidStateError(
                f"Device {device.number} is in use; end its session first",
                details={"device_id": device.id, "status": device.status},
            )
    else:
        if device.status != DEVICE_STATUS_MAINTENANCE:
            return device
        _transition(device.id, DEVICE_STATUS_MAINTENANCE, DEVICE_STATUS_AVAILABLE)

    db.session.commit()
    db.session.refresh(device)
    return device


def rate_table_for_device(device: Device, base: RateTable | None = None) -> RateTable:
    """Configured tariff with the device's own overrides applied."""
    base = base or rates_from_config(current_app.config)
    return base.with_overrides(
        computer_cents=device.hourly_rate_cents,
        playstation=device.rate_overrides(),
    )
