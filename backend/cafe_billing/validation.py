from __future__ import annotations
from datetime import datetime
from cafe_billing.time_utils import parse_iso_datetime

from typing import Any


class BillingError(Exception):
    """Base class for billing core failures surfaced to callers."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BillingError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(BillingError):
    """Unknown bill, session, order, device or item."""
    status_code = 404


class ConflictError(BillingError):
    """409-level business rule conflict (device already active, entity owned by another bill)."""
    status_code = 409


class InvalidStateError(BillingError):
    """Operation not allowed in the entity's current state (e.g. ending a completed session)."""
    status_code = 409


class OverpaymentError(BillingError):
    """A payment would settle more than what is owed (item quantity or session amount)."""
    status_code = 422


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON payloads.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_int(data: dict, field: str) -> int:
    if data.get(field) is None:
        raise ValidationError(f"{field} is required")
    return coerce_int(data[field], field)


def optional_int(data: dict, field: str) -> int | None:
    if data.get(field) is None:
        return None
    return coerce_int(data[field], field)


def optional_datetime(data: dict, field: str) -> datetime | None:
    value = data.get(field)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def optional_str(data: dict, field: str, max_length: int = 255) -> str | None:
    value = data.get(field)
    if value is None:
        return None
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None
