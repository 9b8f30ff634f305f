# Overview: Service-layer operations for device rental sessions; segments, live and final cost.

"""
Device Session Service

WHY: Meter console/PC rentals whose rate changes when controllers are
added or removed mid-session.

DESIGN PRINCIPLES:
- One active session per device (conditional device UPDATE + partial unique index)
- Controller changes close the open segment and open the next one at the
  same instant, so segments are contiguous and never overlap
- final_cost_cents is written once, at end; completed sessions are immutable
- Live cost is a pure read: the open segment is priced up to "now" and
  nothing is written
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DeviceSession, SessionSegment
from ..models.devices import VALID_DEVICE_TYPES
from ..models.sessions import SESSION_STATUS_ACTIVE, SESSION_STATUS_COMPLETED, SESSION_STATUS_CANCELLED
from ..validation import ValidationError, NotFoundError, ConflictError, InvalidStateError
from cafe_billing.time_utils import utcnow, minutes_between
from .concurrency import lock_for_update, run_with_retry
from .cost_calculator import Segment, SegmentCost, cost_breakdown, total_from_breakdown
from .device_service import get_device, claim_device, release_device, rate_table_for_device
from .bill_service import lock_bill, new_bill, require_open_bill, attach_session, recompute_totals
from .ledger_service import append_bill_event, EVENT_SESSION_ENDED


# =============================================================================
# HELPERS
# =============================================================================

def _validate_controllers(count) -> int:
    max_controllers = current_app.config.get("MAX_CONTROLLERS", 4)
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError("controller count must be an integer")
    if not 1 <= count <= max_controllers:
        raise ValidationError(
            f"controller count must be between 1 and {max_controllers}",
            details={"controller_count": count},
        )
    return count


def get_session(session_id: int) -> DeviceSession:
    session = db.session.query(DeviceSession).filter_by(id=session_id).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
    return session


def _lock_session(session_id: int) -> DeviceSession:
    session = lock_for_update(db.session.query(DeviceSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found", details={"session_id": session_id})
    return session


def _require_active(session: DeviceSession, action: str) -> None:
    if session.status != SESSION_STATUS_ACTIVE:
        raise InvalidStateError(
            f"Cannot {action} session {session.id}: session is {session.status}",
            details={"session_id": session.id, "status": session.status},
        )


def _check_time(session: DeviceSession, now: datetime) -> None:
    open_segment = session.open_segment
    if open_segment is not None and now < open_segment.started_at:
        raise ValidationError(
            "Timestamp is earlier than the current segment start",
            details={"session_id": session.id},
        )


def list_active_sessions() -> list[DeviceSession]:
    return (
        db.session.query(DeviceSession)
        .filter_by(status=SESSION_STATUS_ACTIVE)
        .order_by(DeviceSession.started_at)
        .all()
    )


def calculator_segments(session: DeviceSession) -> list[Segment]:
    return [
        Segment(
            controller_count=segment.controller_count,
            started_at=segment.started_at,
            ended_at=segment.ended_at,
        )
        for segment in session.segments
    ]


def session_breakdown(session: DeviceSession, now: datetime | None = None) -> list[SegmentCost]:
    rates = rate_table_for_device(session.device)
    return cost_breakdown(calculator_segments(session), session.device_type, rates, now or utcnow())


def session_live_cost(session: DeviceSession, now: datetime | None = None) -> int:
    """Cost in cents as of now; final cost for sessions that have ended."""
    if session.status == SESSION_STATUS_CANCELLED:
        return 0
    if session.status == SESSION_STATUS_COMPLETED:
        return session.final_cost_cents or 0
    rates = rate_table_for_device(session.device)
    return total_from_breakdown(session_breakdown(session, now), rates)


# =============================================================================
# LIFECYCLE
# =============================================================================

def start_session(
    device_id: int,
    device_type: str,
    initial_controllers: int = 1,
    bill_id: int | None = None,
    user_id: int | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> DeviceSession:
    """
    Start renting a device.

    Args:
        device_id: Device to rent
        device_type: Must match the device's type
        initial_controllers: Controllers in use from the start (1..MAX_CONTROLLERS)
        bill_id: Open bill to attach to; a new bill is created when omitted

    Raises:
        ConflictError: device already has an active session
        InvalidStateError: device under maintenance, or bill not open
        ValidationError: bad device type or controller count
    """
    if device_type not in VALID_DEVICE_TYPES:
        raise ValidationError(f"Invalid device type: {device_type}. Must be one of {list(VALID_DEVICE_TYPES)}")
    _validate_controllers(initial_controllers)
    now = now or utcnow()

    def _op():
        device = get_device(device_id)
        if device.device_type != device_type:
            raise ValidationError(
                f"Device {device.number} is a {device.device_type}, not a {device_type}",
                details={"device_id": device.id, "device_type": device.device_type},
            )

        bill = None
        if bill_id is not None:
            bill = lock_bill(bill_id)
            require_open_bill(bill)

        claim_device(device)

        if bill is None:
            bill = new_bill(
                bill_type=device_type,
                customer_name=customer_name,
                user_id=user_id,
                now=now,
            )

        session = DeviceSession(
            device=device,
            device_type=device_type,
            status=SESSION_STATUS_ACTIVE,
            customer_name=customer_name,
            notes=notes,
            started_at=now,
            created_by_user_id=user_id,
        )
        session.segments.append(SessionSegment(position=0, controller_count=initial_controllers, started_at=now))
        db.session.add(session)

        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(
                f"Device {device_id} already has an active session",
                details={"device_id": device_id},
            )

        attach_session(bill, session, user_id=user_id, now=now)
        db.session.commit()
        return session

    return run_with_retry(_op)


def update_session_controllers(session_id: int, new_count: int, now: datetime | None = None) -> DeviceSession:
    """
    Change the controller count of an active session.

    Closes the open segment at now and opens the next one at the same
    instant. Same count as the open segment is a no-op.
    """
    _validate_controllers(new_count)
    now = now or utcnow()

    def _op():
        session = _lock_session(session_id)
        _require_active(session, "change controllers on")

        open_segment = session.open_segment
        if open_segment is not None and open_segment.controller_count == new_count:
            return session

        _check_time(session, now)
        if open_segment is not None:
            open_segment.ended_at = now

        session.segments.append(
            SessionSegment(position=len(session.segments), controller_count=new_count, started_at=now)
        )

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(
                f"Session {session_id} was modified concurrently; retry",
                details={"session_id": session_id},
            )
        return session

    return run_with_retry(_op)


def end_session(
    session_id: int,
    discount_cents: int = 0,
    user_id: int | None = None,
    now: datetime | None = None,
) -> DeviceSession:
    """
    End an active session and write its final cost.

    WHY: The final cost is computed once from the closed segment history and
    folded into the bill; a second end is rejected instead of re-pricing.

    Raises:
        InvalidStateError: session is not active (names the session)
    """
    if discount_cents is None:
        discount_cents = 0
    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise ValidationError("discount_cents must be a non-negative integer")
    now = now or utcnow()

    def _op():
        session = _lock_session(session_id)
        _require_active(session, "end")
        _check_time(session, now)

        open_segment = session.open_segment
        if open_segment is not None:
            open_segment.ended_at = now

        rates = rate_table_for_device(session.device)
        breakdown = cost_breakdown(calculator_segments(session), session.device_type, rates)
        total = total_from_breakdown(breakdown, rates)

        session.ended_at = now
        session.status = SESSION_STATUS_COMPLETED
        session.ended_by_user_id = user_id
        session.total_cost_cents = total
        session.discount_cents = discount_cents
        session.final_cost_cents = max(total - discount_cents, 0)

        release_device(session.device)

        if session.bill is not None:
            append_bill_event(
                bill_id=session.bill_id,
                event_type=EVENT_SESSION_ENDED,
                amount_cents=session.final_cost_cents,
                entity_type="session",
                entity_id=session.id,
                actor_user_id=user_id,
                occurred_at=now,
            )
            recompute_totals(session.bill, now)

        db.session.commit()
        return session

    return run_with_retry(_op)


def cancel_session(session_id: int, user_id: int | None = None, now: datetime | None = None) -> DeviceSession:
    """
    Void an active rental.

    The session keeps its segment history but costs nothing and drops out
    of its bill's totals.
    """
    now = now or utcnow()

    def _op():
        session = _lock_session(session_id)
        _require_active(session, "cancel")
        _check_time(session, now)

        open_segment = session.open_segment
        if open_segment is not None:
            open_segment.ended_at = now

        session.ended_at = now
        session.status = SESSION_STATUS_CANCELLED
        session.ended_by_user_id = user_id
        session.total_cost_cents = 0
        session.final_cost_cents = 0

        release_device(session.device)

        if session.bill is not None:
            recompute_totals(session.bill, now)

        db.session.commit()
        return session

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def live_cost(session_id: int, now: datetime | None = None) -> dict:
    """
    Current cost of a session without touching it.

    Active sessions are priced up to now; completed sessions report their
    final cost.
    """
    now = now or utcnow()
    session = get_session(session_id)
    end = session.ended_at or now

    return {
        "session_id": session.id,
        "status": session.status,
        "device_type": session.device_type,
        "controller_count": session.controller_count,
        "elapsed_minutes": round(minutes_between(session.started_at, end), 2),
        "cost_cents": session_live_cost(session, now),
        "is_final": session.status != SESSION_STATUS_ACTIVE,
        "breakdown": [item.to_dict() for item in session_breakdown(session, now)],
    }


def get_cost_breakdown(session_id: int, now: datetime | None = None) -> dict:
    """Per-segment controllers, minutes, hourly rate and cost."""
    session = get_session(session_id)
    rates = rate_table_for_device(session.device)
    breakdown = session_breakdown(session, now)

    return {
        "session_id": session.id,
        "segments": [item.to_dict() for item in breakdown],
        "total_cost_cents": total_from_breakdown(breakdown, rates),
        "discount_cents": session.discount_cents,
        "final_cost_cents": session.final_cost_cents,
    }
