from datetime import datetime, timedelta

import pytest

from cafe_billing.extensions import db
from cafe_billing.models import Device, DeviceSession
from cafe_billing.services import bill_service, device_service, device_session_service as sessions
from cafe_billing.services import payment_service
from cafe_billing.validation import ConflictError, InvalidStateError, NotFoundError, ValidationError


T0 = datetime(2026, 10, 18, 18, 0, 0)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


def test_start_session_opens_bill_and_claims_device(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)

    assert session.status == "active"
    assert session.bill_id is not None
    assert session.bill.bill_type == "playstation"
    assert session.bill.status == "draft"
    assert len(session.segments) == 1
    assert session.open_segment.controller_count == 1
    assert db.session.get(Device, playstation.id).status == "active"


def test_start_session_attaches_to_existing_bill(playstation, cafe_bill):
    session = sessions.start_session(playstation.id, "playstation", 2, bill_id=cafe_bill.id, now=T0)
    assert session.bill_id == cafe_bill.id
    assert [s.id for s in cafe_bill.sessions] == [session.id]


def test_second_start_on_active_device_conflicts(playstation):
    sessions.start_session(playstation.id, "playstation", 1, now=T0)

    with pytest.raises(ConflictError):
        sessions.start_session(playstation.id, "playstation", 1, now=at(5))

    active = db.session.query(DeviceSession).filter_by(device_id=playstation.id, status="active").count()
    assert active == 1


def test_start_rejects_maintenance_and_bad_input(playstation, computer):
    device_service.set_maintenance(computer.id, True)
    with pytest.raises(InvalidStateError):
        sessions.start_session(computer.id, "computer", 1, now=T0)

    with pytest.raises(ValidationError):
        sessions.start_session(playstation.id, "computer", 1, now=T0)
    with pytest.raises(ValidationError):
        sessions.start_session(playstation.id, "playstation", 5, now=T0)
    with pytest.raises(ValidationError):
        sessions.start_session(playstation.id, "playstation", 0, now=T0)
    with pytest.raises(NotFoundError):
        sessions.start_session(9999, "playstation", 1, now=T0)

    # Nothing was claimed by the failed attempts
    assert db.session.get(Device, playstation.id).status == "available"


def test_start_on_closed_bill_is_rejected(playstation, cafe_bill):
    payment_service.cancel_bill(cafe_bill.id, reason="walked out")
    with pytest.raises(InvalidStateError):
        sessions.start_session(playstation.id, "playstation", 1, bill_id=cafe_bill.id, now=T0)
    assert db.session.get(Device, playstation.id).status == "available"


def test_controller_changes_keep_segments_contiguous(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.update_session_controllers(session.id, 2, now=at(30))
    sessions.update_session_controllers(session.id, 4, now=at(45))

    segments = session.segments
    assert [s.controller_count for s in segments] == [1, 2, 4]
    for current, following in zip(segments, segments[1:]):
        assert current.ended_at == following.started_at
    assert segments[-1].ended_at is None


def test_same_controller_count_is_a_no_op(playstation):
    session = sessions.start_session(playstation.id, "playstation", 2, now=T0)
    sessions.update_session_controllers(session.id, 2, now=at(10))
    assert len(session.segments) == 1


def test_controller_change_rejects_out_of_order_time(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=at(10))
    with pytest.raises(ValidationError):
        sessions.update_session_controllers(session.id, 2, now=at(5))


def test_end_session_writes_final_cost_once(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.update_session_controllers(session.id, 2, now=at(30))
    ended = sessions.end_session(session.id, now=at(60))

    assert ended.status == "completed"
    assert ended.total_cost_cents == 2300
    assert ended.final_cost_cents == 2300
    assert ended.ended_at == at(60)
    assert all(s.ended_at is not None for s in ended.segments)
    assert db.session.get(Device, playstation.id).status == "available"
    assert ended.bill.total_cents == 2300

    with pytest.raises(InvalidStateError) as exc_info:
        sessions.end_session(session.id, now=at(120))
    assert exc_info.value.details["session_id"] == session.id
    assert db.session.get(DeviceSession, session.id).final_cost_cents == 2300


def test_end_session_applies_discount(computer):
    session = sessions.start_session(computer.id, "computer", 1, now=T0)
    ended = sessions.end_session(session.id, discount_cents=500, now=at(60))
    assert ended.total_cost_cents == 1500
    assert ended.final_cost_cents == 1000

    other = sessions.start_session(computer.id, "computer", 1, now=at(70))
    ended = sessions.end_session(other.id, discount_cents=5000, now=at(130))
    assert ended.final_cost_cents == 0


def test_controller_change_after_end_is_rejected(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.end_session(session.id, now=at(10))
    with pytest.raises(InvalidStateError):
        sessions.update_session_controllers(session.id, 3, now=at(20))


def test_live_cost_does_not_mutate(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)

    first = sessions.live_cost(session.id, now=at(60))
    second = sessions.live_cost(session.id, now=at(60))

    assert first == second
    assert first["cost_cents"] == 2000
    assert first["elapsed_minutes"] == 60
    assert first["is_final"] is False
    assert session.status == "active"
    assert session.open_segment is not None
    assert session.bill.total_cents == 0


def test_live_cost_of_completed_session_is_final(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.end_session(session.id, now=at(60))

    result = sessions.live_cost(session.id, now=at(600))
    assert result["cost_cents"] == 2000
    assert result["is_final"] is True
    assert result["elapsed_minutes"] == 60


def test_cost_breakdown_lists_segments(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    sessions.update_session_controllers(session.id, 3, now=at(20))
    breakdown = sessions.get_cost_breakdown(session.id, now=at(80))

    assert [s["controller_count"] for s in breakdown["segments"]] == [1, 3]
    assert [s["hourly_rate_cents"] for s in breakdown["segments"]] == [2000, 3000]
    assert breakdown["total_cost_cents"] == 700 + 3000  # 6.67 -> 7, 30
    assert breakdown["final_cost_cents"] is None


def test_cancel_session_costs_nothing(playstation):
    session = sessions.start_session(playstation.id, "playstation", 1, now=T0)
    cancelled = sessions.cancel_session(session.id, now=at(45))

    assert cancelled.status == "cancelled"
    assert cancelled.final_cost_cents == 0
    assert db.session.get(Device, playstation.id).status == "available"
    assert bill_service.get_bill(cancelled.bill_id).total_cents == 0

    with pytest.raises(InvalidStateError):
        sessions.end_session(session.id, now=at(50))


def test_device_rate_override_is_used(db_session):
    device = device_service.create_device(
        name="PS VIP", device_type="playstation", playstation_rates={"1": 4000}
    )
    session = sessions.start_session(device.id, "playstation", 1, now=T0)
    ended = sessions.end_session(session.id, now=at(30))
    assert ended.final_cost_cents == 2000


def test_maintenance_rejected_while_active(playstation):
    sessions.start_session(playstation.id, "playstation", 1, now=T0)
    with pytest.raises(InvalidStateError):
        device_service.set_maintenance(playstation.id, True)
