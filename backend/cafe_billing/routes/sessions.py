# Overview: Flask API routes for device rental sessions; parses input and returns JSON responses.

# backend/cafe_billing/routes/sessions.py
"""
Device Session API Routes

WHY: The front desk starts and stops rentals, and the floor staff change
controller counts as players join or leave.

DESIGN:
- Session lifecycle: start -> (controller changes) -> end | cancel
- Ending writes the final cost once; a second end is rejected with 409
- Cost endpoint is read-only and safe to poll
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import device_session_service
from ..validation import BillingError, InvalidStateError, require_int, optional_int, optional_str


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")


@sessions_bp.post("/")
@sessions_bp.post("")
def start_session_route():
    """
    Start a rental.

    Request body:
    {
        "device_id": 1,
        "device_type": "playstation",
        "controllers": 2,  (optional, default 1)
        "bill_id": 7,  (optional; a new bill is opened when omitted)
        "customer_name": "Table 4",  (optional)
        "user_id": 3  (optional)
    }

    Returns:
        201: Session started
        400: Invalid input
        404: Unknown device or bill
        409: Device already active or under maintenance
    """
    try:
        data = request.get_json(silent=True) or {}

        controllers = optional_int(data, "controllers")
        session = device_session_service.start_session(
            device_id=require_int(data, "device_id"),
            device_type=data.get("device_type"),
            initial_controllers=controllers if controllers is not None else 1,
            bill_id=optional_int(data, "bill_id"),
            user_id=optional_int(data, "user_id"),
            customer_name=optional_str(data, "customer_name", max_length=128),
            notes=optional_str(data, "notes", max_length=2000),
        )
        current_app.logger.info(
            "Session %s started on device %s (bill %s)", session.id, session.device_id, session.bill_id
        )

        return jsonify({"session": session.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to start session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/")
@sessions_bp.get("")
def list_active_sessions_route():
    sessions = device_session_service.list_active_sessions()
    return jsonify({"sessions": [s.to_dict(include_segments=False) for s in sessions]}), 200


@sessions_bp.get("/<int:session_id>")
def get_session_route(session_id: int):
    try:
        session = device_session_service.get_session(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@sessions_bp.post("/<int:session_id>/controllers")
def update_controllers_route(session_id: int):
    """
    Change the controller count.

    Request body:
    {
        "controllers": 3
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        session = device_session_service.update_session_controllers(
            session_id,
            require_int(data, "controllers"),
        )

        return jsonify({"session": session.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update session controllers")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.post("/<int:session_id>/end")
def end_session_route(session_id: int):
    """
    End a rental and write its final cost.

    Request body (optional):
    {
        "discount_cents": 500,
        "user_id": 3
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        session = device_session_service.end_session(
            session_id,
            discount_cents=optional_int(data, "discount_cents") or 0,
            user_id=optional_int(data, "user_id"),
        )
        current_app.logger.info(
            "Session %s ended: final cost %s cents", session.id, session.final_cost_cents
        )

        return jsonify({"session": session.to_dict()}), 200

    except InvalidStateError as e:
        current_app.logger.warning("Rejected end of session %s: %s", session_id, e.message)
        return jsonify(e.to_dict()), e.status_code
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to end session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.post("/<int:session_id>/cancel")
def cancel_session_route(session_id: int):
    try:
        data = request.get_json(silent=True) or {}

        session = device_session_service.cancel_session(
            session_id,
            user_id=optional_int(data, "user_id"),
        )
        current_app.logger.info("Session %s cancelled", session.id)

        return jsonify({"session": session.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/<int:session_id>/cost")
def live_cost_route(session_id: int):
    """Current cost with per-segment breakdown; never mutates the session."""
    try:
        return jsonify(device_session_service.live_cost(session_id)), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute live cost")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/<int:session_id>/breakdown")
def cost_breakdown_route(session_id: int):
    try:
        return jsonify(device_session_service.get_cost_breakdown(session_id)), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
