# Overview: Flask API routes for the device registry; parses input and returns JSON responses.

# backend/cafe_billing/routes/devices.py
"""
Device Registry API Routes

DESIGN:
- Devices are created once and never deleted
- Maintenance toggling is rejected while a session is running
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import device_service
from ..validation import BillingError, ValidationError, optional_int


devices_bp = Blueprint("devices", __name__, url_prefix="/api/devices")


@devices_bp.post("/")
@devices_bp.post("")
def create_device_route():
    """
    Register a device.

    Request body:
    {
        "name": "PlayStation 5 #1",
        "device_type": "playstation",
        "number": "PS-01",  (optional)
        "hourly_rate_cents": 1800,  (optional, computers)
        "playstation_rates": {"1": 2000, "2": 2500}  (optional, consoles)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        device = device_service.create_device(
            name=data.get("name"),
            device_type=data.get("device_type"),
            number=data.get("number"),
            hourly_rate_cents=optional_int(data, "hourly_rate_cents"),
            playstation_rates=data.get("playstation_rates"),
        )

        return jsonify({"device": device.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create device")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.get("/")
@devices_bp.get("")
def list_devices_route():
    status = request.args.get("status")
    device_type = request.args.get("device_type")

    devices = device_service.list_devices(status=status, device_type=device_type)
    return jsonify({"devices": [d.to_dict() for d in devices]}), 200


@devices_bp.get("/<int:device_id>")
def get_device_route(device_id: int):
    try:
        device = device_service.get_device(device_id)
        return jsonify({"device": device.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@devices_bp.post("/<int:device_id>/maintenance")
def set_maintenance_route(device_id: int):
    """
    Put a device into or out of maintenance.

    Request body:
    {
        "enabled": true
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        enabled = data.get("enabled")
        if not isinstance(enabled, bool):
            raise ValidationError("enabled must be true or false")

        device = device_service.set_maintenance(device_id, enabled)
        current_app.logger.info("Device %s maintenance=%s", device.number, enabled)

        return jsonify({"device": device.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update device maintenance")
        return jsonify({"error": "Internal server error"}), 500
