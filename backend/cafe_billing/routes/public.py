# Overview: Unauthenticated receipt endpoint for customers following their bill.

# backend/cafe_billing/routes/public.py

from flask import Blueprint, jsonify, current_app

from ..services import receipt_service
from ..validation import BillingError


public_bp = Blueprint("public", __name__, url_prefix="/api/public")


@public_bp.get("/bills/<int:bill_id>")
def public_receipt_route(bill_id: int):
    """
    Read-only receipt. No actor identity is exposed.

    Cache-Control tells pollers how long the receipt is good for.
    """
    try:
        receipt = receipt_service.get_public_receipt(bill_id)
        response = jsonify({"receipt": receipt.to_dict()})
        response.headers["Cache-Control"] = f"public, max-age={receipt.refresh_seconds or 0}"
        return response, 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build public receipt")
        return jsonify({"error": "Internal server error"}), 500
