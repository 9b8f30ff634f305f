# Overview: Flask API routes for bills and payments; parses input and returns JSON responses.

# backend/cafe_billing/routes/bills.py
"""
Bill and Payment API Routes

WHY: The cashier's view of a visit: everything the customer ran up, what
has been paid and by which method, and what is still owed.

DESIGN:
- Membership: attach sessions and orders (idempotent for the same bill)
- Payments: full amount, itemized (order items) and per-session
- Overpayment of quantities or session cost is rejected with 422 and
  names every offending line
- Totals are recomputed on every mutation; /recompute repairs a bill
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import bill_service, payment_service
from ..services.ledger_service import get_bill_events
from ..validation import (
    BillingError,
    ValidationError,
    OverpaymentError,
    require_int,
    optional_int,
    optional_str,
    optional_datetime,
)


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")


# =============================================================================
# BILLS
# =============================================================================

@bills_bp.post("/")
@bills_bp.post("")
def create_bill_route():
    """
    Open a bill.

    Request body:
    {
        "bill_type": "cafe",  (cafe, playstation, computer)
        "customer_name": "Table 4",  (optional)
        "due_at": "2026-10-18T22:00:00Z",  (optional)
        "user_id": 3  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        bill = bill_service.create_bill(
            bill_type=data.get("bill_type") or "cafe",
            customer_name=optional_str(data, "customer_name", max_length=128),
            due_at=optional_datetime(data, "due_at"),
            user_id=optional_int(data, "user_id"),
            notes=optional_str(data, "notes", max_length=2000),
        )

        return jsonify({"bill": bill.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/")
@bills_bp.get("")
def list_bills_route():
    status = request.args.get("status")
    bills = bill_service.list_bills(status=status)
    return jsonify({"bills": [b.to_dict() for b in bills]}), 200


@bills_bp.get("/<int:bill_id>")
def get_bill_route(bill_id: int):
    """Consolidated bill: totals, sessions, orders, items and payments."""
    try:
        return jsonify({"bill": bill_service.get_bill_summary(bill_id)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.patch("/<int:bill_id>")
def update_bill_route(bill_id: int):
    """
    Update adjustments on an open bill. Only keys present are changed.

    Request body:
    {
        "discount_cents": 500,
        "discount_percentage": 10,  (null to clear; wins over discount_cents)
        "tax_cents": 0,
        "due_at": "2026-10-18T22:00:00Z",
        "customer_name": "Table 4",
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        changes = {}
        for field in ("discount_cents", "tax_cents"):
            if field in data:
                changes[field] = require_int(data, field)
        if "discount_percentage" in data:
            changes["discount_percentage"] = optional_int(data, "discount_percentage")
        if "due_at" in data:
            changes["due_at"] = optional_datetime(data, "due_at")
        if "customer_name" in data:
            changes["customer_name"] = optional_str(data, "customer_name", max_length=128)
        if "notes" in data:
            changes["notes"] = optional_str(data, "notes", max_length=2000)

        bill = bill_service.update_bill(bill_id, **changes)

        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/sessions")
def attach_session_route(bill_id: int):
    """
    Request body:
    {
        "session_id": 12
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        bill = bill_service.attach_session_to_bill(
            bill_id,
            require_int(data, "session_id"),
            user_id=optional_int(data, "user_id"),
        )

        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to attach session")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/orders")
def attach_order_route(bill_id: int):
    """
    Request body:
    {
        "order_id": 4
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        bill = bill_service.attach_order_to_bill(
            bill_id,
            require_int(data, "order_id"),
            user_id=optional_int(data, "user_id"),
        )

        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to attach order")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.post("/<int:bill_id>/recompute")
def recompute_route(bill_id: int):
    try:
        bill = bill_service.recompute_bill_totals(bill_id)
        return jsonify({"bill": bill.to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recompute bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/items")
def bill_items_route(bill_id: int):
    try:
        return jsonify({"items": bill_service.get_bill_items(bill_id)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@bills_bp.post("/<int:bill_id>/cancel")
def cancel_bill_route(bill_id: int):
    """
    Request body (optional):
    {
        "reason": "Customer left",
        "user_id": 3
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        bill = payment_service.cancel_bill(
            bill_id,
            user_id=optional_int(data, "user_id"),
            reason=optional_str(data, "reason"),
        )
        current_app.logger.info("Bill %s cancelled", bill.bill_number)

        return jsonify({"bill": bill.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel bill")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/events")
def bill_events_route(bill_id: int):
    try:
        bill_service.get_bill(bill_id)
        return jsonify({"events": [e.to_dict() for e in get_bill_events(bill_id)]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# PAYMENTS
# =============================================================================

@bills_bp.post("/<int:bill_id>/payments")
def add_payment_route(bill_id: int):
    """
    Record an amount-based payment.

    Request body:
    {
        "amount_cents": 2000,
        "method": "cash",  (cash, card, transfer)
        "reference": "POS-123",  (optional)
        "user_id": 3  (optional)
    }

    Returns:
        201: Payment recorded, bill totals refreshed
        400: Invalid amount or method
        409: Bill already paid or cancelled
    """
    try:
        data = request.get_json(silent=True) or {}

        payment = payment_service.add_payment(
            bill_id,
            amount_cents=require_int(data, "amount_cents"),
            method=data.get("method"),
            user_id=optional_int(data, "user_id"),
            reference=optional_str(data, "reference", max_length=128),
        )
        bill = bill_service.get_bill(bill_id)
        current_app.logger.info(
            "Payment of %s cents (%s) recorded on bill %s", payment.amount_cents, payment.method, bill.bill_number
        )

        return jsonify({"payment": payment.to_dict(), "bill": bill.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/payments")
def payment_history_route(bill_id: int):
    try:
        return jsonify({"payments": payment_service.get_payment_history(bill_id)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@bills_bp.post("/<int:bill_id>/partial-payments")
def add_partial_payment_route(bill_id: int):
    """
    Pay specific item quantities of one order.

    Request body:
    {
        "order_number": "ORD-0001",
        "items": [{"item_name": "Tea", "quantity": 2}],
        "method": "cash",
        "user_id": 3  (optional)
    }

    Returns:
        201: Partial payment recorded
        404: Order not on this bill, or unknown item
        422: Quantity exceeds what is left to pay (details.items lists each line)
    """
    try:
        data = request.get_json(silent=True) or {}

        order_number = data.get("order_number")
        if not order_number:
            raise ValidationError("order_number is required")
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        partial_payment = payment_service.add_partial_payment(
            bill_id,
            order_number=order_number,
            items=items,
            method=data.get("method"),
            user_id=optional_int(data, "user_id"),
        )
        bill = bill_service.get_bill(bill_id)
        current_app.logger.info(
            "Partial payment of %s cents recorded on bill %s", partial_payment.total_cents, bill.bill_number
        )

        return jsonify({"partial_payment": partial_payment.to_dict(), "bill": bill.to_dict()}), 201

    except OverpaymentError as e:
        current_app.logger.warning("Rejected partial payment on bill %s: %s", bill_id, e.message)
        return jsonify(e.to_dict()), e.status_code
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add partial payment")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/partial-payments")
def partial_payments_summary_route(bill_id: int):
    try:
        return jsonify(payment_service.get_partial_payments_summary(bill_id)), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@bills_bp.post("/<int:bill_id>/session-payments")
def add_session_payment_route(bill_id: int):
    """
    Request body:
    {
        "session_id": 12,
        "amount_cents": 1000,
        "method": "card"
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        payment = payment_service.add_session_payment(
            bill_id,
            session_id=require_int(data, "session_id"),
            amount_cents=require_int(data, "amount_cents"),
            method=data.get("method"),
            user_id=optional_int(data, "user_id"),
        )
        bill = bill_service.get_bill(bill_id)
        current_app.logger.info(
            "Session payment of %s cents recorded on bill %s", payment.amount_cents, bill.bill_number
        )

        return jsonify({"session_payment": payment.to_dict(), "bill": bill.to_dict()}), 201

    except OverpaymentError as e:
        current_app.logger.warning("Rejected session payment on bill %s: %s", bill_id, e.message)
        return jsonify(e.to_dict()), e.status_code
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add session payment")
        return jsonify({"error": "Internal server error"}), 500


@bills_bp.get("/<int:bill_id>/paid-quantity")
def paid_quantity_route(bill_id: int):
    """Query: ?order_number=ORD-0001&item_name=Tea"""
    try:
        order_number = request.args.get("order_number")
        item_name = request.args.get("item_name")
        if not order_number or not item_name:
            raise ValidationError("order_number and item_name are required")

        bill_service.get_bill(bill_id)
        paid = payment_service.get_paid_quantity_for_item(order_number, item_name, bill_id=bill_id)
        remaining = payment_service.get_remaining_quantity_for_item(order_number, item_name, bill_id=bill_id)

        return jsonify({
            "order_number": order_number,
            "item_name": item_name,
            "paid_quantity": paid,
            "remaining_quantity": remaining,
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
