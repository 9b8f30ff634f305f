# Overview: Flask API routes for food and drink orders; parses input and returns JSON responses.

# backend/cafe_billing/routes/orders.py

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service
from ..validation import BillingError, ValidationError, require_int, optional_int, optional_str


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
@orders_bp.post("")
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "items": [{"name": "Tea", "price_cents": 500, "quantity": 3}],
        "bill_id": 7,  (optional)
        "customer_name": "Table 4",  (optional)
        "user_id": 3  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")

        order = order_service.create_order(
            items=items,
            bill_id=optional_int(data, "bill_id"),
            customer_name=optional_str(data, "customer_name", max_length=128),
            notes=optional_str(data, "notes", max_length=2000),
            user_id=optional_int(data, "user_id"),
        )

        return jsonify({"order": order.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@orders_bp.get("")
def list_orders_route():
    status = request.args.get("status")
    bill_id = request.args.get("bill_id", type=int)

    orders = order_service.list_orders(status=status, bill_id=bill_id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict()}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.post("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """
    Request body:
    {
        "status": "preparing"
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.update_order_status(order_id, data.get("status"))

        return jsonify({"order": order.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/prepared")
def update_prepared_count_route(order_id: int):
    """
    Request body:
    {
        "item_name": "Tea",
        "prepared_count": 2
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        item_name = data.get("item_name")
        if not item_name:
            raise ValidationError("item_name is required")

        order = order_service.update_prepared_count(
            order_id,
            item_name,
            require_int(data, "prepared_count"),
        )

        return jsonify({"order": order.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update prepared count")
        return jsonify({"error": "Internal server error"}), 500
