# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import get_services
from ..validation import optional_str, require_object

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer_route():
    """
    Request body: {"name": "Ada", "email": "ada@example.com", "phone": "..."}

    Returns:
        201: Customer created
        400: Missing name or duplicate email
    """
    try:
        payload = require_object(request.get_json(silent=True))
        customer = get_services().customers.create_customer(
            name=payload.get("name"),
            email=optional_str(payload.get("email")),
            phone=optional_str(payload.get("phone")),
        )
        return jsonify({"customer": customer.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = get_services().customers.get_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
