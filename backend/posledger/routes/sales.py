# Overview: Flask API routes for sales and refunds; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""
Sale and Refund API Routes

DESIGN:
- A sale is committed in one request: all items, their SALE movements and
  the customer total, or nothing.
- Refunds reference sale items; a batch is validated in full before any
  stock returns to the shelf.

ERRORS:
- 400 invalid input, 404 unknown entity,
  409 insufficient stock / over-refund / already refunded.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import get_services
from ..validation import coerce_int, optional_str, parse_cart, parse_refund_requests, require_object

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


# =============================================================================
# SALES
# =============================================================================

@sales_bp.post("")
def create_sale_route():
    """
    Create and commit a sale.

    Request body:
    {
        "items": [{"variant_id": 1, "quantity": 2, "discount_type": "FIXED_AMOUNT", "discount_value": 500}],
        "payment_method": "cash",  (optional, default: cash)
        "customer_id": 3,          (optional)
        "customer_name": "Walk-in", (optional)
        "user_id": 1               (optional)
    }

    Returns:
        201: Transaction with items
        400 / 404 / 409: see module docstring
    """
    try:
        payload = require_object(request.get_json(silent=True))
        items = parse_cart(payload)
        tx = get_services().sales.create_sale(
            items,
            payment_method=optional_str(payload.get("payment_method")),
            customer_id=coerce_int(payload.get("customer_id"), "customer_id", required=False),
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
            customer_name=optional_str(payload.get("customer_name")),
        )
        return jsonify({"transaction": tx.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """Query params: start_date, end_date, status, customer_id, limit"""
    try:
        transactions = get_services().sales.list_sales(
            start=request.args.get("start_date") or None,
            end=request.args.get("end_date") or None,
            status=request.args.get("status") or None,
            customer_id=coerce_int(request.args.get("customer_id"), "customer_id", required=False),
            limit=coerce_int(request.args.get("limit", "200"), "limit", minimum=1),
        )
        return jsonify({
            "transactions": [tx.to_dict(include_items=False) for tx in transactions],
            "count": len(transactions),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:transaction_id>")
def get_sale_route(transaction_id: int):
    try:
        tx = get_services().sales.get_sale(transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# REFUNDS
# =============================================================================

@sales_bp.post("/<int:transaction_id>/refunds")
def refund_items_route(transaction_id: int):
    """
    Refund individual sale items.

    Request body:
    {
        "items": [{"sale_item_id": 5, "quantity": 1}],
        "user_id": 1  (optional)
    }
    """
    try:
        payload = require_object(request.get_json(silent=True))
        requests = parse_refund_requests(payload)
        tx = get_services().refunds.refund_items(
            transaction_id,
            requests,
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
        )
        return jsonify({"transaction": tx.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund sale items")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:transaction_id>/refund")
def refund_transaction_route(transaction_id: int):
    """Refund every remaining unit of the transaction."""
    try:
        payload = require_object(request.get_json(silent=True))
        tx = get_services().refunds.refund_transaction(
            transaction_id,
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
        )
        return jsonify({"transaction": tx.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund transaction")
        return jsonify({"error": "Internal server error"}), 500
