# backend/posledger/routes/inventory.py
"""
Inventory ledger routes.

- Every stock change goes through the StockMutator and lands as one
  StockMovement row.
- History is newest first, keyset-paginated: pass next_cursor back as
  ?cursor= to fetch the following page.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date / end_date filtering is inclusive on both ends.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import get_services
from ..validation import (
    coerce_int,
    optional_str,
    parse_adjustment,
    parse_bulk_adjustments,
    require_object,
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/variants/<int:variant_id>/movements")
def record_movement_route(variant_id: int):
    """
    Apply a signed stock delta.

    Request body:
    {
        "type": "RESTOCK",
        "quantity_delta": 10,
        "reason": "Supplier delivery",  (optional)
        "notes": "...",                 (optional)
        "reference_id": 12,             (optional)
        "user_id": 1                    (optional)
    }
    """
    try:
        payload = require_object(request.get_json(silent=True))
        movement = get_services().mutator.apply_delta(
            variant_id,
            payload.get("type"),
            coerce_int(payload.get("quantity_delta"), "quantity_delta"),
            reason=optional_str(payload.get("reason")),
            reference_id=coerce_int(payload.get("reference_id"), "reference_id", required=False),
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
            notes=optional_str(payload.get("notes")),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/variants/<int:variant_id>/movements")
def movement_history_route(variant_id: int):
    """
    Query params: kind, start_date, end_date, cursor, limit
    """
    try:
        page = get_services().store.get_movement_history(
            variant_id,
            kind=request.args.get("kind") or None,
            start=request.args.get("start_date") or None,
            end=request.args.get("end_date") or None,
            cursor=request.args.get("cursor") or None,
            limit=coerce_int(request.args.get("limit"), "limit", required=False, minimum=1),
        )
        return jsonify(page.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/movements")
def recent_movements_route():
    """Latest movements across all variants. Query params: kind, limit"""
    try:
        movements = get_services().store.list_recent_movements(
            kind=request.args.get("kind") or None,
            limit=coerce_int(request.args.get("limit"), "limit", required=False, minimum=1),
        )
        return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/variants/<int:variant_id>/adjust")
def adjust_variant_route(variant_id: int):
    """
    Operator adjustment.

    Request body:
    {
        "mode": "add" | "set" | "remove",
        "value": 5,
        "reason": "damaged",   (optional; damaged/theft -> SHRINKAGE, customer_return -> RETURN)
        "notes": "...",        (optional)
        "user_id": 1           (optional)
    }
    """
    try:
        payload = require_object(request.get_json(silent=True))
        adjustment = parse_adjustment(payload, variant_id=variant_id)
        movement = get_services().mutator.apply_adjustment(
            adjustment,
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust/bulk")
def bulk_adjust_route():
    """
    Several adjustments as one unit; any invalid entry rejects the batch.

    Request body:
    {
        "movements": [{"variant_id": 1, "mode": "add", "value": 5}, ...],
        "user_id": 1  (optional)
    }
    """
    try:
        payload = require_object(request.get_json(silent=True))
        adjustments = parse_bulk_adjustments(payload)
        movements = get_services().mutator.apply_bulk(
            adjustments,
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
        )
        return jsonify({
            "movements": [m.to_dict() for m in movements],
            "count": len(movements),
        }), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply bulk adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/variants/<int:variant_id>/reconcile")
def reconcile_variant_route(variant_id: int):
    try:
        report = get_services().reconciler.reconcile(variant_id)
        return jsonify(report.to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/low-stock")
def low_stock_route():
    """Variants at or below their reorder point. Query params: include_archived, limit"""
    include_archived = request.args.get("include_archived", "false").lower() in ("1", "true", "yes")
    try:
        limit = coerce_int(request.args.get("limit", "200"), "limit", minimum=1)
        variants = get_services().catalog.list_low_stock(include_archived=include_archived, limit=limit)
        return jsonify({"variants": [v.to_dict() for v in variants], "count": len(variants)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
