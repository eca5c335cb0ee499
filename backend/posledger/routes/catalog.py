# Overview: Flask API routes for products and variants; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import get_services
from ..validation import coerce_int, optional_str, parse_variant_specs, require_object

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.post("/products")
def create_product_route():
    """
    Create a product with its variants. Initial stock is recorded as RESTOCK.

    Request body:
    {
        "name": "Tee",
        "base_sku": "TEE",
        "description": "...",          (optional)
        "user_id": 1,                  (optional)
        "variants": [
            {"sku": "TEE-RED-M", "price_cents": 2000, "stock": 5,
             "color": "red", "size": "M", "reorder_point": 3}
        ]
    }

    Returns:
        201: Product created (with variants)
        400: Invalid input or duplicate SKU
    """
    try:
        payload = require_object(request.get_json(silent=True))
        specs = parse_variant_specs(payload)
        product = get_services().catalog.create_product(
            name=payload.get("name"),
            base_sku=payload.get("base_sku"),
            description=optional_str(payload.get("description")),
            variants=specs,
            user_id=coerce_int(payload.get("user_id"), "user_id", required=False),
        )
        return jsonify({"product": product.to_dict(include_variants=True)}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = get_services().catalog.get_product(product_id)
        return jsonify({"product": product.to_dict(include_variants=True)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/products/<int:product_id>/movements")
def product_movements_route(product_id: int):
    """Movements of every variant of the product, newest first. Query params: limit"""
    try:
        services = get_services()
        services.catalog.get_product(product_id)
        movements = services.store.list_product_movements(
            product_id,
            limit=coerce_int(request.args.get("limit", "100"), "limit", minimum=1),
        )
        return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/variants")
def lookup_variant_route():
    """Barcode/SKU lookup. Query params: sku (required)"""
    try:
        sku = optional_str(request.args.get("sku"))
        if sku is None:
            raise ValidationError("sku is required", details={"field": "sku"})
        variant = get_services().catalog.get_variant_by_sku(sku)
        return jsonify({"variant": variant.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.get("/variants/<int:variant_id>")
def get_variant_route(variant_id: int):
    try:
        variant = get_services().catalog.get_variant(variant_id)
        return jsonify({"variant": variant.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@catalog_bp.post("/variants/<int:variant_id>/archive")
def archive_variant_route(variant_id: int):
    """Soft-archive a variant. Archived variants cannot be sold; their ledger is kept."""
    try:
        variant = get_services().catalog.archive_variant(variant_id)
        return jsonify({"variant": variant.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to archive variant")
        return jsonify({"error": "Internal server error"}), 500
