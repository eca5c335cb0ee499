# Overview: Request payload parsing into typed service inputs; raises ValidationError on bad input.

from __future__ import annotations

from typing import Any

from .errors import ValidationError
from .money import DISCOUNT_NONE, DISCOUNT_TYPES, MAX_PRICE_CENTS
from .services.catalog_service import VariantSpec
from .services.refund_service import RefundRequest
from .services.sales_service import CartItem, Discount
from .services.stock_mutator import MAX_QUANTITY, StockAdjustment

# SQLite INTEGER is a signed 64-bit value
MAX_DB_INTEGER = 2**63 - 1


def coerce_int(
    value: Any,
    field: str,
    *,
    required: bool = True,
    minimum: int | None = None,
    maximum: int | None = MAX_DB_INTEGER,
) -> int | None:
    """
    Strict integer coercion for JSON / query-string input.

    Accepts ints and plain digit strings. Rejects booleans, floats, decimals
    and scientific notation.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field, "value": result})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={"field": field, "value": result})
    if result < -MAX_DB_INTEGER:
        raise ValidationError(f"{field} is out of range", details={"field": field, "value": result})
    return result


def require_object(payload: Any) -> dict:
    """JSON request bodies must be objects; a missing body counts as empty."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def optional_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require_list(payload: dict, key: str) -> list:
    items = payload.get(key)
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{key} must be a non-empty list", details={"field": key})
    for entry in items:
        if not isinstance(entry, dict):
            raise ValidationError(f"every entry of {key} must be an object", details={"field": key})
    return items


def parse_discount(raw: dict) -> Discount | None:
    discount_type = raw.get("discount_type")
    if discount_type in (None, "", DISCOUNT_NONE):
        return None
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}",
            details={"discount_type": discount_type},
        )
    return Discount(
        type=discount_type,
        value=coerce_int(raw.get("discount_value"), "discount_value", minimum=0, maximum=MAX_PRICE_CENTS),
        reason=optional_str(raw.get("discount_reason")),
        applied_by_user_id=coerce_int(raw.get("discount_applied_by_user_id"), "discount_applied_by_user_id", required=False),
    )


def parse_cart(payload: dict) -> list[CartItem]:
    """
    Request body:
    {
        "items": [
            {"variant_id": 1, "quantity": 2,
             "discount_type": "PERCENTAGE", "discount_value": 1000, "discount_reason": "promo"}
        ]
    }
    """
    return [
        CartItem(
            variant_id=coerce_int(raw.get("variant_id"), "variant_id"),
            quantity=coerce_int(raw.get("quantity"), "quantity", minimum=1, maximum=MAX_QUANTITY),
            discount=parse_discount(raw),
        )
        for raw in _require_list(payload, "items")
    ]


def parse_refund_requests(payload: dict) -> list[RefundRequest]:
    """Request body: {"items": [{"sale_item_id": 3, "quantity": 1}]}"""
    return [
        RefundRequest(
            sale_item_id=coerce_int(raw.get("sale_item_id"), "sale_item_id"),
            quantity=coerce_int(raw.get("quantity"), "quantity", minimum=1, maximum=MAX_QUANTITY),
        )
        for raw in _require_list(payload, "items")
    ]


def parse_adjustment(raw: dict, variant_id: int | None = None) -> StockAdjustment:
    if variant_id is None:
        variant_id = coerce_int(raw.get("variant_id"), "variant_id")
    mode = raw.get("mode") or raw.get("adjustment_type")
    if not mode:
        raise ValidationError("mode is required", details={"field": "mode"})
    return StockAdjustment(
        variant_id=variant_id,
        mode=str(mode).strip().lower(),
        value=coerce_int(raw.get("value"), "value", minimum=1, maximum=MAX_QUANTITY),
        reason=optional_str(raw.get("reason")),
        notes=optional_str(raw.get("notes")),
    )


def parse_bulk_adjustments(payload: dict) -> list[StockAdjustment]:
    return [parse_adjustment(raw) for raw in _require_list(payload, "movements")]


def parse_variant_specs(payload: dict) -> list[VariantSpec]:
    specs = []
    for raw in _require_list(payload, "variants"):
        sku = optional_str(raw.get("sku"))
        if not sku:
            raise ValidationError("Variant SKU is required", details={"field": "sku"})
        specs.append(
            VariantSpec(
                sku=sku,
                price_cents=coerce_int(raw.get("price_cents"), "price_cents", minimum=0, maximum=MAX_PRICE_CENTS),
                initial_stock=coerce_int(raw.get("stock", 0), "stock", minimum=0, maximum=MAX_QUANTITY),
                color=optional_str(raw.get("color")),
                size=optional_str(raw.get("size")),
                reorder_point=coerce_int(raw.get("reorder_point"), "reorder_point", required=False, minimum=0),
            )
        )
    return specs
