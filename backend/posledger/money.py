# Overview: Integer-cent money math for pricing, tax and refunds.

"""
All amounts are integer cents; percentages are basis points (100 bps = 1%).

Rounding policy:
- Every monetary intermediate is rounded to the nearest cent, half-up,
  at the point it is computed (per-line discount, tax). Subtotals and totals
  are sums of already-rounded cents, so no drift accumulates across batches.
"""

from __future__ import annotations

DISCOUNT_NONE = "NONE"
DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED_AMOUNT = "FIXED_AMOUNT"

DISCOUNT_TYPES = (DISCOUNT_NONE, DISCOUNT_PERCENTAGE, DISCOUNT_FIXED_AMOUNT)

BPS_DENOMINATOR = 10_000

# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, ties away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator >= 0:
        return (numerator + denominator // 2) // denominator
    return -((-numerator + denominator // 2) // denominator)


def apply_bps(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000, rounded to the nearest cent."""
    return round_half_up_div(amount_cents * bps, BPS_DENOMINATOR)


def final_unit_price_cents(price_cents: int, discount_type: str | None, discount_value: int | None) -> int:
    """
    Unit price after discount.

    - PERCENTAGE: price - round(price * bps / 10000)
    - FIXED_AMOUNT: max(0, price - value)
    - NONE / missing: price
    """
    if not discount_type or discount_type == DISCOUNT_NONE:
        return price_cents

    value = discount_value or 0

    if discount_type == DISCOUNT_PERCENTAGE:
        return max(0, price_cents - apply_bps(price_cents, value))

    if discount_type == DISCOUNT_FIXED_AMOUNT:
        return max(0, price_cents - value)

    raise ValueError(f"unknown discount type {discount_type!r}")


def tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    return apply_bps(subtotal_cents, tax_rate_bps)


def refunded_amount_cents(items) -> int:
    """Monetary value of refunded quantities: sum(refunded_qty * final unit price)."""
    total = 0
    for item in items:
        refunded = item.refunded_quantity or 0
        unit = item.final_price_cents if item.final_price_cents is not None else item.price_cents
        total += refunded * unit
    return total


def net_revenue_cents(total_cents: int, items) -> int:
    """Transaction total minus the value of refunded quantities."""
    return total_cents - refunded_amount_cents(items)


def format_cents(amount_cents: int | None) -> str:
    if amount_cents is None:
        return "-"
    sign = "-" if amount_cents < 0 else ""
    return f"{sign}{abs(amount_cents) // 100}.{abs(amount_cents) % 100:02d}"
