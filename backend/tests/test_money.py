import pytest

from posledger.money import (
    DISCOUNT_FIXED_AMOUNT,
    DISCOUNT_NONE,
    DISCOUNT_PERCENTAGE,
    final_unit_price_cents,
    format_cents,
    net_revenue_cents,
    refunded_amount_cents,
    round_half_up_div,
    tax_cents,
)


class _Item:
    def __init__(self, refunded_quantity, final_price_cents, price_cents=0):
        self.refunded_quantity = refunded_quantity
        self.final_price_cents = final_price_cents
        self.price_cents = price_cents


def test_percentage_discount_twenty_percent():
    assert final_unit_price_cents(10000, DISCOUNT_PERCENTAGE, 2000) == 8000


def test_fixed_discount():
    assert final_unit_price_cents(10000, DISCOUNT_FIXED_AMOUNT, 2500) == 7500


def test_fixed_discount_above_price_clamps_to_zero():
    assert final_unit_price_cents(10000, DISCOUNT_FIXED_AMOUNT, 15000) == 0


def test_no_discount_keeps_price():
    assert final_unit_price_cents(999, DISCOUNT_NONE, 0) == 999
    assert final_unit_price_cents(999, None, None) == 999


def test_unknown_discount_type_rejected():
    with pytest.raises(ValueError):
        final_unit_price_cents(100, "BOGO", 1)


def test_percentage_rounds_half_up():
    # 15% of 333 = 49.95 -> 50
    assert final_unit_price_cents(333, DISCOUNT_PERCENTAGE, 1500) == 283


def test_tax_eight_percent():
    assert tax_cents(10000, 800) == 800
    assert tax_cents(1999, 800) == 160  # 159.92


def test_round_half_up_div_ties_away_from_zero():
    assert round_half_up_div(5, 10) == 1
    assert round_half_up_div(-5, 10) == -1
    assert round_half_up_div(4, 10) == 0


def test_refunded_value_uses_final_unit_price():
    items = [_Item(2, 750), _Item(0, 1000), _Item(1, None, price_cents=300)]
    assert refunded_amount_cents(items) == 1800
    assert net_revenue_cents(5000, items) == 3200


def test_format_cents():
    assert format_cents(10800) == "108.00"
    assert format_cents(-5) == "-0.05"
    assert format_cents(None) == "-"
