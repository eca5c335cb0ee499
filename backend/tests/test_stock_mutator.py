import pytest

from posledger.errors import NotFoundError, ValidationError
from posledger.models import ProductVariant, StockMovement
from posledger.models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RESTOCK,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    MOVEMENT_SHRINKAGE,
)
from posledger.services.stock_mutator import MAX_QUANTITY, StockAdjustment, resolve_adjustment


def test_apply_delta_records_chain(services, make_variant, db_session):
    variant = make_variant(stock=10)

    movement = services.mutator.apply_delta(variant.id, MOVEMENT_SALE, -3, reason="counter sale", user_id=4)

    assert movement.previous_stock == 10
    assert movement.new_stock == 7
    assert movement.quantity_delta == -3
    assert movement.clamped_shortfall == 0
    assert movement.user_id == 4
    assert db_session.get(ProductVariant, variant.id).stock == 7


def test_restock_sets_last_restocked_at(services, make_variant, db_session):
    variant = make_variant(stock=0)
    assert db_session.get(ProductVariant, variant.id).last_restocked_at is None

    movement = services.mutator.apply_delta(variant.id, MOVEMENT_RESTOCK, 6)

    assert db_session.get(ProductVariant, variant.id).last_restocked_at == movement.created_at


def test_underflow_is_clamped_and_flagged(services, make_variant, db_session, caplog):
    variant = make_variant(stock=2)

    with caplog.at_level("WARNING"):
        movement = services.mutator.apply_delta(variant.id, MOVEMENT_SHRINKAGE, -5, reason="flood")

    assert movement.previous_stock == 2
    assert movement.new_stock == 0
    assert movement.clamped_shortfall == 3
    assert movement.is_clamped
    assert db_session.get(ProductVariant, variant.id).stock == 0
    assert "Stock clamped at zero" in caplog.text


def test_unknown_kind_and_non_integer_delta_rejected(services, make_variant, db_session):
    variant = make_variant(stock=5)

    with pytest.raises(ValidationError):
        services.mutator.apply_delta(variant.id, "LOST", -1)
    with pytest.raises(ValidationError):
        services.mutator.apply_delta(variant.id, MOVEMENT_SALE, 1.5)

    assert db_session.query(StockMovement).filter_by(variant_id=variant.id).count() == 1
    assert db_session.get(ProductVariant, variant.id).stock == 5


def test_unknown_variant(services):
    with pytest.raises(NotFoundError):
        services.mutator.apply_delta(31337, MOVEMENT_RESTOCK, 1)


@pytest.mark.parametrize(
    "mode,value,reason,current,expected",
    [
        ("add", 4, None, 10, (MOVEMENT_RESTOCK, 4)),
        ("add", 4, "customer_return", 10, (MOVEMENT_RETURN, 4)),
        ("set", 3, None, 10, (MOVEMENT_ADJUSTMENT, -7)),
        ("set", 12, None, 10, (MOVEMENT_ADJUSTMENT, 2)),
        ("remove", 2, "damaged", 10, (MOVEMENT_SHRINKAGE, -2)),
        ("remove", 2, "theft", 10, (MOVEMENT_SHRINKAGE, -2)),
        ("remove", 2, "recount", 10, (MOVEMENT_ADJUSTMENT, -2)),
    ],
)
def test_resolve_adjustment(mode, value, reason, current, expected):
    assert resolve_adjustment(mode, value, reason, current) == expected


def test_remove_more_than_on_hand_rejected():
    with pytest.raises(ValidationError):
        resolve_adjustment("remove", 11, None, 10)


def test_apply_adjustment_set(services, make_variant, db_session):
    variant = make_variant(stock=10)

    movement = services.mutator.apply_adjustment(
        StockAdjustment(variant_id=variant.id, mode="set", value=4, reason="cycle count"),
        user_id=2,
    )

    assert movement.type == MOVEMENT_ADJUSTMENT
    assert movement.quantity_delta == -6
    assert db_session.get(ProductVariant, variant.id).stock == 4


def test_apply_adjustment_rejects_non_positive_value(services, make_variant):
    variant = make_variant(stock=10)
    with pytest.raises(ValidationError):
        services.mutator.apply_adjustment(StockAdjustment(variant_id=variant.id, mode="add", value=0))


def test_bulk_adjustment_is_all_or_nothing(services, make_variant, db_session):
    a = make_variant(stock=5)
    b = make_variant(stock=1)

    with pytest.raises(ValidationError) as exc_info:
        services.mutator.apply_bulk([
            StockAdjustment(variant_id=a.id, mode="add", value=3),
            StockAdjustment(variant_id=b.id, mode="remove", value=2),
        ])

    assert exc_info.value.details["variant_id"] == b.id
    assert db_session.get(ProductVariant, a.id).stock == 5
    assert db_session.get(ProductVariant, b.id).stock == 1
    assert db_session.query(StockMovement).count() == 2  # the two initial restocks


def test_bulk_adjustment_commits_every_entry(services, make_variant, db_session):
    a = make_variant(stock=5)
    b = make_variant(stock=5)

    movements = services.mutator.apply_bulk([
        StockAdjustment(variant_id=a.id, mode="add", value=3),
        StockAdjustment(variant_id=b.id, mode="remove", value=2, reason="damaged"),
        StockAdjustment(variant_id=a.id, mode="remove", value=1),
    ])

    assert [m.type for m in movements] == [MOVEMENT_RESTOCK, MOVEMENT_SHRINKAGE, MOVEMENT_ADJUSTMENT]
    assert movements[2].previous_stock == 8
    assert db_session.get(ProductVariant, a.id).stock == 7
    assert db_session.get(ProductVariant, b.id).stock == 3


def test_bulk_requires_entries(services):
    with pytest.raises(ValidationError):
        services.mutator.apply_bulk([])


def test_oversized_deltas_rejected_without_writing(services, make_variant, db_session):
    variant = make_variant(stock=4)

    for delta in (MAX_QUANTITY + 1, -(MAX_QUANTITY + 1), 2**63):
        with pytest.raises(ValidationError):
            services.mutator.apply_delta(variant.id, MOVEMENT_RESTOCK, delta)
    with pytest.raises(ValidationError):
        services.mutator.apply_adjustment(StockAdjustment(variant.id, "add", MAX_QUANTITY + 1))

    assert db_session.get(ProductVariant, variant.id).stock == 4
    assert db_session.query(StockMovement).filter_by(variant_id=variant.id).count() == 1
