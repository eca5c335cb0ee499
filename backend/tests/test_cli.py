from sqlalchemy import update

from posledger.models import Customer, Product, ProductVariant
from posledger.models.inventory import MOVEMENT_SALE
from posledger.services.sales_service import CartItem


def test_ledger_reconcile_clean(app, services, make_variant):
    variant = make_variant(stock=3)
    services.mutator.apply_delta(variant.id, MOVEMENT_SALE, -1)

    result = app.test_cli_runner().invoke(args=["ledger", "reconcile"])

    assert result.exit_code == 0, result.output
    assert f"OK    variant={variant.id} cached=2 ledger=2 movements=2" in result.output
    assert "0 with drift" in result.output


def test_ledger_reconcile_drift_exits_nonzero(app, make_variant, db_session):
    variant = make_variant(stock=3)
    db_session.execute(update(ProductVariant).where(ProductVariant.id == variant.id).values(stock=1))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["ledger", "reconcile", "--variant-id", str(variant.id)])

    assert result.exit_code == 1
    assert "DRIFT" in result.output


def test_ledger_reconcile_unknown_variant(app, db_session):
    result = app.test_cli_runner().invoke(args=["ledger", "reconcile", "--variant-id", "999"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_ledger_history(app, services, make_variant):
    variant = make_variant(stock=5)
    services.mutator.apply_delta(variant.id, MOVEMENT_SALE, -2, reason="walk-in")

    result = app.test_cli_runner().invoke(args=["ledger", "history", str(variant.id), "--kind", "SALE"])

    assert result.exit_code == 0, result.output
    assert "walk-in" in result.output
    assert "RESTOCK" not in result.output


def test_customers_recompute_totals(app, services, make_variant, customer, db_session):
    variant = make_variant(stock=5, price_cents=1000)
    services.sales.create_sale([CartItem(variant.id, 1)], customer_id=customer.id)
    db_session.execute(update(Customer).where(Customer.id == customer.id).values(total_spent_cents=1))
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["customers", "recompute-totals"])

    assert result.exit_code == 0, result.output
    assert "1 changed" in result.output
    assert db_session.get(Customer, customer.id).total_spent_cents == 1080


def test_reset_db(app, make_variant, db_session):
    make_variant(stock=1)

    result = app.test_cli_runner().invoke(args=["system", "reset-db", "--yes"])

    assert result.exit_code == 0, result.output
    assert db_session.query(Product).count() == 0
