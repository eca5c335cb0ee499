"""
Pytest fixtures for posledger backend tests.

Provides an in-memory application, per-test table cleanup, the app's
service container and small catalog/customer factories.
"""

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.services import get_services
from posledger.services.catalog_service import VariantSpec


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TAX_RATE_BPS': 800,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def services(app, db_session):
    return get_services()


@pytest.fixture(scope='function')
def make_variant(services):
    """Factory: make_variant(stock=10, price_cents=10000) -> ProductVariant"""
    counter = {"n": 0}

    def _make(stock=10, price_cents=10000, reorder_point=None, sku=None):
        counter["n"] += 1
        n = counter["n"]
        product = services.catalog.create_product(
            name=f"Product {n}",
            base_sku=f"P{n}",
            variants=[
                VariantSpec(
                    sku=sku or f"P{n}-V",
                    price_cents=price_cents,
                    initial_stock=stock,
                    reorder_point=reorder_point,
                )
            ],
        )
        return product.variants[0]

    return _make


@pytest.fixture(scope='function')
def customer(services):
    return services.customers.create_customer(name="Ada Lovelace", email="ada@example.com")
