"""
Thread-based concurrency tests against a file-backed SQLite database.

Each worker runs in its own app context and session, as a request would.
"""
import os
import tempfile
import threading

import pytest

from posledger import create_app
from posledger.errors import AlreadyRefundedError, InsufficientStockError, OverRefundError
from posledger.extensions import db
from posledger.models import ProductVariant, SaleItem, StockMovement
from posledger.models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from posledger.services import get_services
from posledger.services.catalog_service import VariantSpec
from posledger.services.concurrency import KeyedLocks
from posledger.services.refund_service import RefundRequest
from posledger.services.sales_service import CartItem
from posledger.services.stock_mutator import StockAdjustment, variant_key


@pytest.fixture()
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "TAX_RATE_BPS": 0,
    })

    with app.app_context():
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tmpdir.cleanup()


def _seed_variant(app, stock, sku="CONCUR-1"):
    with app.app_context():
        product = get_services().catalog.create_product(
            name="Concurrent Product",
            base_sku=f"{sku}-BASE",
            variants=[VariantSpec(sku=sku, price_cents=1000, initial_stock=stock)],
        )
        variant_id = product.variants[0].id
        db.session.remove()
    return variant_id


def _run_threads(app, target, count):
    results = []
    lock = threading.Lock()

    def worker(i):
        with app.app_context():
            try:
                outcome = target(i)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_hundred_concurrent_sales_never_oversell(file_app):
    variant_id = _seed_variant(file_app, stock=50)

    def sell(_):
        get_services().sales.create_sale([CartItem(variant_id=variant_id, quantity=1)])
        return "sold"

    results = _run_threads(file_app, sell, 100)

    sold = [r for r in results if r == "sold"]
    rejected = [r for r in results if isinstance(r, InsufficientStockError)]
    unexpected = [r for r in results if r != "sold" and not isinstance(r, InsufficientStockError)]

    assert unexpected == []
    assert len(sold) == 50
    assert len(rejected) == 50

    with file_app.app_context():
        assert db.session.get(ProductVariant, variant_id).stock == 0
        assert db.session.query(StockMovement).filter_by(variant_id=variant_id, type=MOVEMENT_SALE).count() == 50
        report = get_services().reconciler.reconcile(variant_id)
        assert report.ok
        assert report.chain_breaks == []


def test_concurrent_refunds_respect_bound(file_app):
    variant_id = _seed_variant(file_app, stock=10)
    with file_app.app_context():
        tx = get_services().sales.create_sale([CartItem(variant_id=variant_id, quantity=5)])
        tx_id = tx.id
        item_id = tx.items[0].id
        db.session.remove()

    def refund(_):
        get_services().refunds.refund_items(tx_id, [RefundRequest(sale_item_id=item_id, quantity=1)])
        return "refunded"

    results = _run_threads(file_app, refund, 12)

    refunded = [r for r in results if r == "refunded"]
    rejected = [r for r in results if isinstance(r, (OverRefundError, AlreadyRefundedError))]

    assert len(refunded) == 5
    assert len(rejected) == 7

    with file_app.app_context():
        assert db.session.get(SaleItem, item_id).refunded_quantity == 5
        assert db.session.query(StockMovement).filter_by(type=MOVEMENT_RETURN).count() == 5
        assert db.session.get(ProductVariant, variant_id).stock == 10
        assert get_services().sales.get_sale(tx_id).status == "refunded"


def test_mixed_sales_and_adjustments_reconcile(file_app):
    variant_id = _seed_variant(file_app, stock=20)

    def work(i):
        services = get_services()
        if i % 3 == 0:
            services.mutator.apply_adjustment(StockAdjustment(variant_id=variant_id, mode="add", value=2))
            return "restocked"
        services.sales.create_sale([CartItem(variant_id=variant_id, quantity=1)])
        return "sold"

    results = _run_threads(file_app, work, 30)

    unexpected = [r for r in results if r not in ("sold", "restocked") and not isinstance(r, InsufficientStockError)]
    assert unexpected == []

    with file_app.app_context():
        variant = db.session.get(ProductVariant, variant_id)
        assert variant.stock >= 0
        report = get_services().reconciler.reconcile(variant_id)
        assert report.ok
        assert report.chain_breaks == []
        assert report.movement_count == 1 + sum(1 for r in results if r in ("sold", "restocked"))


def test_keyed_locks_block_same_variant_only():
    locks = KeyedLocks()
    held = threading.Event()
    release = threading.Event()

    def hold_variant_one():
        with locks.hold([variant_key(1)]):
            held.set()
            release.wait(5)

    holder = threading.Thread(target=hold_variant_one)
    holder.start()
    assert held.wait(5)

    other_acquired = threading.Event()

    def take_variant_two():
        with locks.hold([variant_key(2)]):
            other_acquired.set()

    other = threading.Thread(target=take_variant_two)
    other.start()
    assert other_acquired.wait(2), "a different variant must not wait on variant 1"
    other.join(2)

    same_acquired = threading.Event()

    def take_variant_one():
        with locks.hold([variant_key(1)]):
            same_acquired.set()

    waiter = threading.Thread(target=take_variant_one)
    waiter.start()
    assert not same_acquired.wait(0.3), "variant 1 was acquired while still held"

    release.set()
    assert same_acquired.wait(5)
    holder.join(5)
    waiter.join(5)

    assert not holder.is_alive() and not other.is_alive() and not waiter.is_alive()
    assert locks._locks == {}


def test_keyed_locks_overlapping_sets_do_not_deadlock():
    locks = KeyedLocks()
    counter = {"value": 0}

    def worker(keys):
        for _ in range(200):
            with locks.hold(keys):
                counter["value"] += 1

    threads = [
        threading.Thread(target=worker, args=([variant_key(1), variant_key(2)],)),
        threading.Thread(target=worker, args=([variant_key(2), variant_key(1)],)),
        threading.Thread(target=worker, args=([variant_key(2), ("sale", 9)],)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert not any(t.is_alive() for t in threads)
    assert counter["value"] == 600
    assert locks._locks == {}
