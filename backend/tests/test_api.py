"""
HTTP-level tests. Requests go through httpx into the Flask WSGI app
without a running server.
"""
import httpx
import pytest


@pytest.fixture()
def api(app, db_session):
    with httpx.Client(transport=httpx.WSGITransport(app=app), base_url="http://testserver") as client:
        yield client


def _create_product(api, sku="TEE", stock=10, price_cents=10000, reorder_point=None):
    variant = {"sku": f"{sku}-M", "price_cents": price_cents, "stock": stock, "size": "M"}
    if reorder_point is not None:
        variant["reorder_point"] = reorder_point
    response = api.post("/api/products", json={"name": f"Product {sku}", "base_sku": sku, "variants": [variant]})
    assert response.status_code == 201, response.text
    return response.json()["product"]["variants"][0]


def test_health(api):
    response = api.get("/api/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"]["status"] == "healthy"


def test_create_product_and_get_variant(api):
    variant = _create_product(api, stock=7)
    assert variant["stock"] == 7

    response = api.get(f"/api/variants/{variant['id']}")
    assert response.status_code == 200
    assert response.json()["variant"]["sku"] == "TEE-M"

    duplicate = api.post(
        "/api/products",
        json={"name": "Again", "base_sku": "TEE2", "variants": [{"sku": "TEE-M", "price_cents": 1}]},
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["type"] == "ValidationError"


def test_unknown_variant_is_404(api):
    response = api.get("/api/variants/4040")
    assert response.status_code == 404
    body = response.json()
    assert body["type"] == "NotFoundError"
    assert body["details"] == {"variant_id": 4040}


def test_sale_and_refund_flow(api):
    variant = _create_product(api, stock=10)
    customer = api.post("/api/customers", json={"name": "Grace", "email": "Grace@Example.com"}).json()["customer"]
    assert customer["email"] == "grace@example.com"

    response = api.post("/api/sales", json={
        "items": [{"variant_id": variant["id"], "quantity": 4}],
        "customer_id": customer["id"],
        "payment_method": "card",
    })
    assert response.status_code == 201, response.text
    tx = response.json()["transaction"]
    assert tx["subtotal_cents"] == 40000
    assert tx["tax_cents"] == 3200
    assert tx["total_cents"] == 43200
    item_id = tx["items"][0]["id"]

    response = api.post(f"/api/sales/{tx['id']}/refunds", json={"items": [{"sale_item_id": item_id, "quantity": 3}]})
    assert response.status_code == 200
    assert response.json()["transaction"]["status"] == "partially_refunded"

    response = api.post(f"/api/sales/{tx['id']}/refunds", json={"items": [{"sale_item_id": item_id, "quantity": 2}]})
    assert response.status_code == 409
    assert response.json()["type"] == "OverRefundError"

    response = api.post(f"/api/sales/{tx['id']}/refund", json={})
    assert response.status_code == 200
    assert response.json()["transaction"]["status"] == "refunded"

    response = api.post(f"/api/sales/{tx['id']}/refund", json={})
    assert response.status_code == 409
    assert response.json()["type"] == "AlreadyRefundedError"

    assert api.get(f"/api/customers/{customer['id']}").json()["customer"]["total_spent_cents"] == 0
    assert api.get(f"/api/variants/{variant['id']}").json()["variant"]["stock"] == 10

    listed = api.get("/api/sales", params={"status": "refunded"}).json()
    assert [t["id"] for t in listed["transactions"]] == [tx["id"]]
    assert api.get(f"/api/sales/{tx['id']}").json()["transaction"]["refunded_amount_cents"] == 40000


def test_sale_errors(api):
    variant = _create_product(api, stock=1)

    response = api.post("/api/sales", json={"items": [{"variant_id": variant["id"], "quantity": 2}]})
    assert response.status_code == 409
    assert response.json()["type"] == "InsufficientStockError"
    assert response.json()["details"]["variant_id"] == variant["id"]

    response = api.post("/api/sales", json={"items": [{"variant_id": variant["id"], "quantity": 1.5}]})
    assert response.status_code == 400

    response = api.post("/api/sales", json={"items": []})
    assert response.status_code == 400

    response = api.post("/api/sales", json={"items": [{"variant_id": 999, "quantity": 1}]})
    assert response.status_code == 404

    response = api.get("/api/sales/31337")
    assert response.status_code == 404


@pytest.mark.parametrize("path", [
    "/api/products",
    "/api/customers",
    "/api/sales",
    "/api/sales/1/refunds",
    "/api/sales/1/refund",
    "/api/inventory/variants/1/movements",
    "/api/inventory/variants/1/adjust",
    "/api/inventory/adjust/bulk",
])
@pytest.mark.parametrize("body", [[1, 2], "text", 7])
def test_non_object_json_body_is_rejected(api, path, body):
    response = api.post(path, json=body)
    assert response.status_code == 400
    assert response.json()["type"] == "ValidationError"
    assert response.json()["error"] == "Invalid JSON payload"


def test_out_of_range_integers_are_rejected(api):
    variant = _create_product(api, stock=5)
    movements_url = f"/api/inventory/variants/{variant['id']}/movements"

    for delta in (2**63, -(2**64), 5_000_000):
        response = api.post(movements_url, json={"type": "RESTOCK", "quantity_delta": delta})
        assert response.status_code == 400, delta
        assert response.json()["type"] == "ValidationError"

    response = api.post("/api/sales", json={"items": [{"variant_id": variant["id"], "quantity": 2**63}]})
    assert response.status_code == 400

    response = api.post("/api/sales", json={"items": [{
        "variant_id": variant["id"], "quantity": 1,
        "discount_type": "FIXED_AMOUNT", "discount_value": 10**12,
    }]})
    assert response.status_code == 400

    response = api.post(
        f"/api/inventory/variants/{variant['id']}/adjust",
        json={"mode": "add", "value": 10**10},
    )
    assert response.status_code == 400

    assert api.get(f"/api/variants/{variant['id']}").json()["variant"]["stock"] == 5
    history = api.get(movements_url).json()
    assert len(history["items"]) == 1


def test_recent_and_product_movements(api):
    shirt = _create_product(api, sku="SHIRT", stock=6)
    hat = _create_product(api, sku="HAT", stock=4)
    sale = api.post("/api/sales", json={"items": [
        {"variant_id": shirt["id"], "quantity": 2},
        {"variant_id": hat["id"], "quantity": 1},
    ]})
    assert sale.status_code == 201

    recent = api.get("/api/inventory/movements", params={"kind": "SALE"}).json()
    assert recent["count"] == 2
    assert {m["variant_id"] for m in recent["movements"]} == {shirt["id"], hat["id"]}

    limited = api.get("/api/inventory/movements", params={"limit": 1}).json()
    assert limited["count"] == 1

    assert api.get("/api/inventory/movements", params={"kind": "GIFT"}).status_code == 400

    product_history = api.get(f"/api/products/{shirt['product_id']}/movements").json()
    assert [m["type"] for m in product_history["movements"]] == ["SALE", "RESTOCK"]
    assert all(m["variant_id"] == shirt["id"] for m in product_history["movements"])

    assert api.get("/api/products/4040/movements").status_code == 404


def test_product_and_sku_lookup(api):
    variant = _create_product(api, sku="CAP", stock=3)

    product = api.get(f"/api/products/{variant['product_id']}").json()["product"]
    assert product["base_sku"] == "CAP"
    assert [v["sku"] for v in product["variants"]] == ["CAP-M"]
    assert api.get("/api/products/4040").status_code == 404

    found = api.get("/api/variants", params={"sku": "CAP-M"})
    assert found.status_code == 200
    assert found.json()["variant"]["id"] == variant["id"]

    missing = api.get("/api/variants", params={"sku": "NOPE"})
    assert missing.status_code == 404
    assert missing.json()["details"] == {"sku": "NOPE"}

    assert api.get("/api/variants").status_code == 400


def test_movements_history_and_pagination(api):
    variant = _create_product(api, stock=0)
    for _ in range(3):
        response = api.post(
            f"/api/inventory/variants/{variant['id']}/movements",
            json={"type": "RESTOCK", "quantity_delta": 2, "reason": "delivery"},
        )
        assert response.status_code == 201

    first = api.get(f"/api/inventory/variants/{variant['id']}/movements", params={"limit": 2}).json()
    assert len(first["items"]) == 2
    assert first["next_cursor"]

    second = api.get(
        f"/api/inventory/variants/{variant['id']}/movements",
        params={"limit": 2, "cursor": first["next_cursor"]},
    ).json()
    assert len(second["items"]) == 1
    assert second["next_cursor"] is None

    filtered = api.get(f"/api/inventory/variants/{variant['id']}/movements", params={"kind": "SALE"}).json()
    assert filtered["items"] == []

    bad = api.get(f"/api/inventory/variants/{variant['id']}/movements", params={"start_date": "soon"})
    assert bad.status_code == 400


def test_adjustments_and_reconcile(api):
    variant = _create_product(api, stock=10)

    response = api.post(
        f"/api/inventory/variants/{variant['id']}/adjust",
        json={"mode": "remove", "value": 3, "reason": "damaged"},
    )
    assert response.status_code == 201
    assert response.json()["movement"]["type"] == "SHRINKAGE"

    response = api.post(
        f"/api/inventory/variants/{variant['id']}/adjust",
        json={"mode": "remove", "value": 30},
    )
    assert response.status_code == 400

    response = api.post("/api/inventory/adjust/bulk", json={"movements": [
        {"variant_id": variant["id"], "mode": "add", "value": 5},
        {"variant_id": variant["id"], "mode": "explode", "value": 1},
    ]})
    assert response.status_code == 400
    assert api.get(f"/api/variants/{variant['id']}").json()["variant"]["stock"] == 7

    response = api.post("/api/inventory/adjust/bulk", json={"movements": [
        {"variant_id": variant["id"], "mode": "add", "value": 5},
        {"variant_id": variant["id"], "mode": "set", "value": 4},
    ]})
    assert response.status_code == 201
    assert response.json()["count"] == 2

    report = api.get(f"/api/inventory/variants/{variant['id']}/reconcile").json()
    assert report["ok"] is True
    assert report["cached_stock"] == 4
    assert report["movement_count"] == 4


def test_low_stock_and_archive(api):
    low = _create_product(api, sku="LOW", stock=2, reorder_point=5)
    _create_product(api, sku="HIGH", stock=50, reorder_point=5)

    listed = api.get("/api/inventory/low-stock").json()
    assert [v["id"] for v in listed["variants"]] == [low["id"]]

    response = api.post(f"/api/variants/{low['id']}/archive")
    assert response.status_code == 200
    assert response.json()["variant"]["is_archived"] is True

    assert api.get("/api/inventory/low-stock").json()["variants"] == []
    assert len(api.get("/api/inventory/low-stock", params={"include_archived": "true"}).json()["variants"]) == 1

    response = api.post("/api/sales", json={"items": [{"variant_id": low["id"], "quantity": 1}]})
    assert response.status_code == 400


def test_customer_endpoints(api):
    response = api.post("/api/customers", json={"name": ""})
    assert response.status_code == 400

    created = api.post("/api/customers", json={"name": "Linus", "email": "linus@example.com"})
    assert created.status_code == 201

    duplicate = api.post("/api/customers", json={"name": "Other", "email": "LINUS@example.com"})
    assert duplicate.status_code == 400

    assert api.get("/api/customers/9090").status_code == 404
