from decimal import Decimal

from marketplace.infra.supabase_client import get_db


def _create(client, items=None, address="addr-1"):
    return client.post("/api/checkout/create", json={
        "addressId": address,
        "paymentMethod": "mobile_money",
        "items": items or [{"productId": "prod-1", "quantity": 2}],
    })


def test_cart_endpoints_roundtrip(client, store):
    r = client.post("/api/cart/add", json={"productId": "prod-1", "quantity": 2})
    assert r.status_code == 201
    item_id = r.json()["data"]["id"]

    body = client.get("/api/cart").json()
    assert body["success"] is True
    summary = body["data"]["summary"]
    assert summary == {"totalItems": 2, "subtotal": "50000.00", "tax": "9000.00", "shippingCost": "0.00", "total": "59000.00"}

    assert client.put(f"/api/cart/update/{item_id}", json={"quantity": 1}).json()["data"]["quantity"] == 1
    assert client.delete(f"/api/cart/remove/{item_id}").json()["success"] is True
    assert client.delete("/api/cart/clear").json()["data"] == {"removed": 0}


def test_create_order_returns_envelope(client, store):
    r = _create(client)
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    order = body["data"]
    assert order["status"] == "PENDING"
    assert Decimal(order["total_amount"]) == Decimal("59000")


def test_create_order_validation_errors_use_envelope(client, store):
    r = client.post("/api/checkout/create", json={"addressId": "addr-1", "paymentMethod": "card", "items": []})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "validation_error"

    r = client.post("/api/checkout/create", json={"addressId": "addr-1", "paymentMethod": "cash", "items": [{"productId": "prod-1", "quantity": 1}]})
    assert r.status_code == 400


def test_foreign_address_is_403(client, store):
    r = _create(client, address="addr-other")
    assert r.status_code == 403
    assert r.json() == {"success": False, "message": "Cette adresse ne vous appartient pas", "error": "address_forbidden"}
    assert store.orders == {}


def test_insufficient_stock_is_400_with_details(client, store):
    r = _create(client, items=[{"productId": "prod-2", "variantId": "var-1", "quantity": 9}])
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "insufficient_stock"
    assert body["details"]["available"] == 5


def test_order_listing_and_detail(client, store):
    order_id = _create(client).json()["data"]["id"]
    listing = client.get("/api/checkout/orders", params={"status": "PENDING"}).json()["data"]
    assert [o["id"] for o in listing["orders"]] == [order_id]
    assert listing["pagination"]["total"] == 1

    detail = client.get(f"/api/checkout/orders/{order_id}").json()["data"]
    assert detail["payments"] == []
    assert client.get("/api/checkout/orders/unknown").status_code == 404


def test_full_payment_flow(client, store, gateway):
    order_id = _create(client, items=[{"productId": "prod-2", "variantId": "var-1", "quantity": 2}]).json()["data"]["id"]

    init = client.post(f"/api/checkout/{order_id}/payment/initialize", json={"paymentMethod": "mobile_money"})
    assert init.status_code == 200
    data = init.json()["data"]
    assert data["paymentLink"].startswith("https://checkout.flutterwave.test/")
    assert gateway.created[0]["payment_options"] == "mobilemoneyrwanda"
    tx_ref = data["txRef"]

    pending = client.post(f"/api/checkout/{order_id}/payment/verify", json={"txRef": tx_ref})
    assert pending.status_code == 200
    assert pending.json()["data"]["status"] == "PENDING"

    gateway.settle(tx_ref, amount=store.order(order_id)["total_amount"])
    for _ in range(2):
        r = client.post(f"/api/checkout/{order_id}/payment/verify", json={"txRef": tx_ref})
        assert r.status_code == 200
        assert r.json()["data"]["paymentStatus"] == "PAID"
        assert r.json()["data"]["orderStatus"] == "PROCESSING"
    assert store.variants["var-1"]["stock"] == 3


def test_initialize_without_body_uses_order_method(client, store, gateway):
    order_id = _create(client).json()["data"]["id"]
    assert client.post(f"/api/checkout/{order_id}/payment/initialize").status_code == 200
    assert gateway.created[0]["payment_options"] == "mobilemoneyrwanda"


def test_declined_payment_is_402(client, store, gateway):
    order_id = _create(client).json()["data"]["id"]
    tx_ref = client.post(f"/api/checkout/{order_id}/payment/initialize", json={}).json()["data"]["txRef"]
    gateway.settle(tx_ref, amount="59000.00", status="failed")

    r = client.post(f"/api/checkout/{order_id}/payment/verify", json={"txRef": tx_ref})
    assert r.status_code == 402
    assert r.json()["error"] == "payment_declined"


def test_amount_mismatch_is_409(client, store, gateway):
    order_id = _create(client).json()["data"]["id"]
    tx_ref = client.post(f"/api/checkout/{order_id}/payment/initialize", json={}).json()["data"]["txRef"]
    gateway.settle(tx_ref, amount=1)

    r = client.post(f"/api/checkout/{order_id}/payment/verify", json={"txRef": tx_ref})
    assert r.status_code == 409
    assert r.json()["error"] == "amount_mismatch"


def test_gateway_outage_is_503(client, store, gateway):
    order_id = _create(client).json()["data"]["id"]
    tx_ref = client.post(f"/api/checkout/{order_id}/payment/initialize", json={}).json()["data"]["txRef"]
    gateway.go_down()

    r = client.post(f"/api/checkout/{order_id}/payment/verify", json={"txRef": tx_ref})
    assert r.status_code == 503
    assert r.json()["success"] is False


def test_callback_redirects_to_frontend(client, store, gateway):
    order_id = _create(client).json()["data"]["id"]
    tx_ref = client.post(f"/api/checkout/{order_id}/payment/initialize", json={}).json()["data"]["txRef"]
    gateway.settle(tx_ref, amount="59000.00")

    r = client.get(
        f"/api/checkout/{order_id}/payment/callback",
        params={"tx_ref": tx_ref, "status": "successful", "transaction_id": "9000"},
        follow_redirects=False,
    )
    assert r.status_code == 303
    assert r.headers["location"].endswith(f"/orders/{order_id}?payment=successful")


def test_cancel_order_endpoint(client, store):
    order_id = _create(client).json()["data"]["id"]
    r = client.put(f"/api/checkout/orders/{order_id}/cancel")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "CANCELLED"
    assert client.put(f"/api/checkout/orders/{order_id}/cancel").status_code == 409


def test_status_update_requires_admin(client, store):
    order_id = _create(client).json()["data"]["id"]
    r = client.put(f"/api/checkout/orders/{order_id}/status", json={"status": "CANCELLED"}, headers={"Authorization": "Bearer tok"})
    assert r.status_code in (401, 403)
    assert r.json()["success"] is False


def test_admin_can_move_order_through_state_machine(authenticated_admin_client, store):
    client = authenticated_admin_client
    order_id = _create(client).json()["data"]["id"]
    store.update_order_fields(None, order_id, {"status": "PROCESSING", "payment_status": "PAID"})

    r = client.put(f"/api/checkout/orders/{order_id}/status", json={"status": "SHIPPED"})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "SHIPPED"
    assert client.put(f"/api/checkout/orders/{order_id}/status", json={"status": "PENDING"}).status_code == 409


def test_missing_database_is_503(app, client):
    app.dependency_overrides.pop(get_db, None)
    app.state.supabase = None
    r = client.get("/api/cart")
    assert r.status_code == 503
    assert r.json()["error"] == "persistence_unavailable"


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json()["success"] is False
