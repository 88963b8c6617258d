import re

import pytest

from marketplace.errors import (
    AuthorizationError,
    ConflictError,
    GatewayUnavailableError,
    InvalidTransitionError,
    PaymentDeclinedError,
    PaymentIntegrityError,
)
from marketplace.orders import service as orders_service
from marketplace.orders.models import CreateOrderRequest
from marketplace.payments import service as payments_service
from marketplace.payments.flutterwave_client import GatewayRequestError

USER = {"id": "test-user", "email": "test@example.com", "role": "customer"}


def _order(db, items=None):
    request = CreateOrderRequest(
        addressId="addr-1",
        paymentMethod="card",
        items=items or [{"productId": "prod-2", "variantId": "var-1", "quantity": 2}],
    )
    return orders_service.create_order(db, USER["id"], request)


def _scenario_order(store, db):
    """Commande de 59 000 RWF portant sur une variante suivie en stock."""
    store.add_product("prod-3", "0", name="Sac en cuir")
    store.add_variant("var-3", "prod-3", price="25000", stock=10, name="Marron")
    return _order(db, [{"productId": "prod-3", "variantId": "var-3", "quantity": 2}])


def test_initialize_persists_pending_payment_before_link(store, db, gateway):
    order = _scenario_order(store, db)
    result = payments_service.initialize_payment(db, gateway, USER, order["id"])

    assert re.fullmatch(rf"{order['order_number']}-\d{{13}}-[0-9a-f]{{4}}", result["txRef"])
    assert result["paymentLink"].endswith(result["txRef"])
    payment = store.payment(result["txRef"])
    assert payment["status"] == "PENDING"
    assert payment["amount"] == "59000.00"
    assert payment["currency"] == "RWF"
    assert payment["payment_link"] == result["paymentLink"]

    [sent] = gateway.created
    assert sent["amount"] == "59000.00"
    assert sent["currency"] == "RWF"
    assert sent["payment_options"] == "card"
    assert sent["customer"]["email"] == "test@example.com"
    assert sent["customer"]["name"] == "Aline Uwase"
    assert sent["redirect_url"].endswith(f"/api/checkout/{order['id']}/payment/callback")


def test_redirect_url_must_share_frontend_origin(store, db, gateway, monkeypatch):
    monkeypatch.setattr("marketplace.config.FRONTEND_URL", "https://shop.example.rw")
    order = _scenario_order(store, db)
    callback = f"/api/checkout/{order['id']}/payment/callback"

    for url in (
        "https://shop.example.rw.evil.com/orders",
        "https://shop.example.rw@evil.com/orders",
        "http://shop.example.rw/orders",
    ):
        payments_service.initialize_payment(db, gateway, USER, order["id"], redirect_url=url)
        assert gateway.created[-1]["redirect_url"].endswith(callback)

    payments_service.initialize_payment(db, gateway, USER, order["id"], redirect_url="https://shop.example.rw/orders/1")
    assert gateway.created[-1]["redirect_url"] == "https://shop.example.rw/orders/1"


def test_each_attempt_gets_a_new_tx_ref(store, db, gateway):
    order = _scenario_order(store, db)
    first = payments_service.initialize_payment(db, gateway, USER, order["id"])
    second = payments_service.initialize_payment(db, gateway, USER, order["id"])
    assert first["txRef"] != second["txRef"]
    assert len(store.list_order_payments(db, order["id"])) == 2


def test_initialize_refuses_foreign_paid_or_cancelled_orders(store, db, gateway):
    order = _scenario_order(store, db)
    with pytest.raises(AuthorizationError):
        payments_service.initialize_payment(db, gateway, {"id": "intruder"}, order["id"])

    store.update_order_fields(db, order["id"], {"payment_status": "PAID"})
    with pytest.raises(ConflictError):
        payments_service.initialize_payment(db, gateway, USER, order["id"])

    store.update_order_fields(db, order["id"], {"payment_status": "PENDING", "status": "CANCELLED"})
    with pytest.raises(InvalidTransitionError):
        payments_service.initialize_payment(db, gateway, USER, order["id"])
    assert gateway.created == []


def test_initialize_gateway_timeout_leaves_no_pending_payment(store, db, gateway):
    order = _scenario_order(store, db)
    gateway.create_error = GatewayUnavailableError("timeout")

    with pytest.raises(GatewayUnavailableError):
        payments_service.initialize_payment(db, gateway, USER, order["id"])

    [payment] = store.list_order_payments(db, order["id"])
    assert payment["status"] == "FAILED"
    assert payment["failure_reason"] == "gateway_unavailable"


def test_initialize_gateway_rejection_is_a_decline(store, db, gateway):
    order = _scenario_order(store, db)
    gateway.create_error = GatewayRequestError("Invalid currency", 400)

    with pytest.raises(PaymentDeclinedError):
        payments_service.initialize_payment(db, gateway, USER, order["id"])
    [payment] = store.list_order_payments(db, order["id"])
    assert payment["status"] == "FAILED"


def test_successful_verification_settles_order_and_stock(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(tx_ref, amount=59000)

    result = payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)

    assert result["status"] == "SUCCESSFUL"
    assert result["paymentStatus"] == "PAID"
    assert result["orderStatus"] == "PROCESSING"
    assert result["applied"] is True
    assert store.order(order["id"])["payment_ref"] == tx_ref
    assert store.variants["var-3"]["stock"] == 8
    payment = store.payment(tx_ref)
    assert payment["status"] == "SUCCESSFUL"
    assert payment["verified_at"]
    assert payment["gateway_transaction_id"]


def test_cancelling_an_oversold_paid_order_does_not_create_stock(store, db, gateway):
    order = _order(db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    store.variants["var-1"]["stock"] = 1
    gateway.settle(tx_ref, amount=order["total_amount"])

    result = payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert result["paymentStatus"] == "PAID"
    assert store.variants["var-1"]["stock"] == 1

    orders_service.cancel_order(db, USER["id"], order["id"])
    assert store.variants["var-1"]["stock"] == 1


def test_repeated_verification_is_idempotent(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(tx_ref, amount=59000)

    first = payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    snapshot = (dict(store.order(order["id"])), store.payment(tx_ref))
    results = [payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref) for _ in range(3)]

    assert all(r["status"] == first["status"] for r in results)
    assert all(r["applied"] is False for r in results)
    assert (dict(store.order(order["id"])), store.payment(tx_ref)) == snapshot
    assert store.variants["var-3"]["stock"] == 8
    assert store.stock_commits == 1
    # une tentative terminale n'interroge plus la passerelle
    assert gateway.verify_calls == [tx_ref]


def test_amount_mismatch_is_rejected_and_order_untouched(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(tx_ref, amount=100)

    with pytest.raises(PaymentIntegrityError) as exc:
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert exc.value.code == "amount_mismatch"

    assert store.payment(tx_ref)["status"] == "FAILED"
    assert store.payment(tx_ref)["failure_reason"] == "amount_mismatch"
    current = store.order(order["id"])
    assert (current["status"], current["payment_status"]) == ("PENDING", "PENDING")
    assert store.variants["var-3"]["stock"] == 10

    # même réponse au second appel
    with pytest.raises(PaymentIntegrityError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)


def test_currency_mismatch_is_rejected(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(tx_ref, amount=59000, currency="USD")

    with pytest.raises(PaymentIntegrityError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert store.order(order["id"])["payment_status"] == "PENDING"


def test_reported_tx_ref_mismatch_is_rejected(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(tx_ref, amount=59000, reported_tx_ref="someone-elses-ref")

    with pytest.raises(PaymentIntegrityError) as exc:
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert exc.value.code == "tx_ref_mismatch"
    assert store.order(order["id"])["payment_status"] == "PENDING"


def test_declined_payment_then_successful_retry(store, db, gateway):
    order = _scenario_order(store, db)
    declined = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(declined, amount=59000, status="failed")

    with pytest.raises(PaymentDeclinedError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], declined)
    current = store.order(order["id"])
    assert (current["status"], current["payment_status"]) == ("PENDING", "FAILED")
    assert store.payment(declined)["status"] == "FAILED"

    # second appel: même refus, aucun nouvel appel passerelle
    with pytest.raises(PaymentDeclinedError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], declined)
    assert gateway.verify_calls == [declined]

    retry = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(retry, amount=59000)
    result = payments_service.verify_and_reconcile(db, gateway, USER, order["id"], retry)
    assert result["paymentStatus"] == "PAID"
    assert result["orderStatus"] == "PROCESSING"


def test_gateway_outage_on_verify_keeps_payment_pending(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.go_down()

    with pytest.raises(GatewayUnavailableError) as exc:
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert exc.value.retryable is True
    assert store.payment(tx_ref)["status"] == "PENDING"


def test_transaction_not_yet_known_to_gateway_is_pending(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]

    result = payments_service.verify_and_reconcile(db, gateway, USER, order["id"], tx_ref)
    assert result["status"] == "PENDING"
    assert result["applied"] is False
    assert store.order(order["id"])["payment_status"] == "PENDING"


def test_unknown_or_foreign_tx_ref_is_an_integrity_error(store, db, gateway):
    order = _scenario_order(store, db)
    other = _order(db)
    other_ref = payments_service.initialize_payment(db, gateway, USER, other["id"])["txRef"]

    with pytest.raises(PaymentIntegrityError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], "forged-ref")
    with pytest.raises(PaymentIntegrityError):
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], other_ref)
    assert gateway.verify_calls == []


def test_second_successful_capture_is_refused(store, db, gateway):
    order = _scenario_order(store, db)
    first = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    second = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    gateway.settle(first, amount=59000)
    gateway.settle(second, amount=59000)

    payments_service.verify_and_reconcile(db, gateway, USER, order["id"], first)
    with pytest.raises(PaymentIntegrityError) as exc:
        payments_service.verify_and_reconcile(db, gateway, USER, order["id"], second)

    assert exc.value.code == "duplicate_payment"
    assert store.payment(second)["status"] == "FAILED"
    assert len(store.list_order_payments(db, order["id"], status="SUCCESSFUL")) == 1
    assert store.variants["var-3"]["stock"] == 8


def test_webhook_requires_signature(store, db, gateway, monkeypatch):
    monkeypatch.setattr("marketplace.config.FLUTTERWAVE_SECRET_HASH", "s3cret")
    with pytest.raises(AuthorizationError):
        payments_service.handle_webhook(db, gateway, {"data": {"tx_ref": "x"}}, "wrong")
    with pytest.raises(AuthorizationError):
        payments_service.handle_webhook(db, gateway, {"data": {"tx_ref": "x"}}, None)


def test_webhook_reverifies_instead_of_trusting_payload(store, db, gateway, monkeypatch):
    monkeypatch.setattr("marketplace.config.FLUTTERWAVE_SECRET_HASH", "s3cret")
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]

    # le payload prétend un succès mais la passerelle ne connaît pas encore la transaction
    forged = {"event": "charge.completed", "data": {"tx_ref": tx_ref, "status": "successful", "amount": 59000}}
    assert payments_service.handle_webhook(db, gateway, forged, "s3cret")["paymentStatus"] == "PENDING"
    assert store.order(order["id"])["payment_status"] == "PENDING"

    gateway.settle(tx_ref, amount=59000)
    assert payments_service.handle_webhook(db, gateway, forged, "s3cret")["paymentStatus"] == "SUCCESSFUL"
    assert store.order(order["id"])["status"] == "PROCESSING"
    assert payments_service.handle_webhook(db, gateway, forged, "s3cret")["status"] == "ok"
    assert store.stock_commits == 1


def test_webhook_unknown_reference_is_ignored(store, db, gateway, monkeypatch):
    monkeypatch.setattr("marketplace.config.FLUTTERWAVE_SECRET_HASH", "s3cret")
    assert payments_service.handle_webhook(db, gateway, {"data": {"tx_ref": "nope"}}, "s3cret") == {"status": "ignored"}
    assert payments_service.handle_webhook(db, gateway, {"event": "ping"}, "s3cret") == {"status": "ignored"}


def test_callback_outcomes(store, db, gateway):
    order = _scenario_order(store, db)
    tx_ref = payments_service.initialize_payment(db, gateway, USER, order["id"])["txRef"]
    assert payments_service.handle_callback(db, gateway, order["id"], None) == "failed"
    assert payments_service.handle_callback(db, gateway, order["id"], tx_ref) == "pending"
    gateway.settle(tx_ref, amount=59000)
    assert payments_service.handle_callback(db, gateway, order["id"], tx_ref) == "successful"
