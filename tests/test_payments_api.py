import pytest

from app.gateways.base import VerifyResult
from app.routes import payments
from app.services.errors import GatewayUnavailable


def _process(client, auth_headers, **overrides):
    payload = {
        "contentType": "course",
        "contentId": "c-500",
        "paymentMethodKind": "card",
        "paymentData": {"paymentMethodId": "pm_1"},
        "gateway": "stripe",
        "clientPrice": 500,
    }
    payload.update(overrides)
    return client.post("/payments/process", json=payload, headers=auth_headers)


def test_process_card_payment(client, auth_headers, catalog):
    response = _process(client, auth_headers)

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "succeeded"
    assert body["invoiceId"].startswith("INV-")
    assert body["transactionId"]
    assert body["error"] is None


def test_process_rejects_stale_client_price(client, auth_headers, catalog, stripe_gateway):
    body = _process(client, auth_headers, clientPrice=450).json()

    assert body["status"] == "failed"
    assert body["error"]["code"] == "price_mismatch"
    assert body["transactionId"] is None
    assert stripe_gateway.charges == []


def test_process_mobile_money_is_pending(client, auth_headers, catalog):
    body = _process(
        client,
        auth_headers,
        contentType="event",
        contentId="e-1",
        paymentMethodKind="mobile_money",
        paymentData={"provider": "mpesa", "phoneNumber": "+258 84 123 4567"},
        gateway="paytek",
        clientPrice=1500,
    ).json()

    assert body["status"] == "pending"
    assert body["message"] == "Pagamento pendente de confirmação"
    assert body["error"] is None


def test_verify_intent(client, auth_headers, catalog):
    _process(client, auth_headers)

    response = client.get("/payments/verify-intent/stripe_ref_1", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "succeeded"
    assert response.json()["gatewayReference"] == "stripe_ref_1"


def test_confirmation_redirect_is_idempotent(client, auth_headers, catalog, stripe_gateway):
    session_id = client.post(
        "/checkout/sessions", json={"contentType": "course", "contentId": "c-500"}, headers=auth_headers
    ).json()["session"]["sessionId"]
    stripe_gateway.verify_results["cs_abc"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": session_id}
    )

    bodies = [
        client.get("/payments/confirmation", params={"session_id": "cs_abc"}, headers=auth_headers).json()
        for _ in range(3)
    ]

    assert {b["transaction"]["transactionId"] for b in bodies} == {bodies[0]["transaction"]["transactionId"]}
    assert bodies[0]["hasAccess"] is True
    assert bodies[0]["accessUrl"] == "/learn/python-do-zero"
    assert bodies[0]["message"] == "Pagamento confirmado"
    assert stripe_gateway.verifies == ["cs_abc"]

    history = client.get("/payments/history", headers=auth_headers).json()
    assert history["totalItems"] == 1


def test_confirmation_polls_bank_transfer(client, auth_headers, catalog, paytek_gateway):
    body = _process(
        client,
        auth_headers,
        contentType="bundle",
        contentId="b-1",
        paymentMethodKind="bank_transfer",
        paymentData={"bank": "bci"},
        gateway="paytek",
        clientPrice=2500,
    ).json()
    assert body["status"] == "pending"

    params = {"success": "true", "contentType": "bundle", "contentId": "b-1"}
    pending = client.get("/payments/confirmation", params=params, headers=auth_headers).json()
    assert pending["hasAccess"] is False
    assert pending["transaction"]["status"] == "pending"
    assert "1 a 2 dias" in pending["message"]

    paytek_gateway.settle("paytek_ref_1")
    settled = client.get("/payments/latest-payment/bundle/b-1", headers=auth_headers).json()
    assert settled["status"] == "succeeded"

    done = client.get("/payments/confirmation", params=params, headers=auth_headers).json()
    assert done["hasAccess"] is True


@pytest.mark.parametrize(
    "params",
    [{}, {"session_id": "cs_1", "payment_intent": "pi_1"}],
)
def test_confirmation_needs_one_identifier(client, auth_headers, params):
    response = client.get("/payments/confirmation", params=params, headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_gateway_outage_is_retryable(client, auth_headers, catalog, paytek_gateway):
    _process(
        client,
        auth_headers,
        contentType="event",
        contentId="e-1",
        paymentMethodKind="mobile_money",
        paymentData={"provider": "emola", "phoneNumber": "861234567"},
        gateway="paytek",
        clientPrice=1500,
    )
    paytek_gateway.verify_error = GatewayUnavailable("timeout")

    response = client.get("/payments/latest-payment", headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["retryable"] is True


def test_process_gateway_timeout_is_pending(client, auth_headers, catalog, paytek_gateway):
    paytek_gateway.charge_error = GatewayUnavailable("read timeout")

    body = _process(
        client,
        auth_headers,
        contentType="event",
        contentId="e-1",
        paymentMethodKind="mobile_money",
        paymentData={"provider": "mpesa", "phoneNumber": "841234567"},
        gateway="paytek",
        clientPrice=1500,
    ).json()

    assert body["status"] == "pending"
    assert body["error"]["retryable"] is True
    assert body["transactionId"] is None

    session = client.get(f"/checkout/sessions/{body['sessionId']}", headers=auth_headers).json()["session"]
    assert session["status"] == "processing"


def test_unknown_payment_reference(client, auth_headers):
    response = client.get("/payments/verify-session/cs_unknown", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["retryable"] is False


def test_payment_config(client):
    body = client.get("/payments/config").json()

    assert body["publishableKey"] == "pk_test_123"
    assert body["defaultCurrency"] == "MZN"
    assert body["mobileProviders"]["mpesa"] == "M-Pesa"


def test_saved_payment_methods(client, auth_headers):
    card = client.post(
        "/payments/methods",
        json={
            "kind": "card",
            "data": {"paymentMethodId": "pm_9", "brand": "visa", "last4": "4242", "expMonth": 12, "expYear": 2099},
        },
        headers=auth_headers,
    )
    assert card.status_code == 200
    assert card.json()["label"] == "Visa •••• 4242"
    assert card.json()["isDefault"] is True

    wallet = client.post(
        "/payments/methods",
        json={"kind": "mobile_money", "data": {"provider": "mpesa", "phoneNumber": "841234567"}},
        headers=auth_headers,
    ).json()
    assert wallet["last4"] == "4567"
    assert wallet["isDefault"] is False
    assert "841234567" not in str(wallet)

    expired = client.post(
        "/payments/methods",
        json={"kind": "card", "data": {"paymentMethodId": "pm_old", "last4": "1111", "expMonth": 1, "expYear": 2020}},
        headers=auth_headers,
    )
    assert expired.status_code == 422

    listed = client.get("/payments/methods", headers=auth_headers).json()
    assert [m["kind"] for m in listed] == ["card", "mobile_money"]

    assert client.delete(f"/payments/methods/{card.json()['id']}", headers=auth_headers).status_code == 200
    assert client.delete(f"/payments/methods/{card.json()['id']}", headers=auth_headers).status_code == 404

    remaining = client.get("/payments/methods", headers=auth_headers).json()
    assert remaining[0]["isDefault"] is True


def test_invoice_download(client, auth_headers, catalog):
    invoice_id = _process(client, auth_headers).json()["invoiceId"]

    response = client.get(f"/invoices/{invoice_id}/download", headers=auth_headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_invoice_of_pending_payment(client, auth_headers, catalog):
    invoice_id = _process(
        client,
        auth_headers,
        contentType="bundle",
        contentId="b-1",
        paymentMethodKind="bank_transfer",
        paymentData={},
        gateway="paytek",
        clientPrice=2500,
    ).json()["invoiceId"]

    response = client.get(f"/invoices/{invoice_id}/download", headers=auth_headers)

    assert response.status_code == 400


def test_resend_confirmation(client, auth_headers, catalog, monkeypatch):
    sent = []
    monkeypatch.setattr(
        payments,
        "send_payment_confirmation",
        lambda txn, user, title, pdf=None: sent.append((txn.invoice_id, user.email)) or True,
    )
    invoice_id = _process(client, auth_headers).json()["invoiceId"]

    response = client.post("/payments/resend-confirmation", json={"invoiceId": invoice_id}, headers=auth_headers)

    assert response.status_code == 200
    assert sent == [(invoice_id, "ana@example.com")]


def test_resend_confirmation_failure(client, auth_headers, catalog, monkeypatch):
    monkeypatch.setattr(payments, "send_payment_confirmation", lambda *args, **kwargs: False)
    invoice_id = _process(client, auth_headers).json()["invoiceId"]

    response = client.post("/payments/resend-confirmation", json={"invoiceId": invoice_id}, headers=auth_headers)

    assert response.status_code == 502


def test_history_is_paginated(client, auth_headers, catalog):
    _process(client, auth_headers)
    _process(
        client,
        auth_headers,
        contentType="bundle",
        contentId="b-1",
        paymentMethodKind="bank_transfer",
        paymentData={},
        gateway="paytek",
        clientPrice=2500,
    )

    body = client.get("/payments/history", params={"page": 2, "limit": 1}, headers=auth_headers).json()

    assert body["totalItems"] == 2
    assert body["totalPages"] == 2
    assert body["currentPage"] == 2
    assert body["limit"] == 1
    assert len(body["results"]) == 1
    assert body["results"][0]["invoiceId"].startswith("INV-")
