"""HTTP contract for session creation and hosted checkout."""

import pytest
from fastapi.testclient import TestClient

from conftest import seed_merchant
from sandpay.services.gateway.main import create_app
from sandpay.services.gateway.platform import set_platform_setting
from sandpay.services.gateway.simulator import FixedOutcomeSource


@pytest.fixture
def client(session_factory, test_settings, clock):
    app = create_app(
        app_settings=test_settings,
        session_factory=session_factory,
        outcomes=FixedOutcomeSource(True),
        clock=clock,
        run_webhook_sender=False,
    )
    return TestClient(app)


def create_session(client, secret_key, **body):
    payload = {"amount": 4999, "currency": "usd", "description": "Order #1"}
    payload.update(body)
    return client.post("/v1/payment_sessions", json=payload, headers={"X-API-Key": secret_key})


def test_create_session(client, merchant):
    resp = create_session(client, merchant["secret_key"])

    assert resp.status_code == 200
    body = resp.json()
    assert body["hosted_url"] == f"http://checkout.test/checkout/{body['id']}"
    assert body["widget_token"].startswith("wt_")
    assert body["amount"] == 4999
    assert body["currency"] == "USD"
    assert body["status"] == "requires_payment_method"
    assert body["expires_at"]


def test_bearer_header_is_accepted(client, merchant):
    resp = client.post(
        "/v1/payment_sessions",
        json={"amount": 100},
        headers={"Authorization": f"Bearer {merchant['secret_key']}", "X-API-Key": "sk_wrong"},
    )
    assert resp.status_code == 200


@pytest.mark.parametrize(
    "headers,status,code",
    [
        ({}, 401, "missing_api_key"),
        ({"X-API-Key": "sk_nope"}, 401, "invalid_api_key"),
    ],
)
def test_auth_errors(client, merchant, headers, status, code):
    resp = client.post("/v1/payment_sessions", json={"amount": 100}, headers=headers)
    assert resp.status_code == status
    assert resp.json()["error"]["code"] == code
    assert resp.json()["error"]["type"] == "authentication_error"


def test_unapproved_merchant_forbidden(client, session_factory):
    seeded = seed_merchant(session_factory, status="pending")
    resp = create_session(client, seeded["secret_key"])
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "merchant_not_approved"


@pytest.mark.parametrize("amount", [0, -1, 12.5, "abc", None, True, "100"])
def test_invalid_amount(client, merchant, amount):
    resp = create_session(client, merchant["secret_key"], amount=amount)
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "invalid_request_error"
    assert resp.json()["error"]["code"] == "invalid_amount"


def test_checkout_flow(client, merchant):
    session_id = create_session(client, merchant["secret_key"]).json()["id"]

    view = client.get(f"/v1/checkout/sessions/{session_id}")
    assert view.status_code == 200
    assert view.json()["description"] == "Order #1"

    resp = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "card", "card": {"number": "4242 4242 4242 4242", "exp_month": 12, "exp_year": 25, "cvc": "123"}},
    )
    assert resp.status_code == 200
    payment = resp.json()
    assert payment["status"] == "succeeded"
    assert payment["fee_amount"] == 155
    assert payment["net_amount"] == 4844
    assert payment["failure_reason"] is None
    assert payment["session_id"] == session_id

    again = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "bank", "bank": {"routing": "110000000", "account": "000123456789"}},
    )
    assert again.status_code == 409
    assert again.json()["error"] == {
        "type": "session_state_error",
        "code": "session_not_payable",
        "message": "Payment session is no longer valid",
    }


def test_declined_payment_is_2xx(client, merchant):
    session_id = create_session(client, merchant["secret_key"]).json()["id"]
    resp = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "card", "card": {"number": "4000000000009995", "exp_month": 1, "exp_year": 30, "cvc": "999"}},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "failed"
    assert resp.json()["failure_reason"] == "insufficient_funds"
    assert resp.json()["fee_amount"] == 0


def test_expired_and_missing_sessions(client, merchant, clock):
    session_id = create_session(client, merchant["secret_key"]).json()["id"]
    clock.advance(minutes=61)

    expired = client.get(f"/v1/checkout/sessions/{session_id}")
    assert expired.status_code == 410
    assert expired.json()["error"]["code"] == "session_expired"

    missing = client.post(
        "/v1/checkout/sessions/nope/confirm",
        json={"method": "bank", "bank": {"routing": "110000000", "account": "000123456789"}},
    )
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "session_not_found"


def test_bad_checkout_payloads(client, merchant):
    session_id = create_session(client, merchant["secret_key"]).json()["id"]

    unknown = client.post(f"/v1/checkout/sessions/{session_id}/confirm", json={"method": "crypto"})
    assert unknown.status_code == 400
    assert unknown.json()["error"]["type"] == "invalid_request_error"
    assert unknown.json()["error"]["code"] == "invalid_payment_method"

    missing = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "card", "card": {"number": "4242424242424242"}},
    )
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "missing_field"


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


def test_non_finite_fee_override_falls_back(client, merchant, session_factory):
    with session_factory() as db:
        set_platform_setting(db, "fee_percentage", "inf")
        db.commit()
    session_id = create_session(client, merchant["secret_key"]).json()["id"]

    resp = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "card", "card": {"number": "4242424242424242", "exp_month": 12, "exp_year": 30, "cvc": "1"}},
    )

    assert resp.status_code == 200
    assert resp.json()["fee_amount"] == 155


def test_unexpected_checkout_failure_renders_error_body(client, merchant, monkeypatch):
    session_id = create_session(client, merchant["secret_key"]).json()["id"]

    def broken_simulate(number):
        raise RuntimeError("rail exploded")

    monkeypatch.setattr(client.app.state.processor.simulator, "simulate_card", broken_simulate)
    resp = client.post(
        f"/v1/checkout/sessions/{session_id}/confirm",
        json={"method": "card", "card": {"number": "4242424242424242", "exp_month": 12, "exp_year": 30, "cvc": "1"}},
    )

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "processing_error"
    assert client.get(f"/v1/checkout/sessions/{session_id}").status_code == 200
