"""Webhook envelopes, signatures and the delivery loop."""

import json

import httpx
import pytest
from sqlalchemy import select

from conftest import seed_merchant
from sandpay.common.errors import DispatchError
from sandpay.services.gateway.models import Payment
from sandpay.services.webhooks.models import WebhookEndpoint, WebhookEvent
from sandpay.services.webhooks.service import (
    WebhookDispatcher,
    WebhookSender,
    serialize_payload,
    sign_payload,
    verify_signature,
)


def make_payment(merchant_id: str) -> Payment:
    return Payment(
        id="pay_1",
        session_id="sess_1",
        merchant_id=merchant_id,
        amount=4999,
        currency="USD",
        method="card",
        masked_details="**** **** **** 4242",
        status="succeeded",
        failure_reason=None,
        fee_amount=155,
        net_amount=4844,
    )


def load_events(session_factory) -> list[WebhookEvent]:
    with session_factory() as db:
        return db.execute(select(WebhookEvent).order_by(WebhookEvent.endpoint_id)).scalars().all()


def test_sign_and_verify():
    raw = b'{"id":"evt_1"}'
    header = sign_payload("whsec_x", raw)
    assert header.startswith("sha256=")
    assert len(header) == len("sha256=") + 64
    assert verify_signature("whsec_x", raw, header)
    assert not verify_signature("whsec_y", raw, header)
    assert not verify_signature("whsec_x", raw + b" ", header)
    assert not verify_signature("whsec_x", raw, "")


def test_dispatch_builds_envelope_per_active_endpoint(session_factory, clock):
    seeded = seed_merchant(session_factory, endpoints=2)
    with session_factory() as db:
        db.add(WebhookEndpoint(merchant_id=seeded["merchant_id"], url="https://off.test", secret="s", active=False))
        db.commit()

    events = WebhookDispatcher(session_factory, clock=clock).dispatch(
        seeded["merchant_id"], "payment.succeeded", make_payment(seeded["merchant_id"])
    )

    assert len(events) == 2
    assert len({e.id for e in events}) == 2
    for event in events:
        assert event.id.startswith("evt_")
        assert event.payload["id"] == event.id
        assert event.payload["type"] == "payment.succeeded"
        assert event.payload["created"] == int(clock.now.timestamp())
        assert event.payload["data"]["object"]["net_amount"] == 4844
    assert len(load_events(session_factory)) == 2


def test_dispatch_continues_past_failing_endpoint(session_factory, clock, monkeypatch):
    seeded = seed_merchant(session_factory, endpoints=3)
    dispatcher = WebhookDispatcher(session_factory, clock=clock)
    original = dispatcher._record
    failing = seeded["endpoint_ids"][0]

    def flaky_record(endpoint, event_type, payment):
        if endpoint.id == failing:
            raise DispatchError("insert failed")
        return original(endpoint, event_type, payment)

    monkeypatch.setattr(dispatcher, "_record", flaky_record)
    events = dispatcher.dispatch(seeded["merchant_id"], "payment.failed", make_payment(seeded["merchant_id"]))

    assert len(events) == 2
    assert failing not in {e.endpoint_id for e in events}


@pytest.fixture
def queued(session_factory, clock):
    seeded = seed_merchant(session_factory, endpoints=2)
    WebhookDispatcher(session_factory, clock=clock).dispatch(
        seeded["merchant_id"], "payment.succeeded", make_payment(seeded["merchant_id"])
    )
    return seeded


@pytest.mark.asyncio
async def test_sender_delivers_signed_payload(session_factory, clock, queued):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200)

    sender = WebhookSender(session_factory, transport=httpx.MockTransport(handler), clock=clock)
    outcome = await sender.deliver_pending_once()

    assert set(outcome.values()) == {"delivered"}
    assert len(received) == 2
    secrets_by_url = {f"https://merchant.test/hooks/{i}": f"whsec_{i}" for i in range(2)}
    for request in received:
        raw = request.content
        assert verify_signature(secrets_by_url[str(request.url)], raw, request.headers["X-SandPay-Signature"])
        assert json.loads(raw)["type"] == "payment.succeeded"
        assert raw == serialize_payload(json.loads(raw))

    for event in load_events(session_factory):
        assert event.delivery_status == "delivered"
        assert event.attempt_count == 1
        assert event.delivered_at is not None
    with session_factory() as db:
        endpoints = db.execute(select(WebhookEndpoint)).scalars().all()
        assert all(e.last_delivered_at is not None for e in endpoints)

    assert await sender.deliver_pending_once() == {}


@pytest.mark.asyncio
async def test_one_failing_endpoint_does_not_block_others(session_factory, clock, queued):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/0"):
            return httpx.Response(500)
        return httpx.Response(204)

    sender = WebhookSender(session_factory, transport=httpx.MockTransport(handler), clock=clock)
    await sender.deliver_pending_once()

    by_endpoint = {e.endpoint_id: e for e in load_events(session_factory)}
    failed = by_endpoint[queued["endpoint_ids"][0]]
    ok = by_endpoint[queued["endpoint_ids"][1]]
    assert ok.delivery_status == "delivered"
    assert failed.delivery_status == "pending"
    assert failed.attempt_count == 1
    assert failed.last_error == "http_status=500"


@pytest.mark.asyncio
async def test_retry_backoff_then_failed(session_factory, clock, queued):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sender = WebhookSender(
        session_factory,
        max_attempts=2,
        transport=httpx.MockTransport(handler),
        clock=clock,
    )

    first = await sender.deliver_pending_once()
    assert set(first.values()) == {"pending"}

    # Not due until the backoff elapses.
    assert await sender.deliver_pending_once() == {}
    clock.advance(seconds=5)

    second = await sender.deliver_pending_once()
    assert set(second.values()) == {"failed"}
    for event in load_events(session_factory):
        assert event.delivery_status == "failed"
        assert event.attempt_count == 2
        assert "ConnectError" in event.last_error

    assert sender.replay_failed() == 2
    assert all(e.delivery_status == "pending" and e.attempt_count == 0 for e in load_events(session_factory))
