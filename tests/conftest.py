"""Shared fixtures: in-memory store, controllable clock, seeded merchants."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from sandpay.common.config import GatewaySettings
from sandpay.common.db import create_schema, create_session_factory
from sandpay.services.gateway.auth import issue_api_key
from sandpay.services.gateway.models import Merchant
from sandpay.services.gateway.service import CheckoutProcessor
from sandpay.services.gateway.sessions import SessionManager
from sandpay.services.gateway.simulator import FixedOutcomeSource, PaymentMethodSimulator
from sandpay.services.webhooks.models import WebhookEndpoint, WebhookEvent
from sandpay.services.webhooks.service import WebhookDispatcher


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite://")
    create_schema(factory)
    return factory


@pytest.fixture
def test_settings():
    return GatewaySettings(
        processing_delay_seconds=0,
        checkout_base_url="http://checkout.test",
        otel_exporter_otlp_endpoint="",
    )


def seed_merchant(session_factory, status: str = "approved", endpoints: int = 0) -> dict:
    """Insert a merchant with one API key and `endpoints` active webhook endpoints."""

    with session_factory() as db:
        merchant = Merchant(business_name="Acme Widgets", status=status)
        db.add(merchant)
        db.flush()
        issued = issue_api_key(db, merchant.id, name="test")
        endpoint_ids = []
        for i in range(endpoints):
            endpoint = WebhookEndpoint(
                merchant_id=merchant.id,
                url=f"https://merchant.test/hooks/{i}",
                secret=f"whsec_{i}",
                active=True,
            )
            db.add(endpoint)
            db.flush()
            endpoint_ids.append(endpoint.id)
        db.commit()
        return {
            "merchant_id": merchant.id,
            "secret_key": issued.secret_key,
            "api_key_id": issued.api_key_id,
            "endpoint_ids": endpoint_ids,
        }


@pytest.fixture
def merchant(session_factory):
    return seed_merchant(session_factory, endpoints=2)


@pytest.fixture
def sessions(session_factory, clock):
    return SessionManager(session_factory, ttl_seconds=3600, clock=clock)


@pytest.fixture
def outcomes():
    return FixedOutcomeSource(True)


@pytest.fixture
def processor(session_factory, sessions, outcomes, clock, test_settings):
    return CheckoutProcessor(
        session_factory,
        sessions=sessions,
        simulator=PaymentMethodSimulator(outcomes),
        dispatcher=WebhookDispatcher(session_factory, clock=clock),
        settings=test_settings,
        processing_delay_seconds=0,
    )


@pytest.fixture
def webhook_events(session_factory):
    def load():
        with session_factory() as db:
            return db.execute(select(WebhookEvent).order_by(WebhookEvent.created_at)).scalars().all()

    return load
