"""Session creation, checkout lookup and conditional claims."""

from datetime import timedelta

import pytest

from sandpay.common.errors import (
    InvalidAmount,
    InvalidCurrency,
    SessionExpired,
    SessionNotFound,
    SessionNotPayable,
)
from sandpay.services.gateway.models import PaymentSession
from sandpay.services.gateway.sessions import as_utc


def test_create_session_defaults(sessions, merchant, clock):
    created = sessions.create_session(merchant["merchant_id"], 4999, currency="", metadata={"order": "A-1"})
    session = created.session

    assert session.status == "requires_payment_method"
    assert session.currency == "USD"
    assert session.amount == 4999
    assert session.session_metadata == {"order": "A-1"}
    assert as_utc(session.expires_at) == clock.now + timedelta(hours=1)
    assert created.widget_token.startswith("wt_")


def test_currency_is_upper_cased(sessions, merchant):
    created = sessions.create_session(merchant["merchant_id"], 100, currency="eur")
    assert created.session.currency == "EUR"


def test_session_ids_and_widget_tokens_are_unique(sessions, merchant):
    a = sessions.create_session(merchant["merchant_id"], 100)
    b = sessions.create_session(merchant["merchant_id"], 100)
    assert a.session.id != b.session.id
    assert a.widget_token != b.widget_token


@pytest.mark.parametrize("amount", [0, -5, None, 10.5, "100", True])
def test_invalid_amount_is_rejected(sessions, merchant, session_factory, amount):
    with pytest.raises(InvalidAmount):
        sessions.create_session(merchant["merchant_id"], amount)
    with session_factory() as db:
        assert db.query(PaymentSession).count() == 0


@pytest.mark.parametrize("currency", ["US", "USDX", "12$"])
def test_invalid_currency_is_rejected(sessions, merchant, currency):
    with pytest.raises(InvalidCurrency):
        sessions.create_session(merchant["merchant_id"], 100, currency=currency)


def test_unknown_session(sessions):
    with pytest.raises(SessionNotFound):
        sessions.get_session_for_checkout("does-not-exist")


def test_session_ttl(sessions, merchant, clock):
    session_id = sessions.create_session(merchant["merchant_id"], 4999).session.id

    clock.advance(minutes=59)
    assert sessions.get_session_for_checkout(session_id).id == session_id

    clock.advance(minutes=2)
    with pytest.raises(SessionExpired):
        sessions.get_session_for_checkout(session_id)


def test_claim_is_single_winner(sessions, merchant):
    session_id = sessions.create_session(merchant["merchant_id"], 4999).session.id

    sessions.claim_for_processing(session_id)
    with pytest.raises(SessionNotPayable):
        sessions.claim_for_processing(session_id)
    with pytest.raises(SessionNotPayable):
        sessions.get_session_for_checkout(session_id)
    assert sessions.get_session(session_id).status == "processing"


def test_release_claim_returns_session_to_payable(sessions, merchant):
    session_id = sessions.create_session(merchant["merchant_id"], 4999).session.id
    sessions.claim_for_processing(session_id)

    assert sessions.release_claim(session_id) is True
    assert sessions.get_session_for_checkout(session_id).status == "requires_payment_method"
    assert sessions.release_claim(session_id) is False
