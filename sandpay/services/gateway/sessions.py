"""Checkout session lifecycle: creation, checkout lookup and state claims.

Status changes go through conditional `UPDATE ... WHERE status = <expected>`
statements so two concurrent confirmations cannot both claim a session.
"""

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from sandpay.common.errors import (
    InvalidAmount,
    InvalidCurrency,
    PersistenceError,
    SessionExpired,
    SessionNotFound,
    SessionNotPayable,
)
from sandpay.common.logging import logger
from sandpay.common.state_machine import PROCESSING, REQUIRES_PAYMENT_METHOD, validate_transition
from sandpay.services.gateway.models import PaymentSession

DEFAULT_CURRENCY = "USD"
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class CreatedSession:
    session: PaymentSession
    widget_token: str


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_widget_token() -> str:
    return f"wt_{secrets.token_hex(8)}"


class SessionManager:
    """Creates, reads and transitions `PaymentSession` rows."""

    def __init__(self, session_factory, ttl_seconds: int = 3600, clock=None) -> None:
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def create_session(
        self,
        merchant_id: str,
        amount,
        currency: str | None = None,
        description: str | None = None,
        metadata: dict | None = None,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CreatedSession:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount()
        currency = (currency or DEFAULT_CURRENCY).upper()
        if not _CURRENCY_RE.match(currency):
            raise InvalidCurrency()

        now = self.clock()
        session = PaymentSession(
            merchant_id=merchant_id,
            amount=amount,
            currency=currency,
            description=description or "",
            session_metadata=dict(metadata or {}),
            return_url=return_url,
            cancel_url=cancel_url,
            status=REQUIRES_PAYMENT_METHOD,
            expires_at=now + self.ttl,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session_factory() as db:
                db.add(session)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("session_create_failed merchant_id=%s error=%s", merchant_id, exc)
            raise PersistenceError("Failed to create payment session") from exc

        logger.info("session_created session_id=%s amount=%s currency=%s", session.id, amount, currency)
        return CreatedSession(session=session, widget_token=new_widget_token())

    def get_session(self, session_id: str) -> PaymentSession:
        with self.session_factory() as db:
            session = db.get(PaymentSession, session_id)
        if session is None:
            raise SessionNotFound()
        return session

    def get_session_for_checkout(self, session_id: str) -> PaymentSession:
        """Load a session that can take a payment right now."""

        session = self.get_session(session_id)
        if session.status != REQUIRES_PAYMENT_METHOD:
            raise SessionNotPayable()
        if self.clock() > as_utc(session.expires_at):
            raise SessionExpired()
        return session

    def _conditional_transition(self, session_id: str, expected: str, new_status: str) -> bool:
        validate_transition(expected, new_status)
        with self.session_factory() as db:
            result = db.execute(
                update(PaymentSession)
                .where(PaymentSession.id == session_id, PaymentSession.status == expected)
                .values(status=new_status, updated_at=self.clock())
            )
            db.commit()
        return result.rowcount == 1

    def claim_for_processing(self, session_id: str) -> None:
        """Atomically move `requires_payment_method -> processing`.

        Raises `SessionNotPayable` when another attempt already claimed it.
        """

        if not self._conditional_transition(session_id, REQUIRES_PAYMENT_METHOD, PROCESSING):
            raise SessionNotPayable()

    def release_claim(self, session_id: str) -> bool:
        """Compensate a failed attempt: `processing -> requires_payment_method`."""

        try:
            released = self._conditional_transition(session_id, PROCESSING, REQUIRES_PAYMENT_METHOD)
        except SQLAlchemyError as exc:
            logger.error("session_release_failed session_id=%s error=%s", session_id, exc)
            return False
        if released:
            logger.warning("session_released session_id=%s", session_id)
        return released
