"""Checkout processing.

Runs one payment attempt against a session: validate, claim, simulate,
price, persist, flag, notify. Only the claim and the payment write can fail
the attempt; fraud flagging and webhook dispatch are logged on failure.
"""

import asyncio
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from sandpay.common.errors import DispatchError, InvalidPaymentMethod, MissingField, ProcessingError
from sandpay.common.logging import logger, payment_id_ctx, session_id_ctx
from sandpay.common.metrics import (
    checkout_attempts_total,
    checkout_latency_seconds,
    fraud_flags_total,
    payment_failure_total,
    payment_success_total,
)
from sandpay.common.state_machine import FAILED, PROCESSING, SUCCEEDED, validate_transition
from sandpay.common.tracing import tracer
from sandpay.services.gateway.fees import calculate_fees
from sandpay.services.gateway.fraud import FraudFlagEngine
from sandpay.services.gateway.models import Payment, PaymentSession
from sandpay.services.gateway.platform import PlatformPolicy, load_policy
from sandpay.services.gateway.sessions import SessionManager
from sandpay.services.gateway.simulator import PaymentMethodSimulator, SimulationOutcome
from sandpay.services.webhooks.service import PAYMENT_FAILED, PAYMENT_SUCCEEDED, WebhookDispatcher

CARD_FIELDS = ("number", "exp_month", "exp_year", "cvc")
BANK_FIELDS = ("routing", "account")


@dataclass(frozen=True)
class CheckoutResult:
    payment: Payment
    failure_reason: str | None


def _require(details, fields: tuple[str, ...], prefix: str) -> None:
    if details is None:
        raise MissingField(f"{prefix} details are required")
    for field in fields:
        value = getattr(details, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingField(f"{prefix}.{field} is required")


def validate_checkout_request(req) -> None:
    """Shape checks done before the session is touched."""

    if req.method == "card":
        _require(req.card, CARD_FIELDS, "card")
    elif req.method == "bank":
        _require(req.bank, BANK_FIELDS, "bank")
    else:
        raise InvalidPaymentMethod()


class CheckoutProcessor:
    """Owns the `requires_payment_method -> processing -> terminal` progression."""

    def __init__(
        self,
        session_factory,
        sessions: SessionManager,
        simulator: PaymentMethodSimulator,
        dispatcher: WebhookDispatcher,
        settings,
        processing_delay_seconds: float = 0.0,
        service_name: str = "gateway",
    ) -> None:
        self.session_factory = session_factory
        self.sessions = sessions
        self.simulator = simulator
        self.dispatcher = dispatcher
        self.settings = settings
        self.processing_delay_seconds = processing_delay_seconds
        self.service_name = service_name

    def _policy(self) -> PlatformPolicy:
        try:
            with self.session_factory() as db:
                return load_policy(db, self.settings)
        except SQLAlchemyError as exc:
            logger.warning("platform_policy_load_failed error=%s; using env defaults", exc)
            return PlatformPolicy.from_settings(self.settings)

    def _simulate(self, req) -> SimulationOutcome:
        if req.method == "card":
            return self.simulator.simulate_card(req.card.number)
        return self.simulator.simulate_bank(req.bank.routing, req.bank.account)

    def _persist_outcome(self, payment: Payment) -> None:
        """Insert the payment and close the session in one transaction."""

        terminal = payment.status
        validate_transition(PROCESSING, terminal)
        with self.session_factory() as db:
            db.add(payment)
            result = db.execute(
                update(PaymentSession)
                .where(PaymentSession.id == payment.session_id, PaymentSession.status == PROCESSING)
                .values(status=terminal, updated_at=payment.created_at)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ProcessingError(f"session {payment.session_id} left processing unexpectedly")
            db.commit()

    def _flag_fraud(self, payment: Payment, policy: PlatformPolicy) -> None:
        engine = FraudFlagEngine(amount_threshold=policy.fraud_amount_threshold, score=policy.fraud_score)
        try:
            with self.session_factory() as db:
                flag = engine.flag(db, payment)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("fraud_flag_failed payment_id=%s error=%s", payment.id, exc)
            return
        if flag is not None:
            fraud_flags_total.labels(service=self.service_name, reason=flag.reason).inc()
            logger.warning("fraud_flag_created payment_id=%s reason=%s score=%s", payment.id, flag.reason, flag.score)

    def _notify(self, payment: Payment) -> None:
        event_type = PAYMENT_SUCCEEDED if payment.status == SUCCEEDED else PAYMENT_FAILED
        try:
            self.dispatcher.dispatch(payment.merchant_id, event_type, payment)
        except DispatchError as exc:
            logger.error("webhook_dispatch_failed payment_id=%s error=%s", payment.id, exc)

    async def confirm(self, session_id: str, req) -> CheckoutResult:
        """Process one checkout submission for `session_id`."""

        session_token = session_id_ctx.set(session_id)
        try:
            with tracer.start_as_current_span("checkout.confirm"), checkout_latency_seconds.labels(
                service=self.service_name
            ).time():
                return await self._confirm(session_id, req)
        finally:
            session_id_ctx.reset(session_token)

    async def _confirm(self, session_id: str, req) -> CheckoutResult:
        validate_checkout_request(req)
        session = self.sessions.get_session_for_checkout(session_id)
        self.sessions.claim_for_processing(session_id)
        checkout_attempts_total.labels(service=self.service_name).inc()
        logger.info("checkout_processing session_id=%s method=%s", session_id, req.method)

        # Past the claim, any failure must hand the session back.
        try:
            payment, policy = await self._settle(session, req)
        except ProcessingError as exc:
            logger.error("payment_persist_failed session_id=%s error=%s", session_id, exc)
            self.sessions.release_claim(session_id)
            raise
        except Exception as exc:
            logger.exception("checkout_attempt_failed session_id=%s error=%s", session_id, exc)
            self.sessions.release_claim(session_id)
            raise ProcessingError() from exc

        payment_token = payment_id_ctx.set(payment.id)
        try:
            if payment.status == SUCCEEDED:
                payment_success_total.labels(service=self.service_name, method=req.method).inc()
                self._flag_fraud(payment, policy)
            else:
                payment_failure_total.labels(
                    service=self.service_name,
                    method=req.method,
                    reason=payment.failure_reason,
                ).inc()
            logger.info(
                "checkout_completed status=%s failure_reason=%s fee=%s net=%s",
                payment.status,
                payment.failure_reason,
                payment.fee_amount,
                payment.net_amount,
            )
            self._notify(payment)
        finally:
            payment_id_ctx.reset(payment_token)
        return CheckoutResult(payment=payment, failure_reason=payment.failure_reason)

    async def _settle(self, session: PaymentSession, req) -> tuple[Payment, PlatformPolicy]:
        """Simulate, price and persist one claimed attempt."""

        if self.processing_delay_seconds > 0:
            await asyncio.sleep(self.processing_delay_seconds)

        outcome = self._simulate(req)
        policy = self._policy()
        fees = calculate_fees(
            session.amount,
            outcome.succeeded,
            fee_percent=policy.fee_percent,
            fee_fixed=policy.fee_fixed,
        )
        payment = Payment(
            id=str(uuid4()),
            session_id=session.id,
            merchant_id=session.merchant_id,
            amount=session.amount,
            currency=session.currency,
            method=req.method,
            masked_details=outcome.masked_details,
            status=SUCCEEDED if outcome.succeeded else FAILED,
            failure_reason=outcome.failure_reason,
            fee_amount=fees.fee_amount,
            net_amount=fees.net_amount,
            created_at=self.sessions.clock(),
        )
        self._persist_outcome(payment)
        return payment, policy
