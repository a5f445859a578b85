"""Webhook event recording and signed delivery.

`WebhookDispatcher` records one pending `WebhookEvent` per active endpoint
when a payment reaches a terminal state. `WebhookSender` is the
asynchronous delivery loop: it claims due events, POSTs the exact stored
payload bytes with an HMAC-SHA256 signature header, and tracks attempts.
"""

import asyncio
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from sandpay.common.errors import DispatchError
from sandpay.common.logging import logger
from sandpay.common.metrics import webhook_deliveries_total, webhook_events_total
from sandpay.services.gateway.models import Payment
from sandpay.services.webhooks.models import WebhookEndpoint, WebhookEvent

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"

PENDING = "pending"
DELIVERED = "delivered"
FAILED = "failed"


def new_event_id() -> str:
    return f"evt_{secrets.token_hex(8)}"


def serialize_payload(payload: dict) -> bytes:
    """Canonical wire bytes for an envelope; signatures are computed over these."""

    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


def sign_payload(secret: str, raw: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, raw: bytes, header_value: str) -> bool:
    """Constant-time check of a received signature header."""

    return hmac.compare_digest(sign_payload(secret, raw), header_value or "")


def build_envelope(event_id: str, event_type: str, payment: dict, created: int) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "created": created,
        "data": {"object": payment},
    }


class WebhookDispatcher:
    """Records payment outcome events for every active merchant endpoint."""

    def __init__(self, session_factory, service_name: str = "gateway", clock=None) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _active_endpoints(self, merchant_id: str) -> list[WebhookEndpoint]:
        with self.session_factory() as db:
            return (
                db.execute(
                    select(WebhookEndpoint)
                    .where(WebhookEndpoint.merchant_id == merchant_id, WebhookEndpoint.active.is_(True))
                    .order_by(WebhookEndpoint.created_at.asc())
                )
                .scalars()
                .all()
            )

    def _record(self, endpoint: WebhookEndpoint, event_type: str, payment: dict) -> WebhookEvent:
        event_id = new_event_id()
        now = self.clock()
        event = WebhookEvent(
            id=event_id,
            merchant_id=endpoint.merchant_id,
            endpoint_id=endpoint.id,
            type=event_type,
            payload=build_envelope(event_id, event_type, payment, int(now.timestamp())),
            delivery_status=PENDING,
            attempt_count=0,
            created_at=now,
        )
        try:
            with self.session_factory() as db:
                db.add(event)
                db.commit()
        except SQLAlchemyError as exc:
            raise DispatchError(f"failed to record {event_type} for endpoint {endpoint.id}") from exc
        return event

    def dispatch(self, merchant_id: str, event_type: str, payment: Payment) -> list[WebhookEvent]:
        """Queue one event per active endpoint; one endpoint failing skips only itself."""

        try:
            endpoints = self._active_endpoints(merchant_id)
        except SQLAlchemyError as exc:
            raise DispatchError(f"failed to load webhook endpoints for merchant {merchant_id}") from exc

        body = payment.to_dict()
        events = []
        for endpoint in endpoints:
            try:
                events.append(self._record(endpoint, event_type, body))
            except DispatchError as exc:
                logger.error("webhook_record_failed endpoint_id=%s error=%s", endpoint.id, exc)
                continue
            webhook_events_total.labels(service=self.service_name, type=event_type).inc()
        logger.info(
            "webhook_events_recorded merchant_id=%s type=%s count=%s",
            merchant_id,
            event_type,
            len(events),
        )
        return events


class WebhookSender:
    """Delivers pending webhook events with retries and exponential backoff."""

    def __init__(
        self,
        session_factory,
        signature_header: str = "X-SandPay-Signature",
        max_attempts: int = 5,
        timeout_seconds: float = 5.0,
        batch_size: int = 50,
        max_concurrency: int = 10,
        lease_seconds: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "gateway",
        clock=None,
    ) -> None:
        self.session_factory = session_factory
        self.signature_header = signature_header
        self.max_attempts = max_attempts
        self.timeout_seconds = timeout_seconds
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.lease = timedelta(seconds=lease_seconds)
        self.transport = transport
        self.service_name = service_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def backoff(self, attempt_count: int) -> timedelta:
        # 2s, 4s, 8s, ... capped at one hour.
        return timedelta(seconds=min(3600, 2**attempt_count))

    def claim_due_events(self) -> list[dict]:
        """Lease a batch of due pending events so parallel senders skip them."""

        now = self.clock()
        with self.session_factory() as db:
            ids = (
                db.execute(
                    select(WebhookEvent.id)
                    .where(
                        WebhookEvent.delivery_status == PENDING,
                        or_(WebhookEvent.next_attempt_at.is_(None), WebhookEvent.next_attempt_at <= now),
                    )
                    .order_by(WebhookEvent.created_at.asc())
                    .limit(self.batch_size)
                    .with_for_update(skip_locked=True)
                )
                .scalars()
                .all()
            )
            if not ids:
                return []
            db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id.in_(ids), WebhookEvent.delivery_status == PENDING)
                .values(next_attempt_at=now + self.lease)
            )
            rows = db.execute(
                select(WebhookEvent, WebhookEndpoint)
                .join(WebhookEndpoint, WebhookEndpoint.id == WebhookEvent.endpoint_id)
                .where(WebhookEvent.id.in_(ids))
            ).all()
            db.commit()
        return [
            {
                "id": event.id,
                "payload": event.payload,
                "attempt_count": event.attempt_count,
                "endpoint_id": endpoint.id,
                "url": endpoint.url,
                "secret": endpoint.secret,
            }
            for event, endpoint in rows
        ]

    def _mark_delivered(self, claim: dict) -> None:
        now = self.clock()
        with self.session_factory() as db:
            db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == claim["id"])
                .values(
                    delivery_status=DELIVERED,
                    attempt_count=claim["attempt_count"] + 1,
                    delivered_at=now,
                    next_attempt_at=None,
                    last_error=None,
                )
            )
            db.execute(
                update(WebhookEndpoint).where(WebhookEndpoint.id == claim["endpoint_id"]).values(last_delivered_at=now)
            )
            db.commit()

    def _mark_attempt_failed(self, claim: dict, error: str) -> str:
        attempts = claim["attempt_count"] + 1
        status = FAILED if attempts >= self.max_attempts else PENDING
        next_attempt_at = None if status == FAILED else self.clock() + self.backoff(attempts)
        with self.session_factory() as db:
            db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == claim["id"])
                .values(
                    delivery_status=status,
                    attempt_count=attempts,
                    next_attempt_at=next_attempt_at,
                    last_error=error[:1000],
                )
            )
            db.commit()
        return status

    async def deliver(self, client: httpx.AsyncClient, claim: dict) -> str:
        """POST one claimed event and persist the attempt. Returns the new status."""

        raw = serialize_payload(claim["payload"])
        headers = {
            "Content-Type": "application/json",
            self.signature_header: sign_payload(claim["secret"], raw),
        }
        try:
            resp = await client.post(claim["url"], content=raw, headers=headers)
            if 200 <= resp.status_code < 300:
                self._mark_delivered(claim)
                webhook_deliveries_total.labels(service=self.service_name, outcome=DELIVERED).inc()
                return DELIVERED
            error = f"http_status={resp.status_code}"
        except httpx.HTTPError as exc:
            error = f"{type(exc).__name__}: {exc}"

        status = self._mark_attempt_failed(claim, error)
        webhook_deliveries_total.labels(service=self.service_name, outcome="retry" if status == PENDING else FAILED).inc()
        logger.warning(
            "webhook_delivery_failed event_id=%s endpoint_id=%s attempt=%s status=%s error=%s",
            claim["id"],
            claim["endpoint_id"],
            claim["attempt_count"] + 1,
            status,
            error,
        )
        return status

    async def deliver_pending_once(self) -> dict[str, str]:
        """Deliver one claimed batch concurrently; returns `{event_id: status}`."""

        claims = self.claim_due_events()
        if not claims:
            return {}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:

            async def guarded(claim: dict) -> str:
                async with semaphore:
                    return await self.deliver(client, claim)

            results = await asyncio.gather(*(guarded(claim) for claim in claims), return_exceptions=True)

        outcome = {}
        for claim, result in zip(claims, results):
            if isinstance(result, BaseException):
                # Lease expiry puts the row back in rotation.
                logger.error("webhook_delivery_crashed event_id=%s error=%s", claim["id"], result)
                outcome[claim["id"]] = PENDING
            else:
                outcome[claim["id"]] = result
        return outcome

    async def run_forever(self, poll_interval_seconds: float = 1.0) -> None:
        """Background loop run alongside the HTTP app."""

        while True:
            try:
                await self.deliver_pending_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("webhook sender loop failed: %s", exc)
            await asyncio.sleep(poll_interval_seconds)

    def replay_failed(self, event_ids: list[str] | None = None) -> int:
        """Return `failed` events to `pending` for another round of attempts."""

        stmt = update(WebhookEvent).where(WebhookEvent.delivery_status == FAILED)
        if event_ids:
            stmt = stmt.where(WebhookEvent.id.in_(event_ids))
        with self.session_factory() as db:
            result = db.execute(stmt.values(delivery_status=PENDING, attempt_count=0, next_attempt_at=None))
            db.commit()
        return result.rowcount
