"""HTTP surface for session creation and hosted checkout confirmation."""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, Request

from sandpay.common.config import GatewaySettings, settings
from sandpay.common.db import create_schema, create_session_factory
from sandpay.common.errors import register_error_handlers
from sandpay.common.logging import configure_logging, trace_id_ctx
from sandpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    sessions_created_total,
)
from sandpay.common.startup import log_startup_config
from sandpay.common.tracing import instrument_app, setup_tracing
from sandpay.services.gateway.auth import ApiKeyAuthenticator, extract_credential
from sandpay.services.gateway.schemas import (
    CheckoutConfirmRequest,
    CheckoutSessionView,
    PaymentResponse,
    SessionCreateRequest,
    SessionCreateResponse,
)
from sandpay.services.gateway.service import CheckoutProcessor
from sandpay.services.gateway.sessions import SessionManager
from sandpay.services.gateway.simulator import OutcomeSource, PaymentMethodSimulator, RandomOutcomeSource
from sandpay.services.webhooks.service import WebhookDispatcher, WebhookSender


def create_app(
    app_settings: GatewaySettings = settings,
    session_factory=None,
    outcomes: OutcomeSource | None = None,
    clock=None,
    webhook_transport=None,
    run_webhook_sender: bool = True,
) -> FastAPI:
    """Wire the store handle into every component and build the app."""

    configure_logging()
    tracing_enabled = setup_tracing(app_settings.service_name, app_settings.otel_exporter_otlp_endpoint)
    log_startup_config(
        app_settings.service_name,
        ["SANDPAY_SERVICE_NAME", "SANDPAY_DATABASE_URL", "SANDPAY_CHECKOUT_BASE_URL", "SANDPAY_LOG_LEVEL"],
    )

    if session_factory is None:
        session_factory = create_session_factory(app_settings.database_url)
    name = app_settings.service_name
    sessions = SessionManager(session_factory, ttl_seconds=app_settings.session_ttl_seconds, clock=clock)
    authenticator = ApiKeyAuthenticator(session_factory, service_name=name, clock=clock)
    dispatcher = WebhookDispatcher(session_factory, service_name=name, clock=clock)
    processor = CheckoutProcessor(
        session_factory,
        sessions=sessions,
        simulator=PaymentMethodSimulator(outcomes or RandomOutcomeSource(app_settings.simulator_seed)),
        dispatcher=dispatcher,
        settings=app_settings,
        processing_delay_seconds=app_settings.processing_delay_seconds,
        service_name=name,
    )
    sender = WebhookSender(
        session_factory,
        signature_header=app_settings.webhook_signature_header,
        max_attempts=app_settings.webhook_max_attempts,
        timeout_seconds=app_settings.webhook_timeout_seconds,
        batch_size=app_settings.webhook_batch_size,
        max_concurrency=app_settings.webhook_max_concurrency,
        transport=webhook_transport,
        service_name=name,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Create SQLite tables and run the webhook sender with the app lifecycle."""

        if app_settings.database_url.startswith("sqlite"):
            create_schema(session_factory)
        sender_task = None
        if run_webhook_sender:
            sender_task = asyncio.create_task(sender.run_forever(app_settings.webhook_poll_interval_seconds))
        yield
        if sender_task is not None:
            sender_task.cancel()

    app = FastAPI(title="SandPay Gateway", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.sessions = sessions
    app.state.processor = processor
    app.state.webhook_sender = sender
    register_error_handlers(app)
    if tracing_enabled:
        instrument_app(app)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Record request count and latency and bind a trace id for every call."""

        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        trace_token = trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            trace_id_ctx.reset(trace_token)
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(service=name, route=route, method=method).observe(elapsed)
            http_requests_total.labels(
                service=name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()

    @app.post("/v1/payment_sessions", response_model=SessionCreateResponse)
    def create_payment_session(
        req: SessionCreateRequest,
        authorization: str | None = Header(default=None),
        x_api_key: str | None = Header(default=None),
    ):
        """Create a checkout session for the merchant owning the API key."""

        merchant = authenticator.authenticate(extract_credential(authorization, x_api_key))
        created = sessions.create_session(
            merchant.merchant_id,
            req.amount,
            currency=req.currency,
            description=req.description,
            metadata=req.metadata,
            return_url=req.return_url,
            cancel_url=req.cancel_url,
        )
        sessions_created_total.labels(service=name).inc()
        session = created.session
        return SessionCreateResponse(
            id=session.id,
            hosted_url=f"{app_settings.checkout_base_url.rstrip('/')}/checkout/{session.id}",
            widget_token=created.widget_token,
            amount=session.amount,
            currency=session.currency,
            status=session.status,
            expires_at=session.expires_at,
        )

    @app.get("/v1/checkout/sessions/{session_id}", response_model=CheckoutSessionView)
    def get_checkout_session(session_id: str):
        """Session summary for the hosted checkout page; rejects unpayable sessions."""

        session = sessions.get_session_for_checkout(session_id)
        return CheckoutSessionView(
            id=session.id,
            merchant_id=session.merchant_id,
            amount=session.amount,
            currency=session.currency,
            description=session.description,
            status=session.status,
            expires_at=session.expires_at,
        )

    @app.post("/v1/checkout/sessions/{session_id}/confirm", response_model=PaymentResponse)
    async def confirm_checkout(session_id: str, req: CheckoutConfirmRequest):
        """Run one payment attempt; declines are returned as a failed payment, not an error."""

        result = await processor.confirm(session_id, req)
        return PaymentResponse(**result.payment.to_dict())

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


app = create_app()
