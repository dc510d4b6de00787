"""Billing service API.

Receives PortOne webhooks, starts and stops billing on behalf of signed-in
readers, and answers "is this reader subscribed?" from the payment ledger.
"""

from contextlib import asynccontextmanager
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from magsub.common.config import CommonSettings, settings
from magsub.common.db import Base, make_engine, make_session_factory
from magsub.common.errors import AuthenticationFailed, PermissionDenied, error_body, register_error_handlers
from magsub.common.identity import AuthUser, IdentityClient, optional_caller
from magsub.common.logging import configure_logging, log_context, logger
from magsub.common.metrics import install_metrics_middleware, metrics_response, webhook_events_total
from magsub.common.rate_limit import TokenBucket
from magsub.common.startup import log_startup_config
from magsub.common.tracing import instrument_app, setup_tracing
from magsub.services.billing.gateway import PortOneClient
from magsub.services.billing.schemas import (
    CancelRequest,
    PaymentCreateRequest,
    SubscriptionStatusResponse,
    WebhookRequest,
)
from magsub.services.billing.service import BillingService

configure_logging(settings.log_level)

STARTUP_FIELDS = [
    "service_name",
    "database_url",
    "portone_api_url",
    "portone_api_secret",
    "identity_url",
    "require_auth",
    "strict_cancel_ownership",
    "redis_url",
    "otel_exporter_otlp_endpoint",
]


def create_app(
    app_settings: CommonSettings | None = None,
    session_factory=None,
    gateway: PortOneClient | None = None,
    identity: IdentityClient | None = None,
    rate_limiter: TokenBucket | None = None,
    **service_kwargs,
) -> FastAPI:
    """Build the billing app from explicitly constructed collaborators.

    Anything not passed in is built from `app_settings`.
    """

    app_settings = app_settings or settings
    setup_tracing(app_settings.service_name, app_settings.otel_exporter_otlp_endpoint)
    engine = None
    if session_factory is None:
        engine = make_engine(app_settings.database_url)
        session_factory = make_session_factory(engine)
    if gateway is None:
        gateway = PortOneClient(
            app_settings.portone_api_url,
            app_settings.portone_api_secret,
            timeout=app_settings.portone_timeout_seconds,
        )
    if identity is None:
        identity = IdentityClient(app_settings.identity_url, app_settings.identity_anon_key)
    if rate_limiter is None and app_settings.redis_url:
        rate_limiter = TokenBucket(
            redis.Redis.from_url(app_settings.redis_url, decode_responses=True),
            app_settings.rate_limit_per_minute,
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Log config; create tables for local SQLite runs (Alembic owns Postgres)."""

        log_startup_config(app_settings, STARTUP_FIELDS)
        if engine is not None and engine.dialect.name == "sqlite":
            Base.metadata.create_all(engine)
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="Magsub Billing Service", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.identity = identity
    app.state.billing = BillingService(
        session_factory,
        gateway,
        app_settings,
        rate_limiter=rate_limiter,
        service_name=app_settings.service_name,
        **service_kwargs,
    )
    register_error_handlers(app)
    install_metrics_middleware(app, app_settings.service_name)
    instrument_app(app)
    _add_routes(app)
    return app


def get_billing(request: Request) -> BillingService:
    return request.app.state.billing


def _add_routes(app: FastAPI) -> None:
    @app.post("/webhooks/portone")
    def portone_webhook(
        req: WebhookRequest,
        billing: BillingService = Depends(get_billing),
        x_correlation_id: str | None = Header(default=None),
    ):
        """Apply one gateway payment notification to the ledger."""

        with log_context(trace_id=x_correlation_id or str(uuid4()), payment_id=req.payment_id):
            try:
                return billing.handle_webhook(req.payment_id, req.status)
            except Exception as exc:
                logger.exception("webhook handling failed status=%s", req.status)
                webhook_events_total.labels(service=billing.service_name, status=req.status, outcome="error").inc()
                message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
                return JSONResponse(status_code=500, content=error_body(message))

    @app.post("/payments")
    def create_payment(
        req: PaymentCreateRequest,
        billing: BillingService = Depends(get_billing),
        caller: AuthUser | None = Depends(optional_caller),
    ):
        """Charge a freshly issued billing key (first subscription payment)."""

        with log_context(trace_id=str(uuid4())):
            return billing.create_payment(req, caller)

    @app.post("/payments/cancel")
    def cancel_payment(
        req: CancelRequest,
        billing: BillingService = Depends(get_billing),
        caller: AuthUser | None = Depends(optional_caller),
    ):
        """Ask the gateway to cancel one payment."""

        with log_context(trace_id=str(uuid4()), transaction_key=req.transaction_key):
            return billing.cancel_payment(req.transaction_key, caller)

    @app.get("/subscriptions/status")
    def subscription_status(
        request: Request,
        transaction_key: list[str] | None = Query(default=None),
        user_id: str | None = Query(default=None),
        billing: BillingService = Depends(get_billing),
        caller: AuthUser | None = Depends(optional_caller),
    ):
        """Current access for the caller (or, with auth disabled, any user id)."""

        app_settings = request.app.state.settings
        if caller is not None:
            if user_id and user_id != caller.id:
                raise PermissionDenied("user_id must match the authenticated user")
            user_id = caller.id
        elif app_settings.require_auth:
            raise AuthenticationFailed("authentication required")
        status = billing.subscription_status(user_id=user_id, transaction_keys=transaction_key)
        return SubscriptionStatusResponse(
            is_subscribed=status.is_subscribed,
            status=status.status,
            state=status.state.value,
            transaction_key=status.transaction_key,
        ).model_dump(by_alias=True)

    @app.get("/ledger/{transaction_key}")
    def ledger(
        transaction_key: str,
        request: Request,
        billing: BillingService = Depends(get_billing),
        x_api_key: str | None = Header(default=None),
    ):
        """Ledger history for one transaction key (operator use)."""

        admin_key = request.app.state.settings.admin_api_key
        if not admin_key or x_api_key != admin_key:
            raise AuthenticationFailed("invalid API key")
        return billing.ledger_report(transaction_key)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}


app = create_app()
