"""Content service API: magazine catalog and the reader's profile."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request

from magsub.common.config import CommonSettings, settings
from magsub.common.db import Base, make_engine, make_session_factory
from magsub.common.errors import register_error_handlers
from magsub.common.identity import AuthUser, IdentityClient, optional_caller, profile_of, required_caller
from magsub.common.logging import configure_logging
from magsub.common.metrics import install_metrics_middleware, metrics_response
from magsub.common.startup import log_startup_config
from magsub.common.tracing import instrument_app, setup_tracing
from magsub.services.content.schemas import MagazineCreateRequest
from magsub.services.content.service import MagazineService

configure_logging(settings.log_level)

STARTUP_FIELDS = ["service_name", "database_url", "identity_url", "identity_anon_key", "storage_bucket"]


def create_app(
    app_settings: CommonSettings | None = None,
    session_factory=None,
    identity: IdentityClient | None = None,
    **service_kwargs,
) -> FastAPI:
    """Build the content app; collaborators not passed in come from settings."""

    app_settings = app_settings or settings
    setup_tracing(app_settings.service_name, app_settings.otel_exporter_otlp_endpoint)
    engine = None
    if session_factory is None:
        engine = make_engine(app_settings.database_url)
        session_factory = make_session_factory(engine)
    if identity is None:
        identity = IdentityClient(app_settings.identity_url, app_settings.identity_anon_key)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        log_startup_config(app_settings, STARTUP_FIELDS)
        if engine is not None and engine.dialect.name == "sqlite":
            Base.metadata.create_all(engine)
        yield
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="Magsub Content Service", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.identity = identity
    app.state.magazines = MagazineService(
        session_factory,
        storage_url=app_settings.identity_url,
        bucket=app_settings.storage_bucket,
        **service_kwargs,
    )
    register_error_handlers(app)
    install_metrics_middleware(app, app_settings.service_name)
    instrument_app(app)
    _add_routes(app)
    return app


def get_magazines(request: Request) -> MagazineService:
    return request.app.state.magazines


def _add_routes(app: FastAPI) -> None:
    @app.get("/magazines")
    def list_magazines(
        limit: int = Query(default=10, ge=1, le=100),
        magazines: MagazineService = Depends(get_magazines),
    ):
        """Newest articles, without bodies."""

        return [m.model_dump() for m in magazines.list_magazines(limit)]

    @app.get("/magazines/{magazine_id}")
    def get_magazine(
        magazine_id: str,
        magazines: MagazineService = Depends(get_magazines),
        reader: AuthUser | None = Depends(optional_caller),
    ):
        return magazines.get_magazine(magazine_id, reader).model_dump()

    @app.post("/magazines", status_code=201)
    def create_magazine(
        req: MagazineCreateRequest,
        magazines: MagazineService = Depends(get_magazines),
        author: AuthUser = Depends(required_caller),
    ):
        return magazines.create_magazine(req, author).model_dump()

    @app.get("/me")
    def me(
        magazines: MagazineService = Depends(get_magazines),
        user: AuthUser = Depends(required_caller),
    ):
        """Profile of the signed-in reader plus subscription state."""

        profile = profile_of(user)
        subscription = magazines.subscription_of(user)
        return {
            "userId": profile.user_id,
            "profileImage": profile.profile_image,
            "name": profile.name,
            "email": profile.email,
            "joinDate": profile.join_date,
            "isSubscribed": subscription.is_subscribed,
            "status": subscription.status,
            "transactionKey": subscription.transaction_key,
        }

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}


app = create_app()
