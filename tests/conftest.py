"""Shared fixtures: in-memory store, gateway/identity doubles, service apps."""

import json
import random
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.pool import StaticPool

from magsub.common.config import CommonSettings
from magsub.common.db import Base, make_session_factory
from magsub.common.identity import IdentityClient
from magsub.services.billing.gateway import PortOneClient
from magsub.services.billing.models import PaymentEvent
from magsub.services.content.models import Magazine  # noqa: F401  (registers the table)

NOW = datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)

USERS = {
    "token-alice": {
        "id": "user-alice",
        "email": "alice@example.com",
        "user_metadata": {"full_name": "Alice Kim", "avatar_url": "https://cdn.example.com/alice.png"},
        "created_at": "2025-07-14T09:00:00Z",
    },
    "token-bob": {
        "id": "user-bob",
        "email": "bob@example.com",
        "user_metadata": {},
        "created_at": "2026-01-02T00:00:00Z",
    },
}


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class Clock:
    """Settable clock handed to services instead of the wall clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class GatewayStub:
    """In-memory stand-in for the PortOne REST API behind `httpx.MockTransport`."""

    def __init__(self) -> None:
        self.payments: dict[str, dict] = {}
        self.schedules: list[dict] = []
        self.failures: dict[str, tuple[int, str]] = {}
        self.requests: list[tuple[str, httpx.Request]] = []

    def fail(self, operation: str, status_code: int = 500, message: str = "upstream exploded") -> None:
        self.failures[operation] = (status_code, message)

    def calls(self, operation: str) -> list[httpx.Request]:
        return [request for op, request in self.requests if op == operation]

    def body(self, request: httpx.Request) -> dict:
        return json.loads(request.content)

    @staticmethod
    def _operation(request: httpx.Request) -> tuple[str, str | None]:
        parts = request.url.path.strip("/").split("/")
        if parts[0] == "payment-schedules":
            return ("list_schedules" if request.method == "GET" else "delete_schedules"), None
        payment_id = parts[1]
        if len(parts) == 2:
            return "get_payment", payment_id
        return {"billing-key": "pay_with_billing_key", "schedule": "create_schedule", "cancel": "cancel_payment"}[
            parts[2]
        ], payment_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        operation, payment_id = self._operation(request)
        self.requests.append((operation, request))
        if operation in self.failures:
            status_code, message = self.failures[operation]
            return httpx.Response(status_code, json={"type": "ERROR", "message": message})

        if operation == "get_payment":
            payment = self.payments.get(payment_id)
            if payment is None:
                return httpx.Response(404, json={"type": "PAYMENT_NOT_FOUND", "message": "payment not found"})
            return httpx.Response(200, json=payment)
        if operation == "pay_with_billing_key":
            return httpx.Response(200, json={"payment": {"pgTxId": f"pg-{payment_id}", "paidAt": NOW.isoformat()}})
        if operation == "create_schedule":
            schedule = {"id": f"sched-{len(self.schedules) + 1}", "paymentId": payment_id}
            self.schedules.append(schedule)
            return httpx.Response(200, json={"schedule": {"id": schedule["id"]}})
        if operation == "list_schedules":
            return httpx.Response(200, json={"items": list(self.schedules)})
        if operation == "delete_schedules":
            doomed = set(self.body(request)["scheduleIds"])
            self.schedules = [s for s in self.schedules if s["id"] not in doomed]
            return httpx.Response(200, json={"revokedScheduleIds": sorted(doomed)})
        return httpx.Response(200, json={"cancellation": {"status": "SUCCEEDED"}})

    def add_payment(
        self,
        payment_id: str,
        user_id: str | None = "user-alice",
        amount: int = 9900,
        billing_key: str | None = "billing-key-1",
    ) -> dict:
        payment = {
            "id": payment_id,
            "status": "PAID",
            "orderName": "IT Magazine Monthly Subscription",
            "amount": {"total": amount, "paid": amount},
            "customer": {"id": user_id},
        }
        if billing_key:
            payment["billingKey"] = billing_key
        if user_id:
            payment["customData"] = json.dumps({"userId": user_id})
        self.payments[payment_id] = payment
        return payment


def identity_handler(request: httpx.Request) -> httpx.Response:
    token = request.headers.get("authorization", "").removeprefix("Bearer ")
    user = USERS.get(token)
    if user is None or request.headers.get("apikey") != "anon-key":
        return httpx.Response(401, json={"msg": "invalid JWT"})
    return httpx.Response(200, json=user)


class FakeRedis:
    """Just enough of the redis hash API for the token bucket."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict] = {}
        self.ttls: dict[str, int] = {}

    def hmget(self, key, *fields):
        values = self.hashes.get(key, {})
        return [values.get(field) for field in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        self.ttls[key] = seconds


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def app_settings():
    return CommonSettings(
        service_name="magsub-test",
        portone_api_url="https://portone.test",
        portone_api_secret="portone-secret",
        identity_url="https://identity.test",
        identity_anon_key="anon-key",
        admin_api_key="admin-key",
        redis_url="",
        otel_exporter_otlp_endpoint="",
    )


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def portone(gateway, app_settings):
    return PortOneClient(
        app_settings.portone_api_url,
        app_settings.portone_api_secret,
        transport=httpx.MockTransport(gateway.handler),
    )


@pytest.fixture
def identity(app_settings):
    return IdentityClient(
        app_settings.identity_url,
        app_settings.identity_anon_key,
        transport=httpx.MockTransport(identity_handler),
    )


@pytest.fixture
def make_billing_client(app_settings, session_factory, portone, identity, clock):
    from magsub.services.billing.main import create_app

    def build(rate_limiter=None, sessions=None, **overrides) -> TestClient:
        app = create_app(
            app_settings.model_copy(update=overrides),
            session_factory=sessions or session_factory,
            gateway=portone,
            identity=identity,
            rate_limiter=rate_limiter,
            clock=clock,
            rng=random.Random(7),
        )
        return TestClient(app)

    return build


@pytest.fixture
def billing_client(make_billing_client):
    return make_billing_client()


@pytest.fixture
def content_client(app_settings, session_factory, identity, clock):
    from magsub.services.content.main import create_app

    app = create_app(app_settings, session_factory=session_factory, identity=identity, clock=clock)
    return TestClient(app)


@pytest.fixture
def ledger_rows(session_factory):
    def fetch(transaction_key: str | None = None) -> list[PaymentEvent]:
        stmt = select(PaymentEvent).order_by(PaymentEvent.created_at, PaymentEvent.id)
        if transaction_key:
            stmt = stmt.where(PaymentEvent.transaction_key == transaction_key)
        with session_factory() as db:
            return list(db.execute(stmt).scalars().all())

    return fetch


@pytest.fixture
def seed_paid(session_factory):
    """Insert a Paid row whose window starts at `start_at`."""

    def insert(transaction_key: str, user_id: str, start_at: datetime = NOW, amount: int = 9900) -> PaymentEvent:
        row = PaymentEvent(
            transaction_key=transaction_key,
            amount=amount,
            status="Paid",
            start_at=start_at,
            end_at=start_at + timedelta(days=30),
            end_grace_at=start_at + timedelta(days=31),
            next_schedule_at=start_at + timedelta(days=31, hours=-2),
            next_schedule_id=f"next-{transaction_key}",
            created_at=start_at,
            user_id=user_id,
        )
        with session_factory() as db:
            db.add(row)
            db.commit()
        return row

    return insert


@pytest.fixture
def fake_redis():
    return FakeRedis()
