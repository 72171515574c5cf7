"""Shared fixtures: in-memory database, pinned clock and a scripted gateway."""

import itertools
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import fitpay.services.gateway.models  # noqa: F401
import fitpay.services.ledger.models  # noqa: F401
import fitpay.services.orchestrator.models  # noqa: F401
import fitpay.services.sessions.models  # noqa: F401
from fitpay.common.db import Base
from fitpay.services.gateway.audit import AuditTrail
from fitpay.services.gateway.client import DatabaseConfigProvider, GatewayClient
from fitpay.services.gateway.executor import AuditedCallExecutor
from fitpay.services.gateway.idempotency import InMemoryIdempotencyCache
from fitpay.services.gateway.models import GatewayConfig
from fitpay.services.gateway.rate_limit import FixedWindowRateLimiter
from fitpay.services.gateway.service import GatewayService
from fitpay.services.orchestrator.models import SubscriptionPlan

MERCHANT_ID = "mch0123456789"


class FixedClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class MonotonicClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeGateway:
    """Answers the gateway REST routes with canned bodies.

    Tests queue responses (or exceptions) for a method and route pattern; a
    queued entry is used once, then the route falls back to its default answer.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.scripted: list[tuple[str, re.Pattern, list]] = []
        self.subscription_status = "active"
        self._ids = itertools.count(1)

    def queue(self, method: str, pattern: str, *responses) -> None:
        self.scripted.append((method, re.compile(pattern), list(responses)))

    def route(self, request: httpx.Request) -> str:
        return request.url.path.split(f"/{MERCHANT_ID}", 1)[-1]

    def count(self, method: str, pattern: str) -> int:
        regex = re.compile(pattern)
        return sum(1 for r in self.requests if r.method == method and regex.fullmatch(self.route(r)))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.route(request)
        for method, regex, responses in self.scripted:
            if request.method == method and regex.fullmatch(route) and responses:
                item = responses.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
        return self._default(request, route)

    def _default(self, request: httpx.Request, route: str) -> httpx.Response:
        n = next(self._ids)
        if request.method == "POST" and route == "/customers":
            return httpx.Response(201, json={"id": f"cus_{n:04d}", "status": "active", "creation_date": "2026-10-19"})
        if request.method == "GET" and re.fullmatch(r"/customers/[^/]+", route):
            return httpx.Response(200, json={"id": route.rsplit("/", 1)[1], "status": "active"})
        if request.method == "POST" and re.fullmatch(r"/customers/[^/]+/cards", route):
            return httpx.Response(
                201,
                json={
                    "id": f"card_{n:04d}",
                    "type": "debit",
                    "brand": "visa",
                    "card_number": "411111XXXXXX1111",
                    "holder_name": "Ana Quispe",
                    "expiration_month": "12",
                    "expiration_year": "29",
                    "bank_name": "BCP",
                },
            )
        if request.method == "POST" and re.fullmatch(r"/customers/[^/]+/subscriptions", route):
            return httpx.Response(
                201,
                json={
                    "id": f"sub_{n:04d}",
                    "status": self.subscription_status,
                    "creation_date": "2026-10-19",
                    "charge_date": "2026-11-19",
                    "period_end_date": "2026-11-18",
                    "current_period_number": 1,
                },
            )
        if request.method == "DELETE" and re.fullmatch(r"/customers/[^/]+/subscriptions/[^/]+", route):
            return httpx.Response(204)
        if request.method == "GET" and re.fullmatch(r"/plans/[^/]+", route):
            return httpx.Response(200, json={"id": route.rsplit("/", 1)[1], "name": "Mensual", "amount": 99.9})
        return httpx.Response(404, json={"error_code": 1005, "description": "The requested resource doesn't exist"})


@pytest.fixture
def clock() -> FixedClock:
    # 10:00 in Lima.
    return FixedClock(datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def gateway_config(session_factory) -> GatewayConfig:
    row = GatewayConfig(
        gateway_id=1,
        code="OPP",
        name="Openpay",
        merchant_id=MERCHANT_ID,
        private_key="sk_test_4f7b2c9d1e",
        public_key="pk_test_8a6c3e1f2b",
        environment="SANDBOX",
        currency="PEN",
        is_active=True,
    )
    with session_factory() as db:
        db.add(row)
        db.commit()
    return row


@pytest.fixture
def plan(session_factory, gateway_config) -> SubscriptionPlan:
    row = SubscriptionPlan(
        gateway_id=gateway_config.gateway_id,
        external_plan_code="pln_monthly_01",
        name="Plan Mensual",
        price=Decimal("99.90"),
        currency="PEN",
        repeat_every=1,
        repeat_unit="month",
        trial_days=0,
        duration_days=30,
        product_code="MEMB-30",
        fee_rate=Decimal("0.0399"),
        is_active=True,
    )
    with session_factory() as db:
        db.add(row)
        db.commit()
    return row


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def client(session_factory, gateway_config, fake_gateway, sleeper, clock) -> GatewayClient:
    return GatewayClient(
        DatabaseConfigProvider(session_factory, code="OPP"),
        rate_limiter=FixedWindowRateLimiter(max_requests=100, window_seconds=60),
        idempotency=InMemoryIdempotencyCache(ttl_seconds=300),
        clock=clock,
        sleep=sleeper,
        transport=httpx.MockTransport(fake_gateway.handler),
        max_attempts=3,
        base_delay_seconds=1.0,
        backoff_multiplier=2.0,
    )


@pytest.fixture
def audit(session_factory, clock) -> AuditTrail:
    return AuditTrail(session_factory, clock=clock)


@pytest.fixture
def executor(client, session_factory, audit, clock) -> AuditedCallExecutor:
    return AuditedCallExecutor(client, session_factory, audit, clock=clock)


@pytest.fixture
def gateway(client, executor) -> GatewayService:
    return GatewayService(client, executor)
