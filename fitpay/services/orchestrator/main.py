"""Internal HTTP surface for the subscription purchase saga."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from fitpay.common.config import settings
from fitpay.common.db import make_session_factory
from fitpay.common.errors import ErrorKind, FitPayError
from fitpay.common.logging import configure_logging, logger, trace_id_ctx
from fitpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from fitpay.common.startup import log_startup_config
from fitpay.common.tracing import instrument_app, setup_tracing
from fitpay.services.gateway.audit import AuditTrail
from fitpay.services.gateway.client import (
    DatabaseConfigProvider,
    GatewayClient,
    build_idempotency_cache,
    build_rate_limiter,
)
from fitpay.services.gateway.executor import AuditedCallExecutor
from fitpay.services.gateway.schemas import AuditContext
from fitpay.services.gateway.service import GatewayService
from fitpay.services.orchestrator.schemas import PurchaseRequest, PurchaseResult
from fitpay.services.orchestrator.service import SubscriptionOrchestrator

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "DATABASE_URL", "REDIS_URL", "CACHE_BACKEND", "GATEWAY_CODE", "API_KEY"],
)

SessionLocal = make_session_factory(settings.database_url)
client = GatewayClient(
    DatabaseConfigProvider(SessionLocal),
    rate_limiter=build_rate_limiter(),
    idempotency=build_idempotency_cache(),
)
audit = AuditTrail(SessionLocal)
gateway = GatewayService(client, AuditedCallExecutor(client, SessionLocal, audit))
orchestrator = SubscriptionOrchestrator(SessionLocal, gateway, audit=audit)

ERROR_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NON_RETRYABLE: 402,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.CONFIGURATION: 503,
    ErrorKind.STATE: 409,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Warm the gateway client; a missing config is reported, not fatal."""

    result = await client.initialize()
    if not result.ok:
        logger.error("gateway client not initialized at startup: %s", result.error)
    yield
    await client.aclose()


app = FastAPI(title="FitPay Subscriptions", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=request.method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=request.method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(FitPayError)
async def fitpay_error_handler(_: Request, exc: FitPayError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, 500),
        content={"success": False, "message": exc.message, "error_kind": exc.kind.value, "error_code": exc.code},
    )


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def audit_context(request: Request) -> AuditContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return AuditContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


@app.post("/internal/subscriptions", response_model=PurchaseResult)
async def create_subscription(
    req: PurchaseRequest,
    request: Request,
    x_api_key: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
):
    """Run a full membership purchase and return its structured outcome."""

    enforce_api_key(x_api_key)
    trace_id_ctx.set(x_trace_id or str(uuid4()))
    return await orchestrator.process_purchase(req, audit_context(request))


@app.post("/internal/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(subscription_id: str, request: Request, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    row = await orchestrator.cancel_subscription(subscription_id, audit_context(request))
    return {"subscription_id": row.subscription_id, "state": row.state}


@app.get("/plans")
def list_plans():
    return [
        {
            "plan_id": plan.plan_id,
            "name": plan.name,
            "price": str(plan.price),
            "currency": plan.currency,
            "repeat_every": plan.repeat_every,
            "repeat_unit": plan.repeat_unit,
            "trial_days": plan.trial_days,
            "duration_days": plan.duration_days,
        }
        for plan in orchestrator.members.list_plans(client.gateway_id)
    ]


@app.get("/members/{document_number}/subscriptions")
def member_subscriptions(document_number: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return orchestrator.members.subscription_history(document_number)


@app.get("/cash-registers/today")
async def cash_register_today(x_api_key: str | None = Header(default=None)):
    """Today's register totals for the configured gateway."""

    enforce_api_key(x_api_key)
    credentials = await client.ensure_initialized()
    summary = orchestrator.ledger.summary(credentials.gateway_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="no cash register for today")
    return summary


@app.get("/gateway/info")
def gateway_info(x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return client.config_info()


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
async def health():
    """Container health check endpoint."""

    return {"ok": True, "gateway": await client.health_check()}
