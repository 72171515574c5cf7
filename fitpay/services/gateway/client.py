"""HTTP client for the card-payment gateway.

Owns credentials, base URL and timeout. Configuration is loaded lazily from the
injected provider, cached for `config_ttl_seconds`, and refreshed on the next
call after expiry; concurrent callers share one in-flight initialization.
Every call is retried with exponential backoff unless the gateway answered with
a status that will not change on retry.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

import httpx
import redis
from sqlalchemy import select

from fitpay.common.clock import Clock, utcnow
from fitpay.common.config import settings
from fitpay.common.errors import ConfigurationError, GatewayError, GatewayRejected, GatewayUnavailable
from fitpay.common.logging import log_masked, logger
from fitpay.common.metrics import retries_total
from fitpay.services.gateway.idempotency import IdempotencyCache, InMemoryIdempotencyCache, RedisIdempotencyCache
from fitpay.services.gateway.models import GatewayConfig
from fitpay.services.gateway.rate_limit import FixedWindowRateLimiter, RateLimiter, RedisFixedWindowRateLimiter
from fitpay.services.gateway.schemas import GatewayCredentials, GatewayRequest, GatewayResponse, InitResult

# Answers that will be identical on retry: bad request, auth, card declined,
# unknown resource, duplicate, unprocessable.
NON_RETRYABLE_STATUSES = frozenset({400, 401, 402, 403, 404, 409, 422})

ConfigProvider = Callable[[], GatewayCredentials | None | Awaitable[GatewayCredentials | None]]


class GatewayClient:
    """Executes gateway REST calls with retry, backed by a rate limiter and idempotency cache."""

    def __init__(
        self,
        config_provider: ConfigProvider,
        rate_limiter: RateLimiter | None = None,
        idempotency: IdempotencyCache | None = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        config_ttl_seconds: int = settings.gateway_config_ttl_seconds,
        timeout_seconds: float = settings.gateway_timeout_seconds,
        max_attempts: int = settings.retry_max_attempts,
        base_delay_seconds: float = settings.retry_base_delay_seconds,
        backoff_multiplier: float = settings.retry_backoff_multiplier,
    ) -> None:
        self.config_provider = config_provider
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self.idempotency = idempotency or InMemoryIdempotencyCache()
        self.clock = clock
        self._sleep = sleep
        self._transport = transport
        self.config_ttl = timedelta(seconds=config_ttl_seconds)
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.backoff_multiplier = backoff_multiplier

        self.credentials: GatewayCredentials | None = None
        self._http: httpx.AsyncClient | None = None
        self._initialized_at = None
        self._init_task: asyncio.Task | None = None

    @property
    def gateway_id(self) -> int | None:
        return self.credentials.gateway_id if self.credentials else None

    def base_url(self, credentials: GatewayCredentials) -> str:
        if credentials.api_base_url:
            return credentials.api_base_url.rstrip("/")
        root = settings.gateway_production_url if credentials.is_production else settings.gateway_sandbox_url
        return f"{root.rstrip('/')}/{credentials.merchant_id}"

    def _config_expired(self) -> bool:
        if self._initialized_at is None:
            return True
        return self.clock() - self._initialized_at > self.config_ttl

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> InitResult:
        """Load credentials and build the HTTP client; reports failure instead of raising."""

        logger.info("initializing gateway client")
        try:
            credentials = self.config_provider()
            if inspect.isawaitable(credentials):
                credentials = await credentials
        except Exception as exc:
            logger.error("gateway config load failed: %s", exc)
            await self._reset()
            return InitResult(ok=False, error="gateway configuration could not be loaded")

        if credentials is None:
            await self._reset()
            return InitResult(ok=False, error="gateway configuration not found or inactive")
        if not credentials.merchant_id or not credentials.private_key.get_secret_value():
            await self._reset()
            return InitResult(ok=False, error="gateway configuration incomplete")

        previous = self._http
        self._http = httpx.AsyncClient(
            base_url=self.base_url(credentials),
            auth=(credentials.private_key.get_secret_value(), ""),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": settings.gateway_user_agent,
            },
            timeout=self.timeout_seconds,
            follow_redirects=False,
            transport=self._transport,
        )
        if previous is not None:
            await previous.aclose()
        self.credentials = credentials
        self._initialized_at = self.clock()
        logger.info("gateway client initialized environment=%s", credentials.environment)
        return InitResult(ok=True, environment=credentials.environment)

    async def ensure_initialized(self) -> GatewayCredentials:
        """Return live credentials, (re)initializing at most once concurrently."""

        if self.credentials is not None and self._http is not None and not self._config_expired():
            return self.credentials
        if self.credentials is not None:
            logger.info("gateway configuration expired, reloading")

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self.initialize())
        task = self._init_task
        try:
            result = await task
        finally:
            if self._init_task is task and task.done():
                self._init_task = None
        if not result.ok:
            raise ConfigurationError(result.error or "gateway not initialized")
        return self.credentials

    async def reload_config(self) -> GatewayCredentials:
        logger.info("reloading gateway configuration")
        await self._reset()
        self.idempotency.clear()
        return await self.ensure_initialized()

    async def _reset(self) -> None:
        if self._http is not None:
            await self._http.aclose()
        self._http = None
        self.credentials = None
        self._initialized_at = None

    async def aclose(self) -> None:
        await self._reset()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def check_rate_limit(self) -> None:
        self.rate_limiter.check()

    async def execute(self, request: GatewayRequest) -> GatewayResponse:
        """Send one logical call, retrying transient failures with backoff."""

        await self.ensure_initialized()
        log_masked(
            logging.INFO,
            f"gateway call operation={request.operation}",
            {"method": request.method, "path": request.path, "body": request.body},
        )
        last_error: GatewayError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._send(request)
            except GatewayRejected as exc:
                exc.attempts = attempt
                logger.warning(
                    "gateway rejected operation=%s status=%s code=%s",
                    request.operation,
                    exc.http_status,
                    exc.code,
                )
                raise
            except GatewayUnavailable as exc:
                exc.attempts = attempt
                last_error = exc
                if attempt < self.max_attempts:
                    delay = self.base_delay_seconds * self.backoff_multiplier ** (attempt - 1)
                    retries_total.labels(service=settings.service_name, dependency="gateway").inc()
                    logger.warning(
                        "gateway call failed operation=%s attempt=%s backoff_s=%s error=%s",
                        request.operation,
                        attempt,
                        delay,
                        exc.message,
                    )
                    await self._sleep(delay)
                continue
            response.attempts = attempt
            log_masked(
                logging.INFO,
                f"gateway call succeeded operation={request.operation} status={response.status_code}",
                response.body,
            )
            return response

        logger.error("gateway retries exhausted operation=%s attempts=%s", request.operation, self.max_attempts)
        raise last_error

    async def _send(self, request: GatewayRequest) -> GatewayResponse:
        try:
            resp = await self._http.request(request.method, request.path, json=request.body)
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"gateway timeout: {exc}", "TIMEOUT") from exc
        except httpx.HTTPError as exc:
            raise GatewayUnavailable(f"gateway unreachable: {exc}", "NETWORK_ERROR") from exc

        body = _decode_body(resp)
        if 200 <= resp.status_code < 300:
            return GatewayResponse(status_code=resp.status_code, body=body)

        description = body.get("description") or f"gateway returned HTTP {resp.status_code}"
        code = str(body.get("error_code") or f"HTTP_{resp.status_code}")
        error_cls = GatewayRejected if resp.status_code in NON_RETRYABLE_STATUSES else GatewayUnavailable
        raise error_cls(description, code, http_status=resp.status_code, body=body)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def config_info(self) -> dict:
        if self.credentials is None:
            return {"initialized": False}
        return {
            "initialized": True,
            "environment": self.credentials.environment,
            "currency": self.credentials.currency,
            "gateway_id": self.credentials.gateway_id,
            "last_init_time": self._initialized_at.isoformat() if self._initialized_at else None,
            "rate_limit_remaining": self.rate_limiter.remaining(),
        }

    async def health_check(self) -> dict:
        try:
            credentials = await self.ensure_initialized()
        except ConfigurationError as exc:
            return {
                "status": "unhealthy",
                "initialized": False,
                "error": exc.message,
                "timestamp": self.clock().isoformat(),
            }
        return {
            "status": "healthy",
            "initialized": True,
            "environment": credentials.environment,
            "timestamp": self.clock().isoformat(),
        }


def _decode_body(resp: httpx.Response) -> dict:
    if not resp.content:
        return {}
    try:
        payload = resp.json()
    except ValueError:
        return {"raw": resp.text[:500]}
    return payload if isinstance(payload, dict) else {"data": payload}


class DatabaseConfigProvider:
    """Loads the active `payment_gateways` row for one gateway code."""

    def __init__(self, session_factory, code: str = settings.gateway_code) -> None:
        self.session_factory = session_factory
        self.code = code

    def __call__(self) -> GatewayCredentials | None:
        with self.session_factory() as db:
            row = db.execute(
                select(GatewayConfig).where(GatewayConfig.code == self.code, GatewayConfig.is_active.is_(True))
            ).scalar_one_or_none()
        if row is None or not row.merchant_id or not row.private_key:
            return None
        return GatewayCredentials(
            gateway_id=row.gateway_id,
            name=row.name,
            merchant_id=row.merchant_id,
            private_key=row.private_key,
            public_key=row.public_key,
            environment=row.environment,
            currency=row.currency,
            api_base_url=row.api_base_url,
        )


def build_rate_limiter(rdb=None) -> RateLimiter:
    if settings.cache_backend == "redis":
        return RedisFixedWindowRateLimiter(rdb or redis.Redis.from_url(settings.redis_url, decode_responses=True))
    return FixedWindowRateLimiter()


def build_idempotency_cache(rdb=None) -> IdempotencyCache:
    if settings.cache_backend == "redis":
        return RedisIdempotencyCache(rdb or redis.Redis.from_url(settings.redis_url, decode_responses=True))
    return InMemoryIdempotencyCache()
