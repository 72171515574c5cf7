"""Wraps every gateway call in a call-log row and an audit entry.

The call log is written in two steps: a PENDING row before the request leaves
the process, then one conditional update to SUCCESS or ERROR. Neither write
is allowed to fail the call itself; a lost row is logged and counted.
"""

import time
from uuid import uuid4

from sqlalchemy import update

from fitpay.common.clock import Clock, utcnow
from fitpay.common.errors import FitPayError, GatewayError
from fitpay.common.logging import api_log_id_ctx, logger, trace_id_ctx
from fitpay.common.masking import mask_sensitive
from fitpay.common.metrics import audit_write_failures_total, gateway_request_duration_seconds, gateway_requests_total
from fitpay.common.tracing import get_tracer
from fitpay.services.gateway.audit import AuditTrail
from fitpay.services.gateway.models import ApiCallLogEntry
from fitpay.services.gateway.schemas import AuditContext, GatewayRequest, GatewayResponse

tracer = get_tracer(__name__)


class AuditedCallExecutor:
    def __init__(self, client, session_factory, audit: AuditTrail | None = None, clock: Clock = utcnow) -> None:
        self.client = client
        self.session_factory = session_factory
        self.audit = audit or AuditTrail(session_factory, clock=clock)
        self.clock = clock

    def _open_log(self, request: GatewayRequest, context: AuditContext) -> str | None:
        """Insert the PENDING row; returns its id, or None when the write failed."""

        try:
            with self.session_factory() as db:
                entry = ApiCallLogEntry(
                    log_id=str(uuid4()),
                    gateway_id=self.client.gateway_id,
                    method=request.method,
                    endpoint=request.path,
                    operation=request.operation,
                    request_body=mask_sensitive(request.body) if request.body else None,
                    status="PENDING",
                    is_success=False,
                    attempts=0,
                    correlation_id=trace_id_ctx.get() or str(uuid4()),
                    user_id=context.user_id,
                    session_id=context.session_id,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    started_at=self.clock(),
                )
                db.add(entry)
                db.commit()
                return entry.log_id
        except Exception as exc:
            audit_write_failures_total.labels(target="api_call_logs").inc()
            logger.error("api call log insert failed operation=%s error=%s", request.operation, exc)
            return None

    def _close_log(self, log_id: str | None, values: dict) -> None:
        if log_id is None:
            return
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(ApiCallLogEntry)
                    .where(ApiCallLogEntry.log_id == log_id, ApiCallLogEntry.status == "PENDING")
                    .values(finished_at=self.clock(), **values)
                )
                if result.rowcount != 1:
                    logger.warning("api call log %s was not PENDING, outcome not recorded", log_id)
                    return
                db.commit()
        except Exception as exc:
            audit_write_failures_total.labels(target="api_call_logs").inc()
            logger.error("api call log update failed log_id=%s error=%s", log_id, exc)

    async def call(self, request: GatewayRequest, context: AuditContext | None = None) -> GatewayResponse:
        """Run `request` through the client with logging and audit around it.

        The original error is re-raised unchanged, tagged with the log id.
        """

        context = context or AuditContext()
        log_id = self._open_log(request, context)
        token = api_log_id_ctx.set(log_id or "")
        started = time.perf_counter()
        try:
            with tracer.start_as_current_span(f"gateway.{request.operation}") as span:
                span.set_attribute("gateway.operation", request.operation)
                span.set_attribute("http.method", request.method)
                try:
                    response = await self.client.execute(request)
                except Exception as exc:
                    elapsed = time.perf_counter() - started
                    self._record_failure(request, context, log_id, exc, elapsed)
                    span.set_attribute("gateway.outcome", "error")
                    raise
                elapsed = time.perf_counter() - started
                span.set_attribute("gateway.outcome", "success")
                span.set_attribute("http.status_code", response.status_code)
        finally:
            api_log_id_ctx.reset(token)

        self._close_log(
            log_id,
            {
                "status": "SUCCESS",
                "is_success": True,
                "http_status": response.status_code,
                "response_body": mask_sensitive(response.body),
                "response_time_ms": int(elapsed * 1000),
                "attempts": response.attempts,
            },
        )
        self.audit.record(
            "api_call_logs",
            log_id,
            "API_CALL_SUCCESS",
            {"operation": request.operation, "http_status": response.status_code},
            context=context,
        )
        gateway_requests_total.labels(operation=request.operation, outcome="success").inc()
        gateway_request_duration_seconds.labels(operation=request.operation).observe(elapsed)
        response.log_id = log_id
        return response

    def _record_failure(
        self,
        request: GatewayRequest,
        context: AuditContext,
        log_id: str | None,
        exc: Exception,
        elapsed: float,
    ) -> None:
        if isinstance(exc, FitPayError):
            code, message = exc.code, exc.message
        else:
            code, message = "INTERNAL_ERROR", str(exc)
        http_status = exc.http_status if isinstance(exc, GatewayError) else None
        body = exc.body if isinstance(exc, GatewayError) and exc.body else None
        attempts = exc.attempts if isinstance(exc, GatewayError) else 0

        self._close_log(
            log_id,
            {
                "status": "ERROR",
                "is_success": False,
                "http_status": http_status,
                "response_body": mask_sensitive(body) if body else None,
                "error_code": (code or "")[:50],
                "error_message": (message or "")[:500],
                "response_time_ms": int(elapsed * 1000),
                "attempts": attempts,
            },
        )
        self.audit.record(
            "api_call_logs",
            log_id,
            "API_CALL_ERROR",
            {"operation": request.operation, "http_status": http_status, "error_code": code},
            context=context,
        )
        gateway_requests_total.labels(operation=request.operation, outcome="error").inc()
        gateway_request_duration_seconds.labels(operation=request.operation).observe(elapsed)
        if isinstance(exc, FitPayError):
            exc.log_id = log_id
        logger.warning(
            "gateway call failed operation=%s log_id=%s code=%s status=%s",
            request.operation,
            log_id,
            code,
            http_status,
        )
