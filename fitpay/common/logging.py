"""Structured JSON logging with checkout/gateway context fields."""

import logging
import sys
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from fitpay.common.config import settings
from fitpay.common.masking import mask_sensitive


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
session_id_ctx: ContextVar[str] = ContextVar("session_id", default="")
api_log_id_ctx: ContextVar[str] = ContextVar("api_log_id", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.session_id = session_id_ctx.get()
        record.api_log_id = api_log_id_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(session_id)s %(api_log_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


def log_masked(level: int, message: str, payload: Any = None) -> None:
    """Log `message` with `payload` attached only after masking."""

    if payload is None:
        logger.log(level, message)
        return
    logger.log(level, message, extra={"payload": mask_sensitive(payload)})


logger = logging.getLogger("fitpay")
