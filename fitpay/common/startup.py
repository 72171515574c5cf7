"""Startup-time helpers for safe config logging."""

import os

from fitpay.common.logging import logger
from fitpay.common.masking import is_sensitive_field


def _safe_env(name: str) -> str:
    """Return env value with redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if is_sensitive_field(name) or any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"]):
        return "<redacted>"
    if "://" in value and "@" in value:
        # DSNs carry credentials before the host.
        scheme, rest = value.split("://", 1)
        return f"{scheme}://<redacted>@{rest.rsplit('@', 1)[1]}"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
