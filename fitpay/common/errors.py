"""Failure taxonomy shared by the gateway stack and the purchase saga.

Every error carries an `ErrorKind`, so callers branch on the type (or the
kind) instead of parsing messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NON_RETRYABLE = "NON_RETRYABLE"
    TRANSIENT = "TRANSIENT"
    RATE_LIMITED = "RATE_LIMITED"
    CONFIGURATION = "CONFIGURATION"
    STATE = "STATE"
    INTERNAL = "INTERNAL"


class FitPayError(Exception):
    """Base error. `log_id` links it to the API call log row that produced it."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.log_id: str | None = None


class ValidationFailed(FitPayError):
    """Malformed input; never retried and never sent to the gateway."""

    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class GatewayError(FitPayError):
    """Failure talking to the payment gateway."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        http_status: int | None = None,
        body: dict | None = None,
    ) -> None:
        super().__init__(message, code)
        self.http_status = http_status
        self.body = body or {}
        self.attempts = 0


class GatewayRejected(GatewayError):
    """4xx answer the gateway will give again on retry (bad request, auth, decline)."""

    kind = ErrorKind.NON_RETRYABLE
    default_code = "GATEWAY_REJECTED"


class GatewayUnavailable(GatewayError):
    """Timeout, network failure or 5xx; retried until attempts run out."""

    kind = ErrorKind.TRANSIENT
    default_code = "GATEWAY_UNAVAILABLE"


class RateLimited(FitPayError):
    """Local fixed-window budget exhausted; nothing left the process."""

    kind = ErrorKind.RATE_LIMITED
    default_code = "RATE_LIMITED"


class ConfigurationError(FitPayError):
    """Gateway configuration record missing, inactive or incomplete."""

    kind = ErrorKind.CONFIGURATION
    default_code = "GATEWAY_NOT_CONFIGURED"


class InvalidSessionTransition(FitPayError):
    kind = ErrorKind.STATE
    default_code = "INVALID_SESSION_TRANSITION"
