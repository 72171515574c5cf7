"""Typed request/response shapes for the gateway REST contract.

Request constructors sanitize and validate their input, so anything that
reaches `GatewayClient.execute` is already well formed. Response types ignore
unknown fields; `log_id` links each one to its API call log row.
"""

from decimal import Decimal
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_serializer, field_validator, model_validator

from fitpay.common.errors import ValidationFailed
from fitpay.common.validation import (
    MAX_NAME_LENGTH,
    normalize_phone,
    require_id,
    sanitize_string,
    validate_amount,
    validate_currency,
    validate_email,
)

M = TypeVar("M", bound=BaseModel)


def build(model: type[M], **data: Any) -> M:
    """Construct a request type, surfacing schema errors as `ValidationFailed`."""

    try:
        return model(**data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        raise ValidationFailed(f"{field}: {first.get('msg')}", "INVALID_REQUEST") from exc


class GatewayCredentials(BaseModel):
    """Persisted gateway configuration record, loaded by the client."""

    gateway_id: int
    name: str = "Openpay"
    merchant_id: str
    private_key: SecretStr
    public_key: str | None = None
    environment: str = "SANDBOX"
    currency: str = "PEN"
    api_base_url: str | None = None

    @property
    def is_production(self) -> bool:
        return self.environment.upper() == "PRODUCTION"


class InitResult(BaseModel):
    ok: bool
    error: str | None = None
    environment: str | None = None


class AuditContext(BaseModel):
    """Who triggered a gateway call; copied into call logs and audit rows."""

    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None

    @field_validator("ip_address")
    @classmethod
    def _ip(cls, value):
        return sanitize_string(value, 45) or None

    @field_validator("user_agent")
    @classmethod
    def _ua(cls, value):
        return sanitize_string(value, 500) or None


class GatewayRequest(BaseModel):
    method: str
    path: str
    operation: str
    body: dict | None = None


class GatewayResponse(BaseModel):
    status_code: int
    body: dict = Field(default_factory=dict)
    attempts: int = 1
    log_id: str | None = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CustomerRequest(BaseModel):
    name: str
    email: str
    last_name: str | None = None
    phone_number: str | None = None
    external_id: str | None = None
    requires_account: bool = False

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        cleaned = sanitize_string(value, MAX_NAME_LENGTH)
        if len(cleaned) < 2:
            raise ValidationFailed("customer name must have at least 2 characters", "INVALID_NAME")
        return cleaned

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return validate_email(value)

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, value):
        return sanitize_string(value, MAX_NAME_LENGTH) or None

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, value):
        return normalize_phone(value) or None

    @field_validator("external_id")
    @classmethod
    def _external_id(cls, value):
        return sanitize_string(value, 100) or None


class CardRequest(BaseModel):
    token_id: str
    device_session_id: str

    @field_validator("token_id", "device_session_id")
    @classmethod
    def _ids(cls, value: str, info) -> str:
        return require_id(value, info.field_name)


class SubscriptionRequest(BaseModel):
    plan_id: str
    source_id: str | None = None
    trial_end_date: str | None = None

    @field_validator("plan_id")
    @classmethod
    def _plan(cls, value: str) -> str:
        return require_id(value, "plan_id")

    @field_validator("source_id")
    @classmethod
    def _source(cls, value):
        return sanitize_string(value, 100) or None


class ChargeCustomer(BaseModel):
    name: str
    last_name: str | None = None
    email: str
    phone_number: str | None = None

    @field_validator("name", "last_name")
    @classmethod
    def _names(cls, value):
        return sanitize_string(value, MAX_NAME_LENGTH) or None

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return validate_email(value)

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, value):
        return normalize_phone(value) or None


class ChargeRequest(BaseModel):
    method: str = "card"
    amount: Decimal
    currency: str = "PEN"
    description: str = "FitPay membership"
    source_id: str | None = None
    device_session_id: str | None = None
    order_id: str | None = None
    use_3d_secure: bool | None = None
    redirect_url: str | None = None
    customer: ChargeCustomer | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value) -> Decimal:
        return validate_amount(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return validate_currency(value)

    @field_validator("description")
    @classmethod
    def _description(cls, value: str) -> str:
        return sanitize_string(value, 250)

    @field_validator("source_id", "device_session_id", "order_id")
    @classmethod
    def _ids(cls, value):
        return sanitize_string(value, 100) or None

    @model_validator(mode="after")
    def _three_d_secure(self):
        if self.use_3d_secure and not self.redirect_url:
            raise ValidationFailed("redirect_url is required when use_3d_secure is set", "MISSING_REDIRECT_URL")
        if not self.use_3d_secure:
            self.use_3d_secure = None
        return self

    @field_serializer("amount")
    def _amount_number(self, value: Decimal) -> float:
        return float(value)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class GatewayResource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    log_id: str | None = None


class Customer(GatewayResource):
    name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    external_id: str | None = None
    status: str | None = None
    creation_date: str | None = None


class Card(GatewayResource):
    type: str | None = None
    brand: str | None = None
    card_number: str | None = None
    holder_name: str | None = None
    expiration_year: str | None = None
    expiration_month: str | None = None
    bank_name: str | None = None
    bank_code: str | None = None

    @property
    def last4(self) -> str | None:
        return self.card_number[-4:] if self.card_number else None


class Subscription(GatewayResource):
    status: str | None = None
    charge_date: str | None = None
    creation_date: str | None = None
    current_period_number: int | None = None
    period_end_date: str | None = None
    trial_end_date: str | None = None
    plan_id: str | None = None
    customer_id: str | None = None
    card: dict | None = None


class Charge(GatewayResource):
    status: str | None = None
    authorization: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    operation_type: str | None = None
    creation_date: str | None = None
    order_id: str | None = None
    error_message: str | None = None
    card: dict | None = None
    payment_method: dict | None = None

    @property
    def requires_3d_secure(self) -> bool:
        return bool(self.payment_method and self.payment_method.get("url"))

    @property
    def redirect_url(self) -> str | None:
        return self.payment_method.get("url") if self.requires_3d_secure else None


class Plan(GatewayResource):
    name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    repeat_every: int | None = None
    repeat_unit: str | None = None
    trial_days: int | None = None
    status: str | None = None
