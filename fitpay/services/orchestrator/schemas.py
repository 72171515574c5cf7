"""Purchase request/response schemas for the subscription saga."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, field_validator, model_validator

from fitpay.common.validation import (
    normalize_phone,
    require_id,
    sanitize_string,
    validate_amount,
    validate_document,
    validate_email,
)


class BuyerData(BaseModel):
    """Who is buying; the document number identifies the member."""

    first_name: str
    last_name: str | None = None
    email: str
    phone: str | None = None
    document_type: str = "DNI"
    document_number: str

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, value: str) -> str:
        return sanitize_string(value, 50)

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, value):
        return sanitize_string(value, 50) or None

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return validate_email(value)

    @field_validator("phone")
    @classmethod
    def _phone(cls, value):
        return normalize_phone(value) or None

    @field_validator("document_type")
    @classmethod
    def _document_type(cls, value: str) -> str:
        return (value or "").strip().upper()

    @model_validator(mode="after")
    def _document(self):
        self.document_number = validate_document(self.document_type, self.document_number)
        return self


class PurchaseRequest(BaseModel):
    """Payload accepted by `POST /internal/subscriptions`."""

    buyer: BuyerData
    token_id: str
    device_session_id: str
    plan_id: str
    amount: Decimal

    @field_validator("token_id", "device_session_id", "plan_id")
    @classmethod
    def _ids(cls, value: str, info) -> str:
        return require_id(value, info.field_name)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value) -> Decimal:
        return validate_amount(value)


class PurchaseResult(BaseModel):
    """Outcome of one purchase; failures carry the session id for support."""

    success: bool
    message: str
    session_id: str | None = None

    user_id: int | None = None
    customer_id: str | None = None
    card_id: str | None = None
    subscription_id: str | None = None
    transaction_id: str | None = None
    sale_id: str | None = None
    membership_id: str | None = None

    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    card_brand: str | None = None
    card_last4: str | None = None
    subscription_status: str | None = None
    next_charge_date: str | None = None
    period_end_date: str | None = None
    membership_starts_on: date | None = None
    membership_ends_on: date | None = None
    duration_days: int | None = None

    error_kind: str | None = None
    error_code: str | None = None
    log_id: str | None = None
