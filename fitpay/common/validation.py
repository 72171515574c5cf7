"""Input sanitation shared by the gateway request types and the saga."""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from fitpay.common.config import settings
from fitpay.common.errors import ValidationFailed

ALLOWED_REPEAT_UNITS = ("day", "week", "month", "year")
ALLOWED_CURRENCIES = ("PEN", "USD")
MAX_NAME_LENGTH = 100
MAX_ID_LENGTH = 100

_UNSAFE_CHARS = re.compile(r"[<>\"'%;()&+]")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DOCUMENT_RULES = {
    "DNI": (re.compile(r"^\d{8}$"), "DNI must have exactly 8 digits"),
    "CE": (re.compile(r"^[A-Z0-9]{9,12}$", re.IGNORECASE), "CE must have 9 to 12 alphanumeric characters"),
    "PASAPORTE": (re.compile(r"^[A-Z0-9]{6,9}$", re.IGNORECASE), "passport must have 6 to 9 alphanumeric characters"),
}
CENT = Decimal("0.01")


def sanitize_string(value, max_length: int = MAX_NAME_LENGTH) -> str:
    """Trim, truncate and strip characters that have no business in ids or names."""

    if not isinstance(value, str):
        return ""
    return _UNSAFE_CHARS.sub("", value.strip()[:max_length])


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailed("amount must be a valid number", "INVALID_AMOUNT") from exc
    if not value.is_finite():
        raise ValidationFailed("amount must be a valid number", "INVALID_AMOUNT")
    if value < settings.min_amount:
        raise ValidationFailed(f"minimum amount is {settings.min_amount}", "INVALID_AMOUNT")
    if value > settings.max_amount:
        raise ValidationFailed(f"maximum amount is {settings.max_amount}", "INVALID_AMOUNT")
    return to_money(value)


def validate_repeat_unit(unit: str) -> str:
    sanitized = sanitize_string(unit, 10).lower()
    if sanitized not in ALLOWED_REPEAT_UNITS:
        raise ValidationFailed(f"invalid repeat unit: {unit}", "INVALID_REPEAT_UNIT")
    return sanitized


def validate_currency(currency: str) -> str:
    normalized = sanitize_string(currency, 3).upper()
    if normalized not in ALLOWED_CURRENCIES:
        raise ValidationFailed(f"unsupported currency: {currency}", "INVALID_CURRENCY")
    return normalized


def validate_email(email) -> str:
    normalized = (email or "").strip().lower()
    if not _EMAIL.match(normalized):
        raise ValidationFailed("a valid email is required", "INVALID_EMAIL")
    return normalized


def normalize_phone(phone) -> str:
    return re.sub(r"[^0-9]", "", phone or "")[:15]


def validate_document(document_type: str, number: str) -> str:
    rule = _DOCUMENT_RULES.get((document_type or "").upper())
    if rule is None:
        raise ValidationFailed("invalid document type", "INVALID_DOCUMENT")
    pattern, message = rule
    normalized = (number or "").strip()
    if not pattern.match(normalized):
        raise ValidationFailed(message, "INVALID_DOCUMENT")
    return normalized


def require_id(value, name: str, min_length: int = 1) -> str:
    sanitized = sanitize_string(value, MAX_ID_LENGTH)
    if len(sanitized) < min_length:
        raise ValidationFailed(f"invalid {name}", "INVALID_ID")
    return sanitized
