"""Irreversible partial redaction of secrets before logging or persistence.

`mask_sensitive` is used on every payload that reaches a log line, the API call
log, the audit trail or the session history. It never raises: unknown values
pass through untouched.
"""

import re
from typing import Any

from pydantic import BaseModel

MAX_DEPTH = 10
MAX_DEPTH_SENTINEL = "[MAX_DEPTH]"

# Matched anywhere in the key once separators are dropped: "customerPrivateKey".
SENSITIVE_FIELDS = (
    "privatekey",
    "publickey",
    "password",
    "token",
    "secret",
    "apikey",
    "cardnumber",
    "expiration",
    "accountnumber",
    "routingnumber",
    "bankaccount",
    "clabe",
    "nationalid",
)

# Too short to match inside other words ("shipping", "opinion"); whole key parts only.
SENSITIVE_WORDS = frozenset({"pin", "cvv", "cvv2", "cvc", "ssn", "dni"})

CARD_FIELDS = ("cardnumber",)

_CARD_PATTERN = re.compile(r"^\d{13,19}$")
_CARD_SEPARATORS = re.compile(r"[\s-]")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_KEY_SEPARATORS = re.compile(r"[^a-z0-9]+")


def _key_parts(name: str) -> list[str]:
    return [part for part in _KEY_SEPARATORS.split(_CAMEL_BOUNDARY.sub(r"\1_\2", name).lower()) if part]


def is_sensitive_field(name: str) -> bool:
    parts = _key_parts(name)
    joined = "".join(parts)
    return any(field in joined for field in SENSITIVE_FIELDS) or any(part in SENSITIVE_WORDS for part in parts)


def is_card_field(name: str) -> bool:
    joined = "".join(_key_parts(name))
    return any(field in joined for field in CARD_FIELDS)


def mask_value(value: Any) -> str:
    """Keep the first and last four characters of long strings."""

    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}****{value[-4:]}"
    return "****"


def mask_card_number(value: str) -> str | None:
    """Return `first6******last4` when `value` looks like a PAN, else None."""

    digits = _CARD_SEPARATORS.sub("", value)
    if not _CARD_PATTERN.match(digits):
        return None
    return f"{digits[:6]}******{digits[-4:]}"


def mask_sensitive(data: Any, depth: int = 0) -> Any:
    """Return a masked deep copy of `data`."""

    if depth > MAX_DEPTH:
        return MAX_DEPTH_SENTINEL
    if isinstance(data, BaseModel):
        try:
            data = data.model_dump(mode="json")
        except Exception:
            return data
    if isinstance(data, str):
        masked = mask_card_number(data)
        return data if masked is None else masked
    if isinstance(data, (list, tuple)):
        return [mask_sensitive(item, depth + 1) for item in data]
    if not isinstance(data, dict):
        return data

    masked: dict = {}
    for key, value in data.items():
        name = key if isinstance(key, str) else ""
        card = mask_card_number(value) if isinstance(value, str) else None
        if name and is_sensitive_field(name) and not (card is not None and is_card_field(name)):
            masked[key] = mask_value(value)
        elif card is not None:
            masked[key] = card
        else:
            masked[key] = mask_sensitive(value, depth + 1)
    return masked
