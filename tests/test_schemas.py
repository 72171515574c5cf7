"""Input validation on purchase and gateway request types."""

from decimal import Decimal

import pytest

from fitpay.common.errors import ValidationFailed
from fitpay.common.validation import sanitize_string, validate_amount, validate_currency, validate_repeat_unit
from fitpay.services.gateway.schemas import CardRequest, CustomerRequest, build
from fitpay.services.orchestrator.schemas import BuyerData, PurchaseRequest

BUYER = {"first_name": "Ana", "email": "ana@example.com", "document_type": "DNI", "document_number": "45678912"}


def test_buyer_document_rules():
    """DNI needs eight digits and unknown document types are refused."""
    assert BuyerData(**BUYER).document_number == "45678912"
    assert BuyerData(**{**BUYER, "document_type": "ce", "document_number": "AB1234567"}).document_type == "CE"

    with pytest.raises(ValidationFailed) as exc_info:
        BuyerData(**{**BUYER, "document_number": "4567891"})
    assert exc_info.value.code == "INVALID_DOCUMENT"

    with pytest.raises(ValidationFailed):
        BuyerData(**{**BUYER, "document_type": "RUC"})


def test_buyer_email_normalized_and_checked():
    """Emails are trimmed, lowercased and validated."""
    assert BuyerData(**{**BUYER, "email": "  Ana@Example.COM "}).email == "ana@example.com"
    with pytest.raises(ValidationFailed) as exc_info:
        BuyerData(**{**BUYER, "email": "not-an-email"})
    assert exc_info.value.code == "INVALID_EMAIL"


@pytest.mark.parametrize("amount", ["abc", "0.50", "50000.01", "NaN"])
def test_purchase_amount_limits(amount):
    """Amounts outside the accepted range are refused."""
    with pytest.raises(ValidationFailed) as exc_info:
        PurchaseRequest(buyer=BUYER, token_id="tok_1", device_session_id="dev", plan_id="p1", amount=amount)
    assert exc_info.value.code == "INVALID_AMOUNT"


def test_amount_rounded_to_cents():
    """Amounts round half up to cents."""
    assert validate_amount("99.905") == Decimal("99.91")


def test_build_wraps_schema_errors():
    """Schema errors surface as validation failures."""
    with pytest.raises(ValidationFailed) as exc_info:
        build(CardRequest, token_id="tok_1")
    assert exc_info.value.code == "INVALID_REQUEST"
    assert "device_session_id" in exc_info.value.message


def test_blank_ids_rejected():
    """Blank identifiers are refused."""
    with pytest.raises(ValidationFailed) as exc_info:
        build(CardRequest, token_id="<>", device_session_id="dev")
    assert exc_info.value.code == "INVALID_ID"


def test_customer_request_sanitizes():
    """Customer fields are stripped of markup and phones of punctuation."""
    request = build(CustomerRequest, name=" <Ana> ", email="ana@example.com", phone_number="+51 (987) 654-321")
    assert request.name == "Ana"
    assert request.phone_number == "51987654321"

    with pytest.raises(ValidationFailed) as exc_info:
        build(CustomerRequest, name="A", email="ana@example.com")
    assert exc_info.value.code == "INVALID_NAME"


def test_sanitize_string():
    """Dangerous characters are removed and whitespace collapsed."""
    assert sanitize_string("  O'Brien; DROP  ") == "OBrien DROP"
    assert sanitize_string(None) == ""
    assert len(sanitize_string("x" * 500, 100)) == 100


def test_currency_and_repeat_unit():
    """Currencies and repeat units are normalized and checked."""
    assert validate_currency("pen") == "PEN"
    assert validate_repeat_unit("Month") == "month"
    with pytest.raises(ValidationFailed):
        validate_currency("EUR")
    with pytest.raises(ValidationFailed):
        validate_repeat_unit("fortnight")
