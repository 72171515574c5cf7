"""Masking rules applied before anything is logged or persisted."""

import copy

from fitpay.common.masking import MAX_DEPTH_SENTINEL, mask_card_number, mask_sensitive, mask_value
from fitpay.services.gateway.schemas import CardRequest


def test_card_number_keeps_first_six_and_last_four():
    """Card numbers keep their BIN and last four digits."""
    assert mask_sensitive({"card_number": "4111111111111111"}) == {"card_number": "411111******1111"}


def test_long_secret_keeps_first_and_last_four():
    """Long secrets keep their first and last four characters."""
    assert mask_sensitive({"password": "supersecret123"}) == {"password": "supe****t123"}


def test_short_or_non_string_secret_fully_masked():
    """Short or non-string secrets are replaced entirely."""
    masked = mask_sensitive({"cvv": "123", "pin": 4321, "private_key": "abcdefgh"})
    assert masked == {"cvv": "****", "pin": "****", "private_key": "****"}


def test_key_match_is_case_insensitive_substring():
    """Sensitive names match in any case and inside longer keys."""
    masked = mask_sensitive({"Merchant_API_KEY": "key_live_0123456789", "customerPrivateKey": "sk_live_abcdef123"})
    assert masked["Merchant_API_KEY"] == "key_****6789"
    assert masked["customerPrivateKey"] == "sk_l****f123"


def test_bare_pan_masked_anywhere():
    """Card-like digit runs are masked even under harmless keys."""
    assert mask_sensitive("4111 1111 1111 1111") == "411111******1111"
    assert mask_sensitive({"note": "5555-5555-5555-4444"}) == {"note": "555555******4444"}
    assert mask_card_number("12345") is None


def test_nested_lists_and_dicts():
    """Masking reaches into nested lists and dicts."""
    payload = {"customer": {"name": "Ana", "cards": [{"cvv2": "999", "brand": "visa"}]}}
    masked = mask_sensitive(payload)
    assert masked == {"customer": {"name": "Ana", "cards": [{"cvv2": "****", "brand": "visa"}]}}


def test_input_is_not_mutated():
    """The original payload is left untouched."""
    payload = {"token_id": "tok_abcdefghij", "amount": 99.9}
    original = copy.deepcopy(payload)
    masked = mask_sensitive(payload)
    assert payload == original
    assert masked == {"token_id": "tok_****ghij", "amount": 99.9}


def test_depth_cap():
    """Very deep payloads are cut off with a sentinel."""
    nested = "leaf"
    for _ in range(15):
        nested = {"a": nested}
    node = mask_sensitive(nested)
    while isinstance(node, dict):
        node = node["a"]
    assert node == MAX_DEPTH_SENTINEL


def test_pydantic_models_are_dumped_then_masked():
    """Pydantic models are dumped before masking."""
    masked = mask_sensitive(CardRequest(token_id="tok_9876543210", device_session_id="dev-session"))
    assert masked == {"token_id": "tok_****3210", "device_session_id": "dev-session"}


def test_other_values_pass_through():
    """Scalars and None pass through unchanged."""
    assert mask_sensitive(42) == 42
    assert mask_sensitive(None) is None
    assert mask_value(None) == "****"


def test_short_names_only_match_whole_key_parts():
    """Short names like pin or dni do not mask keys that merely contain them."""
    masked = mask_sensitive(
        {"shipping_address": "Av. Arequipa 1234", "opinion": "great gym", "user_pin": "1234", "dniNumber": "45678912"}
    )
    assert masked == {
        "shipping_address": "Av. Arequipa 1234",
        "opinion": "great gym",
        "user_pin": "****",
        "dniNumber": "****",
    }


def test_numeric_secret_uses_field_mask():
    """A card-length secret under a non-card key keeps first and last four only."""
    masked = mask_sensitive({"password": "4111111111111111", "cardNumber": "4111 1111 1111 1111"})
    assert masked == {"password": "4111****1111", "cardNumber": "411111******1111"}
