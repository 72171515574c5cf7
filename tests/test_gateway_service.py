"""Typed gateway operations: idempotent creates, rate limiting and request shapes."""

import asyncio
import json

import httpx
import pytest
from sqlalchemy import func, select

from fitpay.common.errors import GatewayUnavailable, RateLimited, ValidationFailed
from fitpay.services.gateway.models import ApiCallLogEntry
from fitpay.services.gateway.rate_limit import FixedWindowRateLimiter
from fitpay.services.gateway.schemas import ChargeRequest, CustomerRequest, SubscriptionRequest, build


def run(client, coro):
    async def scenario():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(scenario())


def log_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(ApiCallLogEntry)).scalar_one()


def test_create_customer_is_idempotent(gateway, client, fake_gateway):
    """Repeating a customer creation returns the first result without a new call."""
    request = build(CustomerRequest, name="Ana", last_name="Quispe", email="ANA@example.com", external_id="FIT-45678912")

    async def twice():
        first = await gateway.create_customer(request)
        second = await gateway.create_customer(request)
        return first, second

    first, second = run(client, twice())

    assert first.id == second.id
    assert fake_gateway.count("POST", r"/customers") == 1
    body = json.loads(fake_gateway.requests[0].content)
    assert body == {
        "name": "Ana",
        "last_name": "Quispe",
        "email": "ana@example.com",
        "external_id": "FIT-45678912",
        "requires_account": False,
    }


def test_create_subscription_is_idempotent_per_customer_and_plan(gateway, client, fake_gateway):
    """Subscriptions are deduplicated per customer and plan."""
    async def scenario():
        a = await gateway.create_subscription("cus_0001", SubscriptionRequest(plan_id="pln_1", source_id="card_1"))
        b = await gateway.create_subscription("cus_0001", SubscriptionRequest(plan_id="pln_1", source_id="card_1"))
        c = await gateway.create_subscription("cus_0002", SubscriptionRequest(plan_id="pln_1", source_id="card_9"))
        return a, b, c

    a, b, c = run(client, scenario())

    assert a.id == b.id
    assert c.id != a.id
    assert fake_gateway.count("POST", r"/customers/[^/]+/subscriptions") == 2


def test_rate_limit_blocks_before_any_call_is_logged(gateway, client, fake_gateway, session_factory):
    """A rate-limited request never reaches the gateway or the call log."""
    client.rate_limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60)

    async def scenario():
        await gateway.get_customer("cus_0001")
        await gateway.get_customer("cus_0001")

    with pytest.raises(RateLimited):
        run(client, scenario())

    assert len(fake_gateway.requests) == 1
    assert log_count(session_factory) == 1


def test_response_without_id_is_invalid(gateway, client, fake_gateway):
    """A gateway body missing its id is rejected as invalid."""
    fake_gateway.queue("GET", r"/plans/[^/]+", httpx.Response(200, json={"name": "Mensual"}))

    with pytest.raises(GatewayUnavailable) as exc_info:
        run(client, gateway.get_plan("pln_monthly_01"))

    assert exc_info.value.code == "INVALID_RESPONSE"


def test_short_customer_id_rejected_locally(gateway, client, fake_gateway):
    """Malformed customer ids fail before any request is sent."""
    with pytest.raises(ValidationFailed):
        run(client, gateway.get_customer("c1"))

    assert fake_gateway.requests == []


def test_cancel_subscription_sends_delete(gateway, client, fake_gateway):
    """Cancelling issues a DELETE on the customer's subscription."""
    cancelled = run(client, gateway.cancel_subscription("cus_0001", "sub_0003"))

    assert cancelled == "sub_0003"
    assert fake_gateway.count("DELETE", r"/customers/cus_0001/subscriptions/sub_0003") == 1


def test_charge_body_serializes_amount_and_drops_empty_fields(gateway, client, fake_gateway):
    """Charge bodies carry a numeric amount and omit unset fields."""
    fake_gateway.queue(
        "POST",
        r"/charges",
        httpx.Response(200, json={"id": "tr_0001", "status": "completed", "amount": 99.9, "currency": "PEN"}),
    )
    request = build(ChargeRequest, amount="99.90", source_id="card_0001", device_session_id="dev-01")

    charge = run(client, gateway.create_charge(request))

    assert charge.status == "completed"
    assert not charge.requires_3d_secure
    body = json.loads(fake_gateway.requests[0].content)
    assert body["amount"] == 99.9
    assert body["method"] == "card"
    assert "use_3d_secure" not in body
    assert "redirect_url" not in body


def test_three_d_secure_requires_redirect_url():
    """3-D Secure charges need a redirect URL."""
    with pytest.raises(ValidationFailed) as exc_info:
        build(ChargeRequest, amount="50", use_3d_secure=True)

    assert exc_info.value.code == "MISSING_REDIRECT_URL"


def test_three_d_secure_redirect_exposed(gateway, client, fake_gateway):
    """The 3-D Secure redirect URL from the gateway is exposed on the charge."""
    fake_gateway.queue(
        "POST",
        r"/charges",
        httpx.Response(
            200,
            json={"id": "tr_0002", "status": "charge_pending", "payment_method": {"type": "redirect", "url": "https://3ds.example/auth"}},
        ),
    )
    request = build(ChargeRequest, amount="50", use_3d_secure=True, redirect_url="https://fitpay.example/return")

    charge = run(client, gateway.create_charge(request))

    assert charge.requires_3d_secure
    assert charge.redirect_url == "https://3ds.example/auth"
