"""Call log and audit rows written around every gateway call."""

import asyncio

import httpx
import pytest
from sqlalchemy import select

from fitpay.common.errors import GatewayRejected
from fitpay.services.gateway.executor import AuditedCallExecutor
from fitpay.services.gateway.models import ApiCallLogEntry, AuditEntry
from fitpay.services.gateway.schemas import AuditContext, GatewayRequest

ATTACH_CARD = GatewayRequest(
    method="POST",
    path="/customers/cus_0001/cards",
    operation="attach_card",
    body={"token_id": "tok_1234567890ab", "device_session_id": "dev-01", "card_number": "4111111111111111"},
)
CONTEXT = AuditContext(user_id=7, ip_address="10.0.0.8", user_agent="pytest", session_id="sess-1")


def rows(session_factory, model):
    with session_factory() as db:
        return list(db.execute(select(model)).scalars())


def test_success_closes_log_and_audits(executor, session_factory, client):
    """A successful call closes its log row as SUCCESS and writes an audit entry."""
    async def scenario():
        response = await executor.call(ATTACH_CARD, CONTEXT)
        await client.aclose()
        return response

    response = asyncio.run(scenario())

    [log] = rows(session_factory, ApiCallLogEntry)
    assert response.log_id == log.log_id
    assert log.status == "SUCCESS"
    assert log.is_success
    assert log.http_status == 201
    assert log.attempts == 1
    assert log.operation == "attach_card"
    assert log.session_id == "sess-1"
    assert log.finished_at is not None
    assert log.request_body["card_number"] == "411111******1111"
    assert log.request_body["token_id"] == "tok_****90ab"
    assert log.response_body["card_number"] == "4111****1111"

    [entry] = rows(session_factory, AuditEntry)
    assert entry.action == "API_CALL_SUCCESS"
    assert entry.record_id == log.log_id
    assert entry.user_id == 7


def test_rejection_recorded_and_reraised(executor, session_factory, fake_gateway, client):
    """A gateway rejection is logged as ERROR and raised with the log id attached."""
    fake_gateway.queue(
        "POST",
        r"/customers/[^/]+/cards",
        httpx.Response(422, json={"error_code": 2004, "description": "The card number verification digit is invalid"}),
    )

    async def scenario():
        try:
            await executor.call(ATTACH_CARD, CONTEXT)
        finally:
            await client.aclose()

    with pytest.raises(GatewayRejected) as exc_info:
        asyncio.run(scenario())

    [log] = rows(session_factory, ApiCallLogEntry)
    assert exc_info.value.log_id == log.log_id
    assert log.status == "ERROR"
    assert not log.is_success
    assert log.http_status == 422
    assert log.error_code == "2004"
    assert log.error_message == "The card number verification digit is invalid"
    assert log.attempts == 1

    [entry] = rows(session_factory, AuditEntry)
    assert entry.action == "API_CALL_ERROR"
    assert entry.changed_fields["http_status"] == 422


def test_log_store_failure_does_not_fail_the_call(client):
    """The gateway call still succeeds when the call log cannot be written."""
    def broken_factory():
        raise RuntimeError("database unavailable")

    executor = AuditedCallExecutor(client, broken_factory)

    async def scenario():
        response = await executor.call(ATTACH_CARD)
        await client.aclose()
        return response

    response = asyncio.run(scenario())

    assert response.status_code == 201
    assert response.log_id is None


def test_finished_log_is_not_rewritten(executor, session_factory, client):
    """Once a log row leaves PENDING its outcome never changes."""
    async def scenario():
        response = await executor.call(ATTACH_CARD, CONTEXT)
        await client.aclose()
        return response

    response = asyncio.run(scenario())
    executor._close_log(response.log_id, {"status": "ERROR", "error_code": "LATE"})

    [log] = rows(session_factory, ApiCallLogEntry)
    assert log.status == "SUCCESS"
    assert log.error_code is None
