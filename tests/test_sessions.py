"""Payment session lifecycle, history and the expiry sweep."""

from datetime import timedelta
from decimal import Decimal

import pytest

from fitpay.common.clock import as_utc
from fitpay.common.errors import InvalidSessionTransition
from fitpay.services.sessions.service import PaymentSessionService


@pytest.fixture
def sessions(session_factory, clock) -> PaymentSessionService:
    return PaymentSessionService(session_factory, clock=clock, ttl_seconds=3600)


def test_open_starts_active_with_history(sessions, clock):
    """A new session is ACTIVE, expires after the TTL and logs its start."""
    session = sessions.open(1, document_number="45678912", ip_address="10.0.0.8", user_agent="pytest")

    stored = sessions.get(session.session_id)
    assert stored.state == "ACTIVE"
    assert stored.payment_attempts == 0
    assert as_utc(stored.expires_at) == clock() + timedelta(hours=1)
    assert len(stored.session_token) == 32
    assert [entry.action for entry in sessions.history(session.session_id)] == ["INICIO"]


def test_complete_is_terminal(sessions):
    """A completed session cannot move again."""
    session = sessions.open(1)
    sessions.complete(session.session_id, "tx-1")

    stored = sessions.get(session.session_id)
    assert stored.state == "COMPLETED"
    assert stored.transaction_id == "tx-1"
    assert stored.ended_at is not None

    with pytest.raises(InvalidSessionTransition):
        sessions.fail(session.session_id)


def test_unknown_session_cannot_transition(sessions):
    """Transitions on a missing session raise."""
    with pytest.raises(InvalidSessionTransition) as exc_info:
        sessions.complete("missing")

    assert exc_info.value.code == "SESSION_NOT_FOUND"


def test_attempts_and_amount_tracked(sessions):
    """Attempts, last log id and amount are stored on the session."""
    session = sessions.open(1)
    sessions.register_attempt(session.session_id, "log-1")
    sessions.register_attempt(session.session_id)
    sessions.set_attempted_amount(session.session_id, Decimal("99.90"))
    sessions.attach_user(session.session_id, 12)

    stored = sessions.get(session.session_id)
    assert stored.payment_attempts == 2
    assert stored.last_log_id == "log-1"
    assert stored.attempted_amount == Decimal("99.90")
    assert stored.user_id == 12


def test_history_payload_is_masked_and_ordered(sessions):
    """History payloads are masked and returned in insertion order."""
    session = sessions.open(1)
    sessions.record(session.session_id, "TARJETA_ASOCIADA", "card attached", payload={"card_number": "4111111111111111"})
    sessions.record(session.session_id, "PAGO_FALLIDO", "declined")

    history = sessions.history(session.session_id)
    assert [entry.action for entry in history] == ["INICIO", "TARJETA_ASOCIADA", "PAGO_FALLIDO"]
    assert history[1].payload == {"card_number": "411111******1111"}


def test_only_overdue_active_sessions_expire(session_factory, clock):
    """The sweep expires only active sessions past their deadline."""
    sessions = PaymentSessionService(session_factory, clock=clock, ttl_seconds=60)
    stale = sessions.open(1)
    finished = sessions.open(1)
    sessions.complete(finished.session_id)
    clock.advance(30)
    fresh = sessions.open(1)
    clock.advance(45)

    expired = sessions.expire_stale()

    assert expired == [stale.session_id]
    assert sessions.get(stale.session_id).state == "EXPIRED"
    assert sessions.get(finished.session_id).state == "COMPLETED"
    assert sessions.get(fresh.session_id).state == "ACTIVE"
    assert sessions.history(stale.session_id)[-1].action == "EXPIRADA"
    assert sessions.expire_stale() == []


def test_is_expired_requires_active_state(sessions, clock):
    """Only active sessions can be considered expired."""
    session = sessions.open(1)
    later = clock() + timedelta(hours=2)
    assert not PaymentSessionService.is_expired(sessions.get(session.session_id), clock())
    assert PaymentSessionService.is_expired(sessions.get(session.session_id), later)

    sessions.fail(session.session_id)
    assert not PaymentSessionService.is_expired(sessions.get(session.session_id), later)
