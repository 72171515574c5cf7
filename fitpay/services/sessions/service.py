"""Payment session lifecycle.

Sessions start ACTIVE and reach exactly one terminal state. Every transition
is a conditional update guarded by the current state, so two writers racing on
the same session cannot both win. History appends are best-effort.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select, update

from fitpay.common.clock import Clock, as_utc, utcnow
from fitpay.common.config import settings
from fitpay.common.errors import InvalidSessionTransition
from fitpay.common.logging import logger
from fitpay.common.masking import mask_sensitive
from fitpay.common.metrics import audit_write_failures_total, sessions_expired_total
from fitpay.common.state_machine import ACTIVE, COMPLETED, EXPIRED, FAILED, validate_transition
from fitpay.common.validation import sanitize_string
from fitpay.services.sessions.models import PaymentSession, SessionHistoryEntry

# History action tags.
STARTED = "INICIO"
CUSTOMER_RESOLVED = "CLIENTE_OBTENIDO"
CARD_ATTACHED = "TARJETA_ASOCIADA"
SUBSCRIPTION_CREATED = "SUSCRIPCION_CREADA"
TRANSACTION_RECORDED = "TRANSACCION_REGISTRADA"
PAYMENT_SUCCEEDED = "PAGO_EXITOSO"
PAYMENT_FAILED = "PAGO_FALLIDO"
SESSION_EXPIRED = "EXPIRADA"


class PaymentSessionService:
    def __init__(
        self,
        session_factory,
        clock: Clock = utcnow,
        ttl_seconds: int = settings.session_ttl_seconds,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)

    def open(
        self,
        gateway_id: int | None,
        document_number: str | None = None,
        device_session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        user_id: int | None = None,
        attempted_amount: Decimal | None = None,
        product_code: str | None = None,
        platform: str = "WEB",
    ) -> PaymentSession:
        """Create an ACTIVE session expiring after the configured TTL and log `INICIO`."""

        now = self.clock()
        with self.session_factory() as db:
            session = PaymentSession(
                session_id=str(uuid4()),
                gateway_id=gateway_id,
                user_id=user_id,
                document_number=sanitize_string(document_number, 12) or None,
                session_token=uuid4().hex,
                device_session_id=sanitize_string(device_session_id, 150) or None,
                user_agent=sanitize_string(user_agent, 500) or None,
                ip_address=sanitize_string(ip_address, 45) or None,
                platform=sanitize_string(platform, 50) or "WEB",
                product_code=sanitize_string(product_code, 100) or None,
                attempted_amount=attempted_amount,
                state=ACTIVE,
                payment_attempts=0,
                started_at=now,
                last_activity_at=now,
                expires_at=now + self.ttl,
            )
            db.add(session)
            db.commit()

        self.record(session.session_id, STARTED, "payment session started", ip_address)
        logger.info("payment session opened session_id=%s", session.session_id)
        return session

    def get(self, session_id: str) -> PaymentSession | None:
        with self.session_factory() as db:
            return db.get(PaymentSession, session_id)

    def record(
        self,
        session_id: str,
        action: str,
        detail: str | None = None,
        ip_address: str | None = None,
        payload: dict | None = None,
    ) -> None:
        """Append one history entry; failures are logged, never raised."""

        try:
            with self.session_factory() as db:
                now = self.clock()
                db.add(
                    SessionHistoryEntry(
                        session_id=session_id,
                        action=sanitize_string(action, 50),
                        detail=sanitize_string(detail, 500) or None,
                        ip_address=sanitize_string(ip_address, 45) or None,
                        payload=mask_sensitive(payload) if payload else None,
                        created_at=now,
                    )
                )
                db.execute(
                    update(PaymentSession)
                    .where(PaymentSession.session_id == session_id)
                    .values(last_activity_at=now)
                )
                db.commit()
        except Exception as exc:
            audit_write_failures_total.labels(target="session_history_entries").inc()
            logger.error("session history write failed session_id=%s action=%s error=%s", session_id, action, exc)

    def history(self, session_id: str) -> list[SessionHistoryEntry]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(SessionHistoryEntry)
                    .where(SessionHistoryEntry.session_id == session_id)
                    .order_by(SessionHistoryEntry.entry_id)
                ).scalars()
            )

    def _touch(self, session_id: str, **values) -> None:
        with self.session_factory() as db:
            db.execute(
                update(PaymentSession)
                .where(PaymentSession.session_id == session_id)
                .values(last_activity_at=self.clock(), **values)
            )
            db.commit()

    def assign_gateway(self, session_id: str, gateway_id: int) -> None:
        self._touch(session_id, gateway_id=gateway_id)

    def attach_user(self, session_id: str, user_id: int) -> None:
        self._touch(session_id, user_id=user_id)

    def set_attempted_amount(self, session_id: str, amount: Decimal) -> None:
        self._touch(session_id, attempted_amount=amount)

    def register_attempt(self, session_id: str, log_id: str | None = None) -> None:
        values = {"payment_attempts": PaymentSession.payment_attempts + 1}
        if log_id:
            values["last_log_id"] = log_id
        self._touch(session_id, **values)

    def _transition(self, session_id: str, new_state: str, **values) -> None:
        """Move the session out of its current state exactly once."""

        now = self.clock()
        with self.session_factory() as db:
            current = db.get(PaymentSession, session_id)
            if current is None:
                raise InvalidSessionTransition(f"unknown payment session {session_id}", "SESSION_NOT_FOUND")
            validate_transition(current.state, new_state)
            result = db.execute(
                update(PaymentSession)
                .where(PaymentSession.session_id == session_id, PaymentSession.state == current.state)
                .values(state=new_state, ended_at=now, last_activity_at=now, **values)
            )
            if result.rowcount != 1:
                raise InvalidSessionTransition(f"payment session {session_id} changed state concurrently")
            db.commit()
        logger.info("payment session %s -> %s session_id=%s", current.state, new_state, session_id)

    def complete(self, session_id: str, transaction_id: str | None = None) -> None:
        values = {"transaction_id": transaction_id} if transaction_id else {}
        self._transition(session_id, COMPLETED, **values)

    def fail(self, session_id: str, transaction_id: str | None = None) -> None:
        values = {"transaction_id": transaction_id} if transaction_id else {}
        self._transition(session_id, FAILED, **values)

    @staticmethod
    def is_expired(session: PaymentSession, now: datetime) -> bool:
        """True when an ACTIVE session has outlived its expiry and may be swept."""

        return session.state == ACTIVE and as_utc(session.expires_at) <= as_utc(now)

    def expire_stale(self, now: datetime | None = None, limit: int = 500) -> list[str]:
        """Housekeeping sweep: move overdue ACTIVE sessions to EXPIRED."""

        now = now or self.clock()
        with self.session_factory() as db:
            candidates = list(
                db.execute(
                    select(PaymentSession.session_id)
                    .where(PaymentSession.state == ACTIVE, PaymentSession.expires_at <= now)
                    .order_by(PaymentSession.expires_at)
                    .limit(limit)
                ).scalars()
            )

        expired: list[str] = []
        for session_id in candidates:
            with self.session_factory() as db:
                result = db.execute(
                    update(PaymentSession)
                    .where(PaymentSession.session_id == session_id, PaymentSession.state == ACTIVE)
                    .values(state=EXPIRED, ended_at=now, last_activity_at=now)
                )
                if result.rowcount != 1:
                    # Finished by its checkout between the select and the update.
                    continue
                db.commit()
            self.record(session_id, SESSION_EXPIRED, "session expired without completing payment")
            sessions_expired_total.labels(service=settings.service_name).inc()
            expired.append(session_id)

        if expired:
            logger.info("expired %s stale payment sessions", len(expired))
        return expired
