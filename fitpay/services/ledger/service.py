"""Virtual cash register ledger.

One register per gateway and business day. Totals only move through
`apply_transaction`, a single `UPDATE ... SET total = total + :x`, so
concurrent settlements never lose an increment.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from fitpay.common.clock import Clock, business_day, utcnow
from fitpay.common.config import settings
from fitpay.common.errors import FitPayError, ValidationFailed
from fitpay.common.logging import logger
from fitpay.common.validation import to_money
from fitpay.services.ledger.models import VirtualCashRegister

OPEN = "OPEN"
CLOSED = "CLOSED"


class CashRegisterLedger:
    def __init__(
        self,
        session_factory,
        clock: Clock = utcnow,
        tz_name: str = settings.business_timezone,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.tz_name = tz_name

    def today(self) -> date:
        return business_day(self.clock(), self.tz_name)

    def obtain_or_open_today(self, gateway_id: int) -> VirtualCashRegister:
        """Return today's register, closing stale ones and opening it when missing."""

        now = self.clock()
        today = business_day(now, self.tz_name)
        with self.session_factory() as db:
            register = self._find(db, gateway_id, today)
            if register is not None:
                if register.state != OPEN:
                    db.execute(
                        update(VirtualCashRegister)
                        .where(VirtualCashRegister.register_id == register.register_id)
                        .values(state=OPEN, closed_at=None)
                    )
                    db.commit()
                    register.state, register.closed_at = OPEN, None
                    logger.warning("reopened closed cash register register_id=%s", register.register_id)
                return register

            closed = db.execute(
                update(VirtualCashRegister)
                .where(
                    VirtualCashRegister.gateway_id == gateway_id,
                    VirtualCashRegister.state == OPEN,
                    VirtualCashRegister.business_date < today,
                )
                .values(state=CLOSED, closed_at=now)
            ).rowcount
            if closed:
                logger.info("closed %s stale cash registers gateway_id=%s", closed, gateway_id)

            register = VirtualCashRegister(
                gateway_id=gateway_id,
                business_date=today,
                state=OPEN,
                transaction_count=0,
                gross_total=Decimal("0"),
                fee_total=Decimal("0"),
                tax_total=Decimal("0"),
                net_total=Decimal("0"),
                opened_at=now,
            )
            db.add(register)
            try:
                db.commit()
            except IntegrityError:
                # Another checkout opened today's register first.
                db.rollback()
                register = self._find(db, gateway_id, today)
                if register is None:
                    raise
                return register
        logger.info("cash register opened register_id=%s business_date=%s", register.register_id, today)
        return register

    @staticmethod
    def _find(db, gateway_id: int, day: date) -> VirtualCashRegister | None:
        return db.execute(
            select(VirtualCashRegister).where(
                VirtualCashRegister.gateway_id == gateway_id,
                VirtualCashRegister.business_date == day,
            )
        ).scalar_one_or_none()

    def apply_transaction(self, register_id: str, gross, fee=0, tax=0) -> None:
        """Add one settled payment to the register's count and totals."""

        gross, fee, tax = to_money(gross), to_money(fee), to_money(tax)
        if gross <= 0 or fee < 0 or tax < 0:
            raise ValidationFailed("register amounts must be positive", "INVALID_AMOUNT")
        if fee + tax > gross:
            raise ValidationFailed("fee and tax exceed the gross amount", "INVALID_AMOUNT")

        with self.session_factory() as db:
            result = db.execute(
                update(VirtualCashRegister)
                .where(VirtualCashRegister.register_id == register_id)
                .values(
                    transaction_count=VirtualCashRegister.transaction_count + 1,
                    gross_total=VirtualCashRegister.gross_total + gross,
                    fee_total=VirtualCashRegister.fee_total + fee,
                    tax_total=VirtualCashRegister.tax_total + tax,
                    # Right-hand sides read the pre-update row.
                    net_total=(VirtualCashRegister.gross_total + gross)
                    - (VirtualCashRegister.fee_total + fee)
                    - (VirtualCashRegister.tax_total + tax),
                    last_movement_at=self.clock(),
                )
            )
            if result.rowcount != 1:
                raise FitPayError(f"cash register {register_id} not found", "REGISTER_NOT_FOUND")
            db.commit()
        logger.info("cash register updated register_id=%s gross=%s fee=%s tax=%s", register_id, gross, fee, tax)

    def get(self, register_id: str) -> VirtualCashRegister | None:
        with self.session_factory() as db:
            return db.get(VirtualCashRegister, register_id)

    def summary(self, gateway_id: int, day: date | None = None) -> dict | None:
        day = day or self.today()
        with self.session_factory() as db:
            register = self._find(db, gateway_id, day)
        if register is None:
            return None
        return {
            "register_id": register.register_id,
            "gateway_id": register.gateway_id,
            "business_date": register.business_date.isoformat(),
            "state": register.state,
            "transaction_count": register.transaction_count,
            "gross_total": str(register.gross_total),
            "fee_total": str(register.fee_total),
            "tax_total": str(register.tax_total),
            "net_total": str(register.net_total),
        }
