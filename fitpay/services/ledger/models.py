"""Daily virtual cash register table."""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Date, DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fitpay.common.db import Base


class VirtualCashRegister(Base):
    """Running totals of settled gateway payments for one gateway and business day.

    `net_total` is always `gross_total - fee_total - tax_total`; it is rewritten in
    the same statement that moves the other three.
    """

    __tablename__ = "virtual_cash_registers"
    __table_args__ = (UniqueConstraint("gateway_id", "business_date", name="uq_register_gateway_day"),)

    register_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    gateway_id: Mapped[int] = mapped_column(Integer, index=True)
    business_date: Mapped[date] = mapped_column(Date, index=True)
    state: Mapped[str] = mapped_column(String(10), default="OPEN", index=True)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0)
    gross_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    fee_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    net_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_movement_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
