"""Payment session tables.

A session tracks one checkout attempt; its history rows are append-only.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fitpay.common.db import Base, JSONType


class PaymentSession(Base):
    __tablename__ = "payment_sessions"

    session_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    gateway_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    document_number: Mapped[str | None] = mapped_column(String(12), nullable=True)
    session_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    device_session_id: Mapped[str | None] = mapped_column(String(150), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    platform: Mapped[str] = mapped_column(String(50), default="WEB")
    product_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attempted_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    state: Mapped[str] = mapped_column(String(10), index=True)
    payment_attempts: Mapped[int] = mapped_column(Integer, default=0)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    last_log_id: Mapped[str | None] = mapped_column(String, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SessionHistoryEntry(Base):
    """Immutable event in a session's timeline, ordered by `entry_id`."""

    __tablename__ = "session_history_entries"

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("payment_sessions.session_id"), index=True)
    action: Mapped[str] = mapped_column(String(50))
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
