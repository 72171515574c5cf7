"""Buyer, plan, gateway mirror and commercial records written by the purchase saga.

Gateway mirror rows (customer, card, subscription, transaction) are never
deleted; they are deactivated through their status columns.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from fitpay.common.db import Base, JSONType


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(50))
    last_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str] = mapped_column(String(150), index=True)
    phone: Mapped[str | None] = mapped_column(String(15), nullable=True)
    document_type: Mapped[str] = mapped_column(String(10), default="DNI")
    document_number: Mapped[str] = mapped_column(String(12), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SubscriptionPlan(Base):
    """Local view of a recurring plan defined at the gateway."""

    __tablename__ = "subscription_plans"

    plan_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    gateway_id: Mapped[int] = mapped_column(Integer, index=True)
    external_plan_code: Mapped[str] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(100))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="PEN")
    repeat_every: Mapped[int] = mapped_column(Integer, default=1)
    repeat_unit: Mapped[str] = mapped_column(String(10), default="month")
    trial_days: Mapped[int] = mapped_column(Integer, default=0)
    duration_days: Mapped[int] = mapped_column(Integer, default=30)
    product_code: Mapped[str] = mapped_column(String(50))
    fee_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0.0399"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class GatewayCustomer(Base):
    """Links a user to a gateway customer id; one active row per user and gateway."""

    __tablename__ = "gateway_customers"
    __table_args__ = (
        Index(
            "uq_gateway_customer_active",
            "user_id",
            "gateway_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    customer_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), index=True)
    gateway_id: Mapped[int] = mapped_column(Integer)
    external_customer_id: Mapped[str] = mapped_column(String(100), index=True)
    document_number: Mapped[str | None] = mapped_column(String(12), nullable=True)
    email: Mapped[str | None] = mapped_column(String(150), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(15), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    log_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class GatewayCard(Base):
    __tablename__ = "gateway_cards"

    card_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(ForeignKey("gateway_customers.customer_id"), index=True)
    external_card_id: Mapped[str] = mapped_column(String(100))
    brand: Mapped[str | None] = mapped_column(String(30), nullable=True)
    last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    expiration_month: Mapped[str | None] = mapped_column(String(2), nullable=True)
    expiration_year: Mapped[str | None] = mapped_column(String(4), nullable=True)
    holder_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    log_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GatewaySubscription(Base):
    __tablename__ = "gateway_subscriptions"

    subscription_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(ForeignKey("gateway_customers.customer_id"), index=True)
    card_id: Mapped[str] = mapped_column(ForeignKey("gateway_cards.card_id"))
    plan_id: Mapped[str] = mapped_column(ForeignKey("subscription_plans.plan_id"))
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    external_subscription_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    state: Mapped[str] = mapped_column(String(10), index=True)
    external_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    started_on: Mapped[str | None] = mapped_column(String(30), nullable=True)
    next_charge_date: Mapped[str | None] = mapped_column(String(30), nullable=True)
    period_end_date: Mapped[str | None] = mapped_column(String(30), nullable=True)
    membership_id: Mapped[str | None] = mapped_column(String, nullable=True)
    log_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GatewayTransaction(Base):
    """One money movement; `net_amount` is always gross minus fee minus tax."""

    __tablename__ = "gateway_transactions"
    __table_args__ = (
        # Tolerance stands in for exact equality on SQLite, which stores NUMERIC as REAL.
        CheckConstraint(
            "abs(net_amount - (gross_amount - fee_amount - tax_amount)) < 0.005",
            name="ck_transaction_net",
        ),
    )

    transaction_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    gateway_id: Mapped[int] = mapped_column(Integer, index=True)
    register_id: Mapped[str | None] = mapped_column(ForeignKey("virtual_cash_registers.register_id"), nullable=True)
    session_id: Mapped[str | None] = mapped_column(ForeignKey("payment_sessions.session_id"), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(
        ForeignKey("gateway_subscriptions.subscription_id"), nullable=True
    )
    card_id: Mapped[str | None] = mapped_column(ForeignKey("gateway_cards.card_id"), nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    document_number: Mapped[str | None] = mapped_column(String(12), nullable=True)
    sale_id: Mapped[str | None] = mapped_column(String, nullable=True)
    membership_id: Mapped[str | None] = mapped_column(String, nullable=True)
    external_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    order_reference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(20), default="SUBSCRIPTION")
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="PEN")
    state: Mapped[str] = mapped_column(String(10), index=True)
    response_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    log_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Sale(Base):
    __tablename__ = "sales"

    sale_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="PEN")
    payment_method: Mapped[str] = mapped_column(String(20), default="CARD")
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str] = mapped_column(String(10), default="PAID")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SaleLine(Base):
    __tablename__ = "sale_lines"

    line_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    sale_id: Mapped[str] = mapped_column(ForeignKey("sales.sale_id"), index=True)
    product_code: Mapped[str] = mapped_column(String(50))
    description: Mapped[str] = mapped_column(String(100))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2))


class Membership(Base):
    """Gym access window; created ACTIVE together with its sale."""

    __tablename__ = "memberships"

    membership_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.user_id"), index=True)
    document_number: Mapped[str] = mapped_column(String(12), index=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("subscription_plans.plan_id"))
    product_code: Mapped[str] = mapped_column(String(50))
    sale_id: Mapped[str | None] = mapped_column(ForeignKey("sales.sale_id"), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String, nullable=True)
    starts_on: Mapped[date] = mapped_column(Date)
    ends_on: Mapped[date] = mapped_column(Date, index=True)
    duration_days: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(10), default="ACTIVE", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
