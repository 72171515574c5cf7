"""initial fitpay schema

Revision ID: 0001_fitpay
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_fitpay"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "payment_gateways",
        sa.Column("gateway_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=10), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("merchant_id", sa.String(length=100), nullable=True),
        sa.Column("private_key", sa.String(length=200), nullable=True),
        sa.Column("public_key", sa.String(length=200), nullable=True),
        sa.Column("environment", sa.String(length=20), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("api_base_url", sa.String(length=300), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("gateway_id"),
    )
    op.create_index("ix_payment_gateways_code", "payment_gateways", ["code"])

    op.create_table(
        "api_call_logs",
        sa.Column("log_id", sa.String(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=True),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("endpoint", sa.String(length=500), nullable=False),
        sa.Column("operation", sa.String(length=50), nullable=False),
        sa.Column("request_body", _json(), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("response_body", _json(), nullable=True),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("correlation_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("log_id"),
    )
    op.create_index("ix_api_call_logs_gateway_id", "api_call_logs", ["gateway_id"])
    op.create_index("ix_api_call_logs_operation", "api_call_logs", ["operation"])
    op.create_index("ix_api_call_logs_status", "api_call_logs", ["status"])
    op.create_index("ix_api_call_logs_correlation_id", "api_call_logs", ["correlation_id"])
    op.create_index("ix_api_call_logs_session_id", "api_call_logs", ["session_id"])

    op.create_table(
        "audit_entries",
        sa.Column("audit_id", sa.String(), nullable=False),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(length=100), nullable=True),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("changed_fields", _json(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("audit_id"),
    )
    op.create_index("ix_audit_entries_table_name", "audit_entries", ["table_name"])
    op.create_index("ix_audit_entries_record_id", "audit_entries", ["record_id"])

    op.create_table(
        "users",
        sa.Column("user_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=150), nullable=False),
        sa.Column("phone", sa.String(length=15), nullable=True),
        sa.Column("document_type", sa.String(length=10), nullable=False),
        sa.Column("document_number", sa.String(length=12), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_document_number", "users", ["document_number"], unique=True)

    op.create_table(
        "subscription_plans",
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=False),
        sa.Column("external_plan_code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("repeat_every", sa.Integer(), nullable=False),
        sa.Column("repeat_unit", sa.String(length=10), nullable=False),
        sa.Column("trial_days", sa.Integer(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("product_code", sa.String(length=50), nullable=False),
        sa.Column("fee_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("plan_id"),
    )
    op.create_index("ix_subscription_plans_gateway_id", "subscription_plans", ["gateway_id"])

    op.create_table(
        "payment_sessions",
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("document_number", sa.String(length=12), nullable=True),
        sa.Column("session_token", sa.String(length=64), nullable=False),
        sa.Column("device_session_id", sa.String(length=150), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("product_code", sa.String(length=100), nullable=True),
        sa.Column("attempted_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("payment_attempts", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("last_log_id", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index("ix_payment_sessions_gateway_id", "payment_sessions", ["gateway_id"])
    op.create_index("ix_payment_sessions_user_id", "payment_sessions", ["user_id"])
    op.create_index("ix_payment_sessions_session_token", "payment_sessions", ["session_token"], unique=True)
    op.create_index("ix_payment_sessions_state", "payment_sessions", ["state"])
    op.create_index("ix_payment_sessions_expires_at", "payment_sessions", ["expires_at"])

    op.create_table(
        "session_history_entries",
        sa.Column("entry_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("payload", _json(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["payment_sessions.session_id"]),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_session_history_entries_session_id", "session_history_entries", ["session_id"])

    op.create_table(
        "virtual_cash_registers",
        sa.Column("register_id", sa.String(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("gross_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_movement_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("register_id"),
        sa.UniqueConstraint("gateway_id", "business_date", name="uq_register_gateway_day"),
    )
    op.create_index("ix_virtual_cash_registers_gateway_id", "virtual_cash_registers", ["gateway_id"])
    op.create_index("ix_virtual_cash_registers_business_date", "virtual_cash_registers", ["business_date"])
    op.create_index("ix_virtual_cash_registers_state", "virtual_cash_registers", ["state"])

    op.create_table(
        "gateway_customers",
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=False),
        sa.Column("external_customer_id", sa.String(length=100), nullable=False),
        sa.Column("document_number", sa.String(length=12), nullable=True),
        sa.Column("email", sa.String(length=150), nullable=True),
        sa.Column("phone", sa.String(length=15), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("log_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        sa.PrimaryKeyConstraint("customer_id"),
    )
    op.create_index("ix_gateway_customers_user_id", "gateway_customers", ["user_id"])
    op.create_index("ix_gateway_customers_external_customer_id", "gateway_customers", ["external_customer_id"])
    op.create_index(
        "uq_gateway_customer_active",
        "gateway_customers",
        ["user_id", "gateway_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "gateway_cards",
        sa.Column("card_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("external_card_id", sa.String(length=100), nullable=False),
        sa.Column("brand", sa.String(length=30), nullable=True),
        sa.Column("last4", sa.String(length=4), nullable=True),
        sa.Column("expiration_month", sa.String(length=2), nullable=True),
        sa.Column("expiration_year", sa.String(length=4), nullable=True),
        sa.Column("holder_name", sa.String(length=100), nullable=True),
        sa.Column("bank_name", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("log_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["gateway_customers.customer_id"]),
        sa.PrimaryKeyConstraint("card_id"),
    )
    op.create_index("ix_gateway_cards_customer_id", "gateway_cards", ["customer_id"])

    op.create_table(
        "gateway_subscriptions",
        sa.Column("subscription_id", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("card_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("external_subscription_id", sa.String(length=100), nullable=False),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("external_status", sa.String(length=30), nullable=True),
        sa.Column("started_on", sa.String(length=30), nullable=True),
        sa.Column("next_charge_date", sa.String(length=30), nullable=True),
        sa.Column("period_end_date", sa.String(length=30), nullable=True),
        sa.Column("membership_id", sa.String(), nullable=True),
        sa.Column("log_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["gateway_customers.customer_id"]),
        sa.ForeignKeyConstraint(["card_id"], ["gateway_cards.card_id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plans.plan_id"]),
        sa.PrimaryKeyConstraint("subscription_id"),
    )
    op.create_index("ix_gateway_subscriptions_customer_id", "gateway_subscriptions", ["customer_id"])
    op.create_index("ix_gateway_subscriptions_user_id", "gateway_subscriptions", ["user_id"])
    op.create_index(
        "ix_gateway_subscriptions_external_subscription_id",
        "gateway_subscriptions",
        ["external_subscription_id"],
        unique=True,
    )
    op.create_index("ix_gateway_subscriptions_state", "gateway_subscriptions", ["state"])

    op.create_table(
        "gateway_transactions",
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("gateway_id", sa.Integer(), nullable=False),
        sa.Column("register_id", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("subscription_id", sa.String(), nullable=True),
        sa.Column("card_id", sa.String(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("document_number", sa.String(length=12), nullable=True),
        sa.Column("sale_id", sa.String(), nullable=True),
        sa.Column("membership_id", sa.String(), nullable=True),
        sa.Column("external_transaction_id", sa.String(length=100), nullable=True),
        sa.Column("order_reference", sa.String(length=50), nullable=True),
        sa.Column("transaction_type", sa.String(length=20), nullable=False),
        sa.Column("gross_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("response_payload", _json(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("log_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["register_id"], ["virtual_cash_registers.register_id"]),
        sa.ForeignKeyConstraint(["session_id"], ["payment_sessions.session_id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["gateway_subscriptions.subscription_id"]),
        sa.ForeignKeyConstraint(["card_id"], ["gateway_cards.card_id"]),
        sa.PrimaryKeyConstraint("transaction_id"),
        sa.CheckConstraint("abs(net_amount - (gross_amount - fee_amount - tax_amount)) < 0.005", name="ck_transaction_net"),
    )
    op.create_index("ix_gateway_transactions_gateway_id", "gateway_transactions", ["gateway_id"])
    op.create_index("ix_gateway_transactions_state", "gateway_transactions", ["state"])

    op.create_table(
        "sales",
        sa.Column("sale_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("payment_reference", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        sa.PrimaryKeyConstraint("sale_id"),
    )
    op.create_index("ix_sales_user_id", "sales", ["user_id"])

    op.create_table(
        "sale_lines",
        sa.Column("line_id", sa.String(), nullable=False),
        sa.Column("sale_id", sa.String(), nullable=False),
        sa.Column("product_code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.sale_id"]),
        sa.PrimaryKeyConstraint("line_id"),
    )
    op.create_index("ix_sale_lines_sale_id", "sale_lines", ["sale_id"])

    op.create_table(
        "memberships",
        sa.Column("membership_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(length=12), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("product_code", sa.String(length=50), nullable=False),
        sa.Column("sale_id", sa.String(), nullable=True),
        sa.Column("subscription_id", sa.String(), nullable=True),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plans.plan_id"]),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.sale_id"]),
        sa.PrimaryKeyConstraint("membership_id"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_document_number", "memberships", ["document_number"])
    op.create_index("ix_memberships_ends_on", "memberships", ["ends_on"])
    op.create_index("ix_memberships_state", "memberships", ["state"])


def downgrade() -> None:
    for table in (
        "memberships",
        "sale_lines",
        "sales",
        "gateway_transactions",
        "gateway_subscriptions",
        "gateway_cards",
        "gateway_customers",
        "virtual_cash_registers",
        "session_history_entries",
        "payment_sessions",
        "subscription_plans",
        "users",
        "audit_entries",
        "api_call_logs",
        "payment_gateways",
    ):
        op.drop_table(table)
