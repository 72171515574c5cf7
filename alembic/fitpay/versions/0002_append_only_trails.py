"""enforce append-only session history and audit trail

Revision ID: 0002_append_only_trails
Revises: 0001_fitpay
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_append_only_trails"
down_revision = "0001_fitpay"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_trail_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only; % is not allowed', TG_TABLE_NAME, TG_OP;
        END;
        $$;
        """
    )
    for table in ("session_history_entries", "audit_entries"):
        op.execute(
            f"""
            CREATE TRIGGER trg_{table}_immutable
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION prevent_trail_mutation();
            """
        )

    # Call log rows change once, from PENDING to their outcome.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_finished_call_log_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' OR OLD.status <> 'PENDING' THEN
                RAISE EXCEPTION 'api_call_logs row % is final; % is not allowed', OLD.log_id, TG_OP;
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_api_call_logs_final
        BEFORE UPDATE OR DELETE ON api_call_logs
        FOR EACH ROW
        EXECUTE FUNCTION prevent_finished_call_log_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_api_call_logs_final ON api_call_logs;")
    op.execute("DROP FUNCTION IF EXISTS prevent_finished_call_log_mutation();")
    for table in ("session_history_entries", "audit_entries"):
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_immutable ON {table};")
    op.execute("DROP FUNCTION IF EXISTS prevent_trail_mutation();")
