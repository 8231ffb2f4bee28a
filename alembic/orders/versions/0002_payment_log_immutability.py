"""make payment_logs append-only

Orders, pending rows and reconciliation rows all change legitimately (claim,
status updates, version bumps). `payment_logs` is the only record of what the
browser and PayFast actually did, and manual recovery reads it to find paid
checkouts without an order, so it alone rejects UPDATE, DELETE and TRUNCATE.

Revision ID: 0002_payment_log_immutability
Revises: 0001_orders
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_payment_log_immutability"
down_revision = "0001_orders"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_payment_log_change()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_LEVEL = 'ROW' THEN
                RAISE EXCEPTION 'payment_logs is append-only: % of % event for %',
                    TG_OP, OLD.event_type, OLD.m_payment_id;
            END IF;
            RAISE EXCEPTION 'payment_logs is append-only: % is not allowed', TG_OP;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payment_logs_append_only
        BEFORE UPDATE OR DELETE ON payment_logs
        FOR EACH ROW
        EXECUTE FUNCTION reject_payment_log_change();
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payment_logs_no_truncate
        BEFORE TRUNCATE ON payment_logs
        FOR EACH STATEMENT
        EXECUTE FUNCTION reject_payment_log_change();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payment_logs_no_truncate ON payment_logs;")
    op.execute("DROP TRIGGER IF EXISTS trg_payment_logs_append_only ON payment_logs;")
    op.execute("DROP FUNCTION IF EXISTS reject_payment_log_change();")
