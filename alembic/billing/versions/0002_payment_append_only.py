"""reject UPDATE/DELETE on payment rows

Revision ID: 0002_payment_append_only
Revises: 0001_billing
Create Date: 2026-10-13
"""

from alembic import op


revision = "0002_payment_append_only"
down_revision = "0001_billing"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_payment_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'payment ledger is append-only; % is not allowed', TG_OP;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payment_append_only
        BEFORE UPDATE OR DELETE ON payment
        FOR EACH ROW
        EXECUTE FUNCTION reject_payment_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payment_append_only ON payment;")
    op.execute("DROP FUNCTION IF EXISTS reject_payment_mutation();")
