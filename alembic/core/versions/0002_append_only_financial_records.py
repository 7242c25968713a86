"""append-only deposits and wallet journal

Revision ID: 0002_append_only
Revises: 0001_core
Create Date: 2026-10-18
"""

from alembic import op


revision = "0002_append_only"
down_revision = "0001_core"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_financial_record_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only; % is not allowed', TG_TABLE_NAME, TG_OP;
        END;
        $$;
        """
    )
    # Deposits change status through callbacks but are never removed.
    op.execute(
        """
        CREATE TRIGGER trg_payment_transactions_no_delete
        BEFORE DELETE ON payment_transactions
        FOR EACH ROW
        EXECUTE FUNCTION prevent_financial_record_mutation();
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_wallet_transactions_immutable
        BEFORE UPDATE OR DELETE ON wallet_transactions
        FOR EACH ROW
        EXECUTE FUNCTION prevent_financial_record_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_wallet_transactions_immutable ON wallet_transactions;")
    op.execute("DROP TRIGGER IF EXISTS trg_payment_transactions_no_delete ON payment_transactions;")
    op.execute("DROP FUNCTION IF EXISTS prevent_financial_record_mutation();")
