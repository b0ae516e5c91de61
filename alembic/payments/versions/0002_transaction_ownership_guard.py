"""guard transaction ownership and creation time

Revision ID: 0002_transaction_ownership_guard
Revises: 0001_payments
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_transaction_ownership_guard"
down_revision = "0001_payments"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_transaction_reassignment()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'transactions are never deleted';
            END IF;
            IF NEW.tenant_id <> OLD.tenant_id OR NEW.created_at <> OLD.created_at THEN
                RAISE EXCEPTION 'transaction % cannot change tenant_id or created_at', OLD.transaction_id;
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_transactions_ownership
        BEFORE UPDATE OR DELETE ON transactions
        FOR EACH ROW
        EXECUTE FUNCTION prevent_transaction_reassignment();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_ownership ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS prevent_transaction_reassignment();")
