"""initial core schema (servers, wallets, deposits)

Revision ID: 0001_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_core"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(18, 8)


def upgrade() -> None:
    op.create_table(
        "servers",
        sa.Column("server_id", sa.String(), nullable=False),
        sa.Column("provider_instance_id", sa.BigInteger(), nullable=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("image", sa.String(), nullable=False),
        sa.Column("region", sa.String(), nullable=False),
        sa.Column("plan_type", sa.String(), nullable=False),
        sa.Column("cpu_cores", sa.Integer(), nullable=False),
        sa.Column("memory_mb", sa.Integer(), nullable=False),
        sa.Column("disk_gb", sa.Integer(), nullable=False),
        sa.Column("hourly_cost", sa.Numeric(12, 5), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("server_id"),
        sa.UniqueConstraint("provider_instance_id", name="uq_servers_provider_instance_id"),
    )
    op.create_index("ix_servers_owner_id", "servers", ["owner_id"])

    op.create_table(
        "wallets",
        sa.Column("wallet_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("currency", sa.String(length=16), nullable=False),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("wallet_id"),
        sa.UniqueConstraint("owner_id", "currency", name="uq_wallet_owner_currency"),
        sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )
    op.create_index("ix_wallets_owner_id", "wallets", ["owner_id"])

    op.create_table(
        "wallet_transactions",
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("wallet_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("entry_id"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.wallet_id"]),
        sa.CheckConstraint("kind IN ('deposit', 'charge', 'refund')", name="ck_wallet_transaction_kind"),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_owner_id", "wallet_transactions", ["owner_id"])
    op.create_index("ix_wallet_transactions_reference_id", "wallet_transactions", ["reference_id"])

    op.create_table(
        "payment_transactions",
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("wallet_id", sa.String(), nullable=False),
        sa.Column("base_amount", MONEY, nullable=False),
        sa.Column("fee_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("price_currency", sa.String(length=16), nullable=False),
        sa.Column("pay_currency", sa.String(length=32), nullable=False),
        sa.Column("pay_address", sa.String(), nullable=True),
        sa.Column("pay_amount", MONEY, nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("confirmations_required", sa.Integer(), nullable=True),
        sa.Column("external_payment_id", sa.String(), nullable=True),
        sa.Column("credited_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_callback", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("transaction_id"),
        sa.ForeignKeyConstraint(["wallet_id"], ["wallets.wallet_id"]),
        sa.UniqueConstraint("order_id", name="uq_payment_transactions_order_id"),
        sa.CheckConstraint("credited_amount <= base_amount", name="ck_credit_within_base"),
    )
    op.create_index("ix_payment_transactions_owner_id", "payment_transactions", ["owner_id"])
    op.create_index("ix_payment_transactions_wallet_id", "payment_transactions", ["wallet_id"])
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])
    op.create_index("ix_payment_transactions_external_payment_id", "payment_transactions", ["external_payment_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_transactions_external_payment_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_status", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_wallet_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_owner_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    op.drop_index("ix_wallet_transactions_reference_id", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_owner_id", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_wallet_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_index("ix_wallets_owner_id", table_name="wallets")
    op.drop_table("wallets")
    op.drop_index("ix_servers_owner_id", table_name="servers")
    op.drop_table("servers")
