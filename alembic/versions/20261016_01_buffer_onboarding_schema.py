"""Buffer onboarding profiles and transactions

Revision ID: 20261016_01
Revises:
Create Date: 2026-10-16 09:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

# revision identifiers, used by Alembic.
revision = "20261016_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("stellar_address", sa.String(length=56), nullable=True),
        sa.Column("crossmint_wallet_id", sa.String(length=255), nullable=True),
        sa.Column("defindex_vault_address", sa.String(length=56), nullable=True),
        sa.Column("buffer_contract_address", sa.String(length=56), nullable=True),
        sa.Column(
            "buffer_onboarding_status",
            sa.String(length=32),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("buffer_available_shares", sa.String(length=40), nullable=True),
        sa.Column("buffer_protected_shares", sa.String(length=40), nullable=True),
        sa.Column("buffer_total_deposited", sa.String(length=40), nullable=True),
        sa.Column("buffer_last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "idx_profiles_onboarding_status", "profiles", ["buffer_onboarding_status"], unique=False
    )

    op.create_table(
        "buffer_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "profile_id",
            sa.String(length=36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("amount_stroops", sa.String(length=40), nullable=True),
        sa.Column("shares_delta", sa.String(length=40), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        sa.Column("stellar_tx_hash", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "transaction_type IN ('DEPOSIT', 'WITHDRAW', 'LOCK', 'UNLOCK')",
            name="ck_buffer_tx_type",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'FAILED')",
            name="ck_buffer_tx_status",
        ),
    )
    op.create_index(
        "ix_buffer_transactions_profile_id", "buffer_transactions", ["profile_id"], unique=False
    )
    op.create_index(
        "idx_buffer_tx_profile_created",
        "buffer_transactions",
        ["profile_id", "created_at"],
        unique=False,
    )
    op.create_index("idx_buffer_tx_status", "buffer_transactions", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_buffer_tx_status", table_name="buffer_transactions")
    op.drop_index("idx_buffer_tx_profile_created", table_name="buffer_transactions")
    op.drop_index("ix_buffer_transactions_profile_id", table_name="buffer_transactions")
    op.drop_table("buffer_transactions")
    op.drop_index("idx_profiles_onboarding_status", table_name="profiles")
    op.drop_table("profiles")
