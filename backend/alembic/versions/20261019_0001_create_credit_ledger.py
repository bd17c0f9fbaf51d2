"""Create credit ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create credit_accounts and the append-only credit_transactions log."""
    op.execute("CREATE TYPE transactiontype AS ENUM ('debit', 'refund', 'grant', 'purchase')")
    op.execute("CREATE TYPE feature AS ENUM ('title_optimization', 'image_generation')")

    op.create_table(
        "credit_accounts",
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits >= 0", name="ck_credit_accounts_credits_non_negative"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column(
            "type",
            postgresql.ENUM("debit", "refund", "grant", "purchase", name="transactiontype", create_type=False),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column(
            "feature",
            postgresql.ENUM("title_optimization", "image_generation", name="feature", create_type=False),
            nullable=True,
        ),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("refund_of_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["credit_accounts.user_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["refund_of_id"], ["credit_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "type", "request_id", name="uq_credit_transactions_user_type_request"),
        sa.UniqueConstraint("refund_of_id"),
    )

    # Create indexes
    op.create_index(op.f("ix_credit_transactions_user_id"), "credit_transactions", ["user_id"], unique=False)
    op.create_index(op.f("ix_credit_transactions_type"), "credit_transactions", ["type"], unique=False)
    op.create_index(op.f("ix_credit_transactions_feature"), "credit_transactions", ["feature"], unique=False)
    op.create_index(op.f("ix_credit_transactions_created_at"), "credit_transactions", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop the credit ledger tables."""
    op.drop_index(op.f("ix_credit_transactions_created_at"), table_name="credit_transactions")
    op.drop_index(op.f("ix_credit_transactions_feature"), table_name="credit_transactions")
    op.drop_index(op.f("ix_credit_transactions_type"), table_name="credit_transactions")
    op.drop_index(op.f("ix_credit_transactions_user_id"), table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_accounts")

    # Drop enums
    op.execute("DROP TYPE feature")
    op.execute("DROP TYPE transactiontype")
