"""Initial schema: users, sessions and the credit ledger.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_value = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("oauth_sub", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.String(length=64), nullable=True),
        # No non-negative check: refunds of spent purchases leave a debt.
        sa.Column("credits", sa.Integer(), nullable=False, server_default="500"),
        sa.CheckConstraint("provider IN ('local','oauth')", name="chk_users_provider"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_oauth_sub", "users", ["oauth_sub"])

    op.create_table(
        "sessions",
        sa.Column("token_hash", sa.String(length=128), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.Integer(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("credits_purchased", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("credits_purchased > 0", name="chk_credit_purchases_credits_positive"),
    )
    op.create_index("ix_credit_purchases_user_id", "credit_purchases", ["user_id"])
    op.create_index(
        "idx_credit_purchases_user_created_at",
        "credit_purchases",
        ["user_id", "created_at"],
    )

    op.create_table(
        "credit_spends",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("feature_used", sa.String(length=128), nullable=False),
        sa.Column("credits_spent", sa.Integer(), nullable=False),
        sa.Column("meta", json_value, nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("credits_spent > 0", name="chk_credit_spends_credits_positive"),
    )
    op.create_index("ix_credit_spends_user_id", "credit_spends", ["user_id"])
    op.create_index(
        "idx_credit_spends_user_created_at",
        "credit_spends",
        ["user_id", "created_at"],
    )

    op.create_table(
        "credit_adjustments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("reference", sa.String(length=255), nullable=True, unique=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount != 0", name="chk_credit_adjustments_amount_nonzero"),
    )
    op.create_index("ix_credit_adjustments_user_id", "credit_adjustments", ["user_id"])
    op.create_index(
        "idx_credit_adjustments_user_created_at",
        "credit_adjustments",
        ["user_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_credit_adjustments_user_created_at", table_name="credit_adjustments")
    op.drop_index("ix_credit_adjustments_user_id", table_name="credit_adjustments")
    op.drop_table("credit_adjustments")

    op.drop_index("idx_credit_spends_user_created_at", table_name="credit_spends")
    op.drop_index("ix_credit_spends_user_id", table_name="credit_spends")
    op.drop_table("credit_spends")

    op.drop_index("idx_credit_purchases_user_created_at", table_name="credit_purchases")
    op.drop_index("ix_credit_purchases_user_id", table_name="credit_purchases")
    op.drop_table("credit_purchases")

    op.drop_index("ix_sessions_expires_at", table_name="sessions")
    op.drop_index("ix_sessions_user_id", table_name="sessions")
    op.drop_table("sessions")

    op.drop_index("ix_users_oauth_sub", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
