"""SQLAlchemy ORM models for the application's relational database."""

from __future__ import annotations

from typing import Any

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base

JSON_VALUE = JSON().with_variant(JSONB, "postgresql")

STARTING_CREDITS = 500


class DbUser(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    provider: Mapped[str] = mapped_column(String(32))
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    oauth_sub: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Materialized running total; may go negative only through refunds.
    credits: Mapped[int] = mapped_column(
        Integer,
        default=STARTING_CREDITS,
        server_default=str(STARTING_CREDITS),
    )

    __table_args__ = (
        CheckConstraint("provider IN ('local','oauth')", name="chk_users_provider"),
    )


class DbSession(Base):
    __tablename__ = "sessions"

    token_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[int] = mapped_column(Integer)
    expires_at: Mapped[int] = mapped_column(Integer, index=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)


class DbCreditPurchase(Base):
    """One row per applied payment event; the unique payment intent makes redelivery a no-op."""

    __tablename__ = "credit_purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), unique=True)
    credits_purchased: Mapped[int] = mapped_column(Integer)
    amount_paid: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    created_at: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("credits_purchased > 0", name="chk_credit_purchases_credits_positive"),
        Index("idx_credit_purchases_user_created_at", "user_id", "created_at"),
    )


class DbCreditSpend(Base):
    __tablename__ = "credit_spends"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    feature_used: Mapped[str] = mapped_column(String(128))
    credits_spent: Mapped[int] = mapped_column(Integer)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON_VALUE, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("credits_spent > 0", name="chk_credit_spends_credits_positive"),
        Index("idx_credit_spends_user_created_at", "user_id", "created_at"),
    )


class DbCreditAdjustment(Base):
    __tablename__ = "credit_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(255))
    reference: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("amount != 0", name="chk_credit_adjustments_amount_nonzero"),
        Index("idx_credit_adjustments_user_created_at", "user_id", "created_at"),
    )
