"""Atomic, auditable credit ledger.

``CreditService`` is the only code that mutates ``users.credits``. Every
mutation runs in one ``Database.session()`` unit of work together with the log
row that explains it, so the balance always equals the starting grant plus the
sum of the purchase, spend and adjustment logs.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update

from backend.app.core.config import settings
from backend.app.core.database import Database
from backend.app.core.errors import InsufficientCredits, InvalidArgument, NotFound
from backend.app.db.models import DbCreditAdjustment, DbCreditPurchase, DbCreditSpend, DbUser
from backend.app.services import pricing

logger = logging.getLogger(__name__)

MAX_FEATURE_LENGTH = 128
MAX_REASON_LENGTH = 255


@dataclass(frozen=True)
class CreditOperation:
    user_id: str
    amount: int
    feature_used: str
    metadata: dict[str, Any] | str | None = None


@dataclass(frozen=True)
class CreditBalance:
    credits: int
    low_credits: bool


@dataclass(frozen=True)
class PurchaseRecord:
    id: int
    user_id: str
    stripe_payment_intent_id: str
    credits_purchased: int
    amount_paid: int
    currency: str
    created_at: int


@dataclass(frozen=True)
class SpendRecord:
    id: int
    user_id: str
    feature_used: str
    credits_spent: int
    meta: dict[str, Any] | None
    created_at: int


@dataclass(frozen=True)
class AdjustmentRecord:
    id: int
    user_id: str
    amount: int
    reason: str
    created_at: int


@dataclass(frozen=True)
class CreditHistory:
    purchases: list[PurchaseRecord] = field(default_factory=list)
    spends: list[SpendRecord] = field(default_factory=list)
    adjustments: list[AdjustmentRecord] = field(default_factory=list)


class CreditService:
    """Service layer that owns all balance reads and mutations."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def has_enough_credits(self, user_id: str, required: int) -> bool:
        if _is_not_int(required) or required < 0:
            raise InvalidArgument("Invalid amount")
        with self.db.session() as session:
            credits = session.scalar(select(DbUser.credits).where(DbUser.id == user_id).limit(1))
        return credits is not None and int(credits) >= required

    def check_balance(self, user_id: str) -> CreditBalance:
        with self.db.session() as session:
            credits = session.scalar(select(DbUser.credits).where(DbUser.id == user_id).limit(1))
        if credits is None:
            raise NotFound("User not found")
        return CreditBalance(
            credits=int(credits),
            low_credits=int(credits) < settings.low_credit_threshold,
        )

    def deduct_credits(self, operation: CreditOperation) -> int:
        """Spend credits and log the spend, or change nothing at all.

        The decrement is a single conditional UPDATE, so two concurrent spends
        against the same balance can never both succeed when only one is
        affordable.
        """
        amount = operation.amount
        if _is_not_int(amount) or amount <= 0:
            raise InvalidArgument("Invalid amount")
        feature = _validate_text(operation.feature_used, MAX_FEATURE_LENGTH, "Invalid feature")
        meta = _coerce_meta(operation.metadata)

        now = int(time.time())
        with self.db.session() as session:
            result = session.execute(
                update(DbUser)
                .where(DbUser.id == operation.user_id, DbUser.credits >= amount)
                .values(credits=DbUser.credits - amount)
            )
            if int(result.rowcount or 0) != 1:
                available = session.scalar(
                    select(DbUser.credits).where(DbUser.id == operation.user_id).limit(1)
                )
                if available is None:
                    raise NotFound("User not found")
                raise InsufficientCredits(required=amount, available=int(available))

            session.add(
                DbCreditSpend(
                    user_id=operation.user_id,
                    feature_used=feature,
                    credits_spent=amount,
                    meta=meta,
                    created_at=now,
                )
            )
            new_balance = session.scalar(
                select(DbUser.credits).where(DbUser.id == operation.user_id).limit(1)
            )

        logger.info(
            "Credits deducted",
            extra={"data": {"user_id": operation.user_id, "feature": feature, "amount": amount, "balance": new_balance}},
        )
        return int(new_balance or 0)

    def add_credits(self, user_id: str, amount: int, reason: str) -> int:
        """Apply a signed manual adjustment (grant or claw-back) and log it."""
        if _is_not_int(amount) or amount == 0:
            raise InvalidArgument("Invalid amount")
        cleaned_reason = _validate_text(reason, MAX_REASON_LENGTH, "Invalid reason")

        now = int(time.time())
        with self.db.session() as session:
            new_balance = self._apply_delta(session, user_id, amount)
            session.add(
                DbCreditAdjustment(
                    user_id=user_id,
                    amount=amount,
                    reason=cleaned_reason,
                    created_at=now,
                )
            )

        logger.info(
            "Credits adjusted",
            extra={"data": {"user_id": user_id, "amount": amount, "reason": cleaned_reason, "balance": new_balance}},
        )
        return new_balance

    def calculate_credits_with_markup(self, base_cost: int | float | Decimal) -> int:
        return pricing.credits_with_markup(base_cost)

    def get_history(self, user_id: str, limit: int | None = None) -> CreditHistory:
        resolved_limit = settings.history_default_limit if limit is None else limit
        if _is_not_int(resolved_limit) or not 1 <= resolved_limit <= settings.history_max_limit:
            raise InvalidArgument("Invalid limit")

        with self.db.session() as session:
            purchases = session.scalars(
                select(DbCreditPurchase)
                .where(DbCreditPurchase.user_id == user_id)
                .order_by(DbCreditPurchase.created_at.desc(), DbCreditPurchase.id.desc())
                .limit(resolved_limit)
            ).all()
            spends = session.scalars(
                select(DbCreditSpend)
                .where(DbCreditSpend.user_id == user_id)
                .order_by(DbCreditSpend.created_at.desc(), DbCreditSpend.id.desc())
                .limit(resolved_limit)
            ).all()
            adjustments = session.scalars(
                select(DbCreditAdjustment)
                .where(DbCreditAdjustment.user_id == user_id)
                .order_by(DbCreditAdjustment.created_at.desc(), DbCreditAdjustment.id.desc())
                .limit(resolved_limit)
            ).all()

            return CreditHistory(
                purchases=[_purchase_from_db(row) for row in purchases],
                spends=[
                    SpendRecord(
                        id=row.id,
                        user_id=row.user_id,
                        feature_used=row.feature_used,
                        credits_spent=row.credits_spent,
                        meta=row.meta,
                        created_at=row.created_at,
                    )
                    for row in spends
                ],
                adjustments=[
                    AdjustmentRecord(
                        id=row.id,
                        user_id=row.user_id,
                        amount=row.amount,
                        reason=row.reason,
                        created_at=row.created_at,
                    )
                    for row in adjustments
                ],
            )

    # Webhook-driven writes

    def get_purchase(self, payment_intent_id: str) -> PurchaseRecord | None:
        with self.db.session() as session:
            row = session.scalar(
                select(DbCreditPurchase)
                .where(DbCreditPurchase.stripe_payment_intent_id == payment_intent_id)
                .limit(1)
            )
            return _purchase_from_db(row) if row else None

    def record_purchase(
        self,
        user_id: str,
        *,
        payment_intent_id: str,
        credits: int,
        amount_paid: int,
        currency: str,
    ) -> int | None:
        """Log a purchase and credit the balance exactly once per payment intent.

        Returns the new balance, or ``None`` when the payment intent was
        already applied (the unique constraint turned the insert into a no-op).
        """
        if _is_not_int(credits) or credits <= 0:
            raise InvalidArgument("Invalid amount")
        if not payment_intent_id:
            raise InvalidArgument("Invalid payment reference")

        now = int(time.time())
        with self.db.session() as session:
            insert_stmt = self.db.insert(DbCreditPurchase).values(
                user_id=user_id,
                stripe_payment_intent_id=payment_intent_id,
                credits_purchased=credits,
                amount_paid=int(amount_paid or 0),
                currency=(currency or "usd")[:3].lower(),
                created_at=now,
            ).on_conflict_do_nothing(index_elements=[DbCreditPurchase.stripe_payment_intent_id])

            # RETURNING tells us whether this delivery won the insert
            inserted = (
                session.execute(insert_stmt.returning(DbCreditPurchase.id)).scalar_one_or_none()
                is not None
            )
            if not inserted:
                return None

            return self._apply_delta(session, user_id, credits)

    def reverse_purchase(self, purchase: PurchaseRecord) -> int | None:
        """Claw back a refunded purchase. May leave the balance negative.

        Returns ``None`` when this refund was already applied.
        """
        now = int(time.time())
        with self.db.session() as session:
            insert_stmt = self.db.insert(DbCreditAdjustment).values(
                user_id=purchase.user_id,
                amount=-purchase.credits_purchased,
                reason=f"Refund for Stripe paymentIntent {purchase.stripe_payment_intent_id}"[:MAX_REASON_LENGTH],
                reference=f"refund:{purchase.stripe_payment_intent_id}",
                created_at=now,
            ).on_conflict_do_nothing(index_elements=[DbCreditAdjustment.reference])

            inserted = (
                session.execute(insert_stmt.returning(DbCreditAdjustment.id)).scalar_one_or_none()
                is not None
            )
            if not inserted:
                return None

            return self._apply_delta(session, purchase.user_id, -purchase.credits_purchased)

    def _apply_delta(self, session, user_id: str, delta: int) -> int:
        result = session.execute(
            update(DbUser)
            .where(DbUser.id == user_id)
            .values(credits=DbUser.credits + delta)
        )
        if int(result.rowcount or 0) != 1:
            raise NotFound("User not found")
        new_balance = session.scalar(select(DbUser.credits).where(DbUser.id == user_id).limit(1))
        return int(new_balance or 0)


def _purchase_from_db(row: DbCreditPurchase) -> PurchaseRecord:
    return PurchaseRecord(
        id=row.id,
        user_id=row.user_id,
        stripe_payment_intent_id=row.stripe_payment_intent_id,
        credits_purchased=row.credits_purchased,
        amount_paid=row.amount_paid,
        currency=row.currency,
        created_at=row.created_at,
    )


def _is_not_int(value: Any) -> bool:
    return isinstance(value, bool) or not isinstance(value, int)


def _validate_text(value: str, max_length: int, message: str) -> str:
    if not isinstance(value, str):
        raise InvalidArgument(message)
    cleaned = value.strip()
    if not cleaned or len(cleaned) > max_length:
        raise InvalidArgument(message)
    return cleaned


def _coerce_meta(metadata: dict[str, Any] | str | None) -> dict[str, Any] | None:
    if metadata is None:
        return None
    if isinstance(metadata, dict):
        return metadata
    if isinstance(metadata, str):
        parsed = Database.loads(metadata)
        if isinstance(parsed, dict) and (parsed or metadata.strip() in {"{}", ""}):
            return parsed or None
    raise InvalidArgument("Invalid metadata")
