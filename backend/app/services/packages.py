"""Purchasable credit packages and Stripe Checkout session creation."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import stripe

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import Internal, InvalidArgument, Unavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditPackage:
    key: str
    price_id: str
    credits: int
    bonus: int
    amount_usd: int

    @property
    def total_credits(self) -> int:
        return self.credits + self.bonus

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "total_credits": self.total_credits}


# (key, base credits, bonus credits, price in whole dollars)
_PACKAGE_TABLE: tuple[tuple[str, int, int, int], ...] = (
    ("credits_1000", 1000, 0, 1),
    ("credits_5050", 5000, 50, 5),
    ("credits_11000", 10000, 1000, 10),
    ("credits_23000", 20000, 3000, 20),
    ("credits_62500", 50000, 12500, 50),
    ("credits_140000", 100000, 40000, 100),
)


def list_packages(config: Settings | None = None) -> list[CreditPackage]:
    cfg = config or default_settings
    price_ids = cfg.stripe_price_ids
    return [
        CreditPackage(
            key=key,
            price_id=price_ids.get(key, ""),
            credits=credits,
            bonus=bonus,
            amount_usd=amount,
        )
        for key, credits, bonus, amount in _PACKAGE_TABLE
    ]


def find_package(price_id: str | None, config: Settings | None = None) -> CreditPackage | None:
    """Match a configured price id, or a package key, to its package."""
    if not price_id:
        return None
    for package in list_packages(config):
        if price_id in (package.price_id, package.key):
            return package
    return None


def find_package_by_amount(amount_total: Any, config: Settings | None = None) -> CreditPackage | None:
    """Match a session total in cents against package dollar prices."""
    if amount_total is None or isinstance(amount_total, bool):
        return None
    try:
        dollars = Decimal(str(amount_total)) / 100
    except (InvalidOperation, ValueError):
        return None
    for package in list_packages(config):
        if dollars == package.amount_usd:
            return package
    return None


def create_checkout_session(
    *,
    user_id: str,
    email: str | None,
    price_id: str,
    config: Settings | None = None,
) -> dict[str, str]:
    """Create a one-off payment Checkout Session for a credit package."""
    cfg = config or default_settings
    if not cfg.stripe_secret_key:
        raise Unavailable("Payments are not configured")

    package = find_package(price_id, cfg)
    if package is None or not package.price_id:
        raise InvalidArgument("Unknown price id")

    stripe.api_key = cfg.stripe_secret_key

    params: dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [{"price": package.price_id, "quantity": 1}],
        "success_url": cfg.checkout_success_url,
        "cancel_url": cfg.checkout_cancel_url,
        "metadata": {"price_id": package.price_id, "package": package.key},
    }
    if email:
        params["customer_email"] = email
    if user_id:
        params["client_reference_id"] = user_id

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as exc:
        logger.error(
            "Checkout session creation failed",
            extra={"data": {"user_id": user_id, "package": package.key, "error": str(exc)}},
        )
        raise Internal("Failed to create checkout session") from exc

    logger.info(
        "Checkout session created",
        extra={"data": {"user_id": user_id, "package": package.key, "session_id": session.id}},
    )
    return {"session_id": session.id, "url": session.url}
