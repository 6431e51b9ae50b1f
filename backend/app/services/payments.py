"""Stripe webhook processing: verified, idempotent purchase credits and refund claw-backs."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import stripe

from backend.app.core.auth import UserStore
from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import Internal, SignatureInvalid
from backend.app.services.credits import CreditService
from backend.app.services.packages import find_package, find_package_by_amount

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHARGE_REFUNDED = "charge.refunded"

OUTCOME_CREDITED = "credited"
OUTCOME_REFUNDED = "refunded"
OUTCOME_SKIPPED = "skipped"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    event_type: str
    outcome: str
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PaymentWebhookProcessor:
    """Turns verified Stripe events into ledger writes.

    Delivery is at-least-once, so every branch is safe to replay: purchases are
    keyed by payment intent and refunds by a ``refund:<payment_intent>``
    reference, both enforced by unique constraints.
    """

    def __init__(
        self,
        credit_service: CreditService,
        user_store: UserStore,
        config: Settings | None = None,
    ) -> None:
        self.credit_service = credit_service
        self.user_store = user_store
        self.config = config or default_settings

    def process(self, payload: bytes | str, signature: str | None) -> WebhookResult:
        event = self.verify(payload, signature)
        event_type = str(event.get("type") or "")
        data_object = (event.get("data") or {}).get("object") or {}

        try:
            if event_type == CHECKOUT_COMPLETED:
                return self._handle_checkout_completed(event_type, data_object)
            if event_type == CHARGE_REFUNDED:
                return self._handle_charge_refunded(event_type, data_object)
        except Exception as exc:
            logger.exception("Webhook handler failed", extra={"data": {"event_type": event_type}})
            raise Internal("Webhook processing failed") from exc

        logger.info("Unhandled webhook event", extra={"data": {"event_type": event_type}})
        return WebhookResult(event_type=event_type, outcome=OUTCOME_IGNORED)

    def verify(self, payload: bytes | str, signature: str | None) -> dict[str, Any]:
        """Authenticate the delivery and parse it. Nothing is read before this passes."""
        secret = self.config.stripe_webhook_secret
        if not secret:
            logger.error("Stripe webhook secret is not configured")
            raise Internal("Webhook secret is not configured")
        if not signature:
            raise SignatureInvalid("Missing webhook signature")

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                secret,
                tolerance=self.config.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed", extra={"data": {"error": str(exc)}})
            raise SignatureInvalid() from exc
        except (ValueError, AttributeError, TypeError) as exc:
            # undecodable bytes, bad JSON, or a body that is not an event object
            raise SignatureInvalid("Invalid webhook payload") from exc
        return event.to_dict()

    def _handle_checkout_completed(self, event_type: str, session: dict[str, Any]) -> WebhookResult:
        metadata = session.get("metadata") or {}
        package = find_package(metadata.get("price_id"), self.config)
        if package is None and session.get("mode") == "payment":
            package = find_package_by_amount(session.get("amount_total"), self.config)
        if package is None:
            return self._skip(event_type, "Unknown or missing credit package", session_id=session.get("id"))

        payment_intent_id = _object_id(session.get("payment_intent"))
        if not payment_intent_id:
            return self._skip(event_type, "Missing payment intent", session_id=session.get("id"))

        details = session.get("customer_details") or {}
        email = details.get("email") or session.get("customer_email")
        if not email:
            return self._skip(event_type, "Missing customer email", payment_intent=payment_intent_id)

        if self.credit_service.get_purchase(payment_intent_id) is not None:
            return self._skip(event_type, "Payment intent already processed", payment_intent=payment_intent_id)

        user = self.user_store.get_user_by_email(email)
        if user is None:
            return self._skip(event_type, "No user for customer email", payment_intent=payment_intent_id)

        new_balance = self.credit_service.record_purchase(
            user.id,
            payment_intent_id=payment_intent_id,
            credits=package.total_credits,
            amount_paid=_as_int(session.get("amount_total")),
            currency=session.get("currency") or "usd",
        )
        if new_balance is None:
            # A concurrent delivery of the same event won the insert.
            return self._skip(event_type, "Payment intent already processed", payment_intent=payment_intent_id)

        logger.info(
            "Credits purchased",
            extra={
                "data": {
                    "user_id": user.id,
                    "payment_intent": payment_intent_id,
                    "credits": package.total_credits,
                    "balance": new_balance,
                }
            },
        )
        return WebhookResult(
            event_type=event_type,
            outcome=OUTCOME_CREDITED,
            detail=f"Awarded {package.total_credits} credits for paymentIntent {payment_intent_id}",
        )

    def _handle_charge_refunded(self, event_type: str, charge: dict[str, Any]) -> WebhookResult:
        payment_intent_id = _object_id(charge.get("payment_intent"))
        if not payment_intent_id:
            return self._skip(event_type, "Missing payment intent", charge_id=charge.get("id"))

        purchase = self.credit_service.get_purchase(payment_intent_id)
        if purchase is None:
            return self._skip(event_type, "No matching purchase for refund", payment_intent=payment_intent_id)

        if self.user_store.get_user(purchase.user_id) is None:
            return self._skip(event_type, "User not found for refund", payment_intent=payment_intent_id)

        new_balance = self.credit_service.reverse_purchase(purchase)
        if new_balance is None:
            return self._skip(event_type, "Refund already processed", payment_intent=payment_intent_id)

        logger.info(
            "Purchase refunded",
            extra={
                "data": {
                    "user_id": purchase.user_id,
                    "payment_intent": payment_intent_id,
                    "credits": -purchase.credits_purchased,
                    "balance": new_balance,
                }
            },
        )
        return WebhookResult(
            event_type=event_type,
            outcome=OUTCOME_REFUNDED,
            detail=f"Refunded {purchase.credits_purchased} credits for paymentIntent {payment_intent_id}",
        )

    def _skip(self, event_type: str, reason: str, **context: Any) -> WebhookResult:
        logger.warning(reason, extra={"data": {"event_type": event_type, **context}})
        return WebhookResult(event_type=event_type, outcome=OUTCOME_SKIPPED, detail=reason)


def _object_id(value: Any) -> str | None:
    """Stripe fields may be a bare id or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        inner = value.get("id")
        return inner if isinstance(inner, str) and inner else None
    return None


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0
