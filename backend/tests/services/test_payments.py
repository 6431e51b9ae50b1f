from __future__ import annotations

import json
import threading
import time

import pytest

from backend.app.core.auth import UserStore
from backend.app.core.config import settings
from backend.app.core.database import Database
from backend.app.core.errors import Internal, SignatureInvalid
from backend.app.services.credits import CreditOperation, CreditService
from backend.app.services.payments import PaymentWebhookProcessor


@pytest.fixture
def processor(credit_service, user_store) -> PaymentWebhookProcessor:
    return PaymentWebhookProcessor(credit_service, user_store)


def _checkout_event(
    *,
    email: str | None,
    payment_intent: str | None,
    price_id: str | None = "price_5050",
    amount_total: int = 500,
    mode: str = "payment",
    use_customer_details: bool = True,
) -> str:
    session: dict = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "amount_total": amount_total,
        "currency": "usd",
        "payment_intent": payment_intent,
        "metadata": {"price_id": price_id} if price_id else {},
    }
    if use_customer_details:
        session["customer_details"] = {"email": email}
    else:
        session["customer_email"] = email
    return json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": session}})


def _refund_event(payment_intent: str) -> str:
    return json.dumps(
        {
            "id": "evt_2",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": payment_intent}},
        }
    )


def test_checkout_completed_credits_package_total(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_pay_1")

    result = processor.process(payload.encode("utf-8"), sign_payload(payload))

    assert result.outcome == "credited"
    assert credit_service.check_balance(user.id).credits == 500 + 5050
    purchase = credit_service.get_purchase("pi_pay_1")
    assert purchase.credits_purchased == 5050
    assert purchase.amount_paid == 500
    assert purchase.currency == "usd"


def test_redelivered_event_credits_once(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_pay_twice")

    first = processor.process(payload, sign_payload(payload))
    second = processor.process(payload, sign_payload(payload))

    assert first.outcome == "credited"
    assert second.outcome == "skipped"
    assert credit_service.check_balance(user.id).credits == 5550
    assert len(credit_service.get_history(user.id).purchases) == 1


def test_package_is_resolved_from_amount_when_metadata_missing(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_amount", price_id=None, amount_total=2000)

    result = processor.process(payload, sign_payload(payload))

    assert result.outcome == "credited"
    assert credit_service.check_balance(user.id).credits == 500 + 23000


def test_amount_fallback_only_applies_to_payment_mode(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(
        email=user.email, payment_intent="pi_sub", price_id=None, amount_total=2000, mode="subscription"
    )

    result = processor.process(payload, sign_payload(payload))

    assert result.outcome == "skipped"
    assert credit_service.check_balance(user.id).credits == 500


def test_customer_email_is_used_when_details_are_absent(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(
        email=user.email, payment_intent="pi_email_fallback", price_id="credits_1000", use_customer_details=False
    )

    assert processor.process(payload, sign_payload(payload)).outcome == "credited"
    assert credit_service.check_balance(user.id).credits == 1500


@pytest.mark.parametrize(
    ("kwargs", "detail"),
    [
        ({"price_id": "price_unknown", "amount_total": 123}, "Unknown or missing credit package"),
        ({"payment_intent": None}, "Missing payment intent"),
        ({"email": None}, "Missing customer email"),
        ({"email": "nobody@example.com"}, "No user for customer email"),
    ],
)
def test_checkout_skip_paths_change_nothing(make_user, credit_service, processor, sign_payload, kwargs, detail) -> None:
    user = make_user()
    params = {"email": user.email, "payment_intent": "pi_skip"}
    params.update(kwargs)
    payload = _checkout_event(**params)

    result = processor.process(payload, sign_payload(payload))

    assert result.outcome == "skipped"
    assert result.detail == detail
    assert credit_service.check_balance(user.id).credits == 500
    assert credit_service.get_purchase("pi_skip") is None


def test_refund_after_spend_drives_balance_negative(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    purchase_payload = _checkout_event(email=user.email, payment_intent="pi_refund_1", price_id="price_1000", amount_total=100)
    processor.process(purchase_payload, sign_payload(purchase_payload))
    credit_service.deduct_credits(CreditOperation(user_id=user.id, amount=1500, feature_used="chat"))
    assert credit_service.check_balance(user.id).credits == 0

    refund_payload = _refund_event("pi_refund_1")
    result = processor.process(refund_payload, sign_payload(refund_payload))

    assert result.outcome == "refunded"
    assert credit_service.check_balance(user.id).credits == -1000
    adjustment = credit_service.get_history(user.id).adjustments[0]
    assert adjustment.amount == -1000
    assert adjustment.reason == "Refund for Stripe paymentIntent pi_refund_1"


def test_redelivered_refund_is_applied_once(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    purchase_payload = _checkout_event(email=user.email, payment_intent="pi_refund_twice")
    processor.process(purchase_payload, sign_payload(purchase_payload))

    refund_payload = _refund_event("pi_refund_twice")
    first = processor.process(refund_payload, sign_payload(refund_payload))
    second = processor.process(refund_payload, sign_payload(refund_payload))

    assert first.outcome == "refunded"
    assert second.outcome == "skipped"
    assert credit_service.check_balance(user.id).credits == 500


def test_refund_without_purchase_is_skipped(processor, sign_payload) -> None:
    payload = _refund_event("pi_never_bought")

    result = processor.process(payload, sign_payload(payload))

    assert result.outcome == "skipped"
    assert result.detail == "No matching purchase for refund"


def test_unhandled_event_types_are_acknowledged(processor, sign_payload) -> None:
    payload = json.dumps({"id": "evt_3", "type": "invoice.paid", "data": {"object": {}}})

    result = processor.process(payload, sign_payload(payload))

    assert result.outcome == "ignored"
    assert result.event_type == "invoice.paid"


def test_bad_signature_is_rejected_before_any_write(make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_forged")

    with pytest.raises(SignatureInvalid) as exc_info:
        processor.process(payload, sign_payload(payload, secret="whsec_wrong"))

    assert exc_info.value.status_code == 400
    assert credit_service.check_balance(user.id).credits == 500
    assert credit_service.get_purchase("pi_forged") is None


def test_tampered_payload_is_rejected(make_user, processor, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_tampered")
    header = sign_payload(payload)

    with pytest.raises(SignatureInvalid):
        processor.process(payload.replace("pi_tampered", "pi_other"), header)


def test_missing_or_stale_signature_is_rejected(processor, sign_payload) -> None:
    payload = _refund_event("pi_any")

    with pytest.raises(SignatureInvalid):
        processor.process(payload, None)
    with pytest.raises(SignatureInvalid):
        processor.process(payload, sign_payload(payload, timestamp=int(time.time()) - 3600))


def test_signed_but_unparseable_payload_is_rejected(processor, sign_payload) -> None:
    payload = "not-json"

    with pytest.raises(SignatureInvalid):
        processor.process(payload, sign_payload(payload))


def test_missing_webhook_secret_is_a_configuration_fault(monkeypatch, processor, sign_payload) -> None:
    monkeypatch.setattr(settings, "stripe_webhook_secret", "")
    payload = _refund_event("pi_any")

    with pytest.raises(Internal):
        processor.process(payload, sign_payload(payload))


def test_handler_faults_surface_as_internal(monkeypatch, make_user, credit_service, processor, sign_payload) -> None:
    user = make_user()

    def _explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(credit_service, "record_purchase", _explode)
    payload = _checkout_event(email=user.email, payment_intent="pi_fault")

    with pytest.raises(Internal) as exc_info:
        processor.process(payload, sign_payload(payload))

    assert exc_info.value.status_code == 500


def test_concurrent_deliveries_credit_once(make_user, credit_service, sign_payload) -> None:
    user = make_user()
    payload = _checkout_event(email=user.email, payment_intent="pi_pay_racing")
    header = sign_payload(payload)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _deliver() -> None:
        db = Database()
        worker = PaymentWebhookProcessor(CreditService(db), UserStore(db))
        barrier.wait()
        result = worker.process(payload, header)
        with lock:
            outcomes.append(result.outcome)

    threads = [threading.Thread(target=_deliver) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["credited", "skipped"]
    assert credit_service.check_balance(user.id).credits == 5550
    assert len(credit_service.get_history(user.id).purchases) == 1


def test_signed_non_object_payload_is_rejected(processor, sign_payload) -> None:
    payload = "[]"

    with pytest.raises(SignatureInvalid) as exc_info:
        processor.process(payload, sign_payload(payload))

    assert exc_info.value.detail == "Invalid webhook payload"
