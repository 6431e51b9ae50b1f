from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from starlette.concurrency import run_in_threadpool

from ...core.auth import User
from ...schemas.credits import CheckoutRequest, CheckoutResponse, PackageResponse, WebhookAck
from ...services import packages
from ...services.payments import PaymentWebhookProcessor
from ..deps import get_current_user, get_webhook_processor

router = APIRouter()


@router.get("/packages", response_model=List[PackageResponse])
def list_credit_packages() -> Any:
    return [package.to_dict() for package in packages.list_packages()]


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_checkout(
    request: CheckoutRequest,
    current_user: User = Depends(get_current_user),
) -> Any:
    """Start a Stripe Checkout for one credit package."""
    return packages.create_checkout_session(
        user_id=current_user.id,
        email=current_user.email,
        price_id=request.price_id,
    )


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    processor: PaymentWebhookProcessor = Depends(get_webhook_processor),
) -> Any:
    """Stripe event sink. Signature is checked against the raw body."""
    payload = await request.body()
    result = await run_in_threadpool(processor.process, payload, stripe_signature)
    return WebhookAck(received=True, **result.to_dict())
