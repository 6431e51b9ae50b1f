from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class BalanceResponse(BaseModel):
    credits: int
    low_credits: bool


class ConsumeRequest(BaseModel):
    amount: int
    feature: str = Field(default="api:consume", min_length=1, max_length=128)
    metadata: Optional[Dict[str, Any]] = None


class ConsumeResponse(BaseModel):
    credits: int
    low_credits: bool
    low_credit_message: Optional[str] = None


class PurchaseItem(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    stripe_payment_intent_id: str
    credits_purchased: int
    amount_paid: int
    currency: str
    created_at: int


class SpendItem(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    feature_used: str
    credits_spent: int
    meta: Optional[Dict[str, Any]] = None
    created_at: int


class AdjustmentItem(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    amount: int
    reason: str
    created_at: int


class HistoryResponse(BaseModel):
    model_config = {"from_attributes": True}

    purchases: List[PurchaseItem]
    spends: List[SpendItem]
    adjustments: List[AdjustmentItem]


class OperationCost(BaseModel):
    service: str
    operation: str
    base_cost: int
    credits: int


class PackageResponse(BaseModel):
    key: str
    price_id: str
    credits: int
    bonus: int
    total_credits: int
    amount_usd: int


class CheckoutRequest(BaseModel):
    price_id: str = Field(..., min_length=1, max_length=255)


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool
    event_type: str
    outcome: str
    detail: Optional[str] = None
