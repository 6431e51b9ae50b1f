from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from ...core.auth import User
from ...core.config import settings
from ...schemas.credits import (
    BalanceResponse,
    ConsumeRequest,
    ConsumeResponse,
    HistoryResponse,
    OperationCost,
)
from ...services.credits import CreditOperation, CreditService
from ...services.pricing import OPERATION_COSTS
from ...services.usage import OperationUsage, UsageRecorder
from ..deps import get_credit_service, get_current_user, get_usage_recorder

router = APIRouter()

LOW_CREDIT_MESSAGE = "Your credit balance is running low. Please purchase more credits soon."


@router.get("", response_model=BalanceResponse)
def read_balance(
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    """Live balance for the signed-in user."""
    return credit_service.check_balance(current_user.id)


@router.get("/history", response_model=HistoryResponse)
def read_history(
    limit: Optional[int] = Query(default=None),
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    return credit_service.get_history(current_user.id, limit=limit)


@router.post("/consume", response_model=ConsumeResponse)
def consume_credits(
    request: ConsumeRequest,
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    """Spend credits directly. Answers 402 when the balance is too low."""
    new_balance = credit_service.deduct_credits(
        CreditOperation(
            user_id=current_user.id,
            amount=request.amount,
            feature_used=request.feature,
            metadata=request.metadata,
        )
    )
    low_credits = new_balance < settings.low_credit_threshold
    return ConsumeResponse(
        credits=new_balance,
        low_credits=low_credits,
        low_credit_message=LOW_CREDIT_MESSAGE if low_credits else None,
    )


@router.get("/costs", response_model=List[OperationCost])
def list_operation_costs(
    current_user: User = Depends(get_current_user),
    usage_recorder: UsageRecorder = Depends(get_usage_recorder),
) -> Any:
    """Price list of assistant operations, markup included."""
    costs = []
    for service, operations in OPERATION_COSTS.items():
        for operation, base_cost in operations.items():
            usage = OperationUsage(service=service, operation=operation)
            costs.append(
                OperationCost(
                    service=service,
                    operation=operation,
                    base_cost=base_cost,
                    credits=usage_recorder.operation_cost(usage),
                )
            )
    return costs
