"""Usage recorder: prices assistant operations and charges them to the ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Generic, TypeVar

from backend.app.core.config import settings
from backend.app.core.errors import InsufficientCredits
from backend.app.services import pricing
from backend.app.services.credits import CreditOperation, CreditService

logger = logging.getLogger(__name__)

T = TypeVar("T")

FEATURE_PREFIX = "mcp"


@dataclass(frozen=True)
class OperationUsage:
    service: str
    operation: str
    base_cost_override: int | Decimal | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def feature_tag(self) -> str:
        return f"{FEATURE_PREFIX}:{self.service}:{self.operation}"


@dataclass(frozen=True)
class ChargedResult(Generic[T]):
    """Outcome of an operation that was run and then charged."""

    result: T
    credits_charged: int
    credits: int
    low_credits: bool


class UsageRecorder:
    def __init__(self, credit_service: CreditService) -> None:
        self.credit_service = credit_service

    def operation_cost(self, usage: OperationUsage) -> int:
        base_cost = pricing.base_cost_for(usage.service, usage.operation, usage.base_cost_override)
        return pricing.credits_with_markup(base_cost)

    def record_operation(self, user_id: str, usage: OperationUsage) -> int:
        """Charge one completed operation. Returns the new balance.

        ``InsufficientCredits`` propagates unchanged; nothing is written then.
        """
        base_cost = pricing.base_cost_for(usage.service, usage.operation, usage.base_cost_override)
        credits = pricing.credits_with_markup(base_cost)
        metadata = {
            "service": usage.service,
            "operation": usage.operation,
            "base_cost": _json_number(base_cost),
            **usage.metadata,
        }
        new_balance = self.credit_service.deduct_credits(
            CreditOperation(
                user_id=user_id,
                amount=credits,
                feature_used=usage.feature_tag,
                metadata=metadata,
            )
        )
        logger.info(
            "Operation charged",
            extra={"data": {"user_id": user_id, "feature": usage.feature_tag, "credits": credits}},
        )
        return new_balance

    def run_with_credits(
        self,
        user_id: str,
        usage: OperationUsage,
        execute: Callable[[], T],
    ) -> ChargedResult[T]:
        """Pre-check affordability, run ``execute`` and then charge for it.

        The operation runs before the charge. If the balance drops between the
        pre-check and the charge, ``InsufficientCredits`` is raised after the
        operation already happened and nothing compensates it.
        """
        credits = self.operation_cost(usage)
        if not self.credit_service.has_enough_credits(user_id, credits):
            # raises NotFound for unknown users
            balance = self.credit_service.check_balance(user_id).credits
            raise InsufficientCredits(required=credits, available=balance)

        result = execute()

        new_balance = self.record_operation(user_id, usage)
        return ChargedResult(
            result=result,
            credits_charged=credits,
            credits=new_balance,
            low_credits=new_balance < settings.low_credit_threshold,
        )


def _json_number(value: int | Decimal) -> int | float:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value
