"""Operation cost table and the markup applied before any deduction."""

from __future__ import annotations

from decimal import ROUND_CEILING, Decimal, InvalidOperation

from backend.app.core.config import settings
from backend.app.core.errors import InvalidArgument

MIN_BASE_COST = 1

# Base costs (before markup) per assistant service and operation.
OPERATION_COSTS: dict[str, dict[str, int]] = {
    "github": {
        "create_repo": 5,
        "fork_repo": 3,
        "list_repos": 1,
    },
    "stripe": {
        "create_customer": 2,
        "create_payment": 3,
    },
    "puppeteer": {
        "navigate": 2,
        "screenshot": 5,
    },
    "sequential_thinking": {
        "base_cost": 8,
    },
    "image_generation": {
        "base_cost": 30,
        "high_resolution": 50,
    },
    "mechanic_assistant": {
        "base_cost": 25,
        "image_analysis": 15,
        "vector_store_creation": 50,
        "vector_store_search": 10,
    },
    "goodwin": {
        "base_cost": 5,
        "orchestration": 2,
    },
}


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def base_cost_for(service: str, operation: str, override: int | Decimal | None = None) -> int | Decimal:
    """Resolve the base cost of an operation.

    A positive ``override`` wins over the table; pairs missing from the table
    cost ``MIN_BASE_COST`` so unanticipated operations are never hard-blocked.
    """
    if override:
        if override < 0:
            raise InvalidArgument("Invalid base cost")
        return override
    service_costs = OPERATION_COSTS.get(_normalize(service), {})
    return service_costs.get(_normalize(operation), MIN_BASE_COST)


def credits_with_markup(base_cost: int | float | Decimal, markup: Decimal | None = None) -> int:
    """Return ``ceil(base_cost * markup)``, computed exactly in decimal."""
    try:
        base = Decimal(str(base_cost))
    except (InvalidOperation, ValueError):
        raise InvalidArgument("Invalid base cost")
    if not base.is_finite() or base < 0:
        raise InvalidArgument("Invalid base cost")
    factor = markup if markup is not None else settings.credit_markup
    return int((base * factor).to_integral_value(rounding=ROUND_CEILING))
