"""Model pricing for cost estimation."""

from helpdesk_ai.models.pricing import (
    PRICING,
    ModelPricing,
    estimate_cost,
    get_all_known_models,
    has_pricing,
)

__all__ = [
    "PRICING",
    "ModelPricing",
    "estimate_cost",
    "get_all_known_models",
    "has_pricing",
]
