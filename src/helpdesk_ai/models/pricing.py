"""Model pricing data and cost estimation.

Provider APIs do NOT return pricing information, so we maintain a manual
pricing table here. This should be updated when pricing changes.

Models missing from the table cost exactly zero: usage accounting is an
estimate, and an unknown model must never break a request.
"""

from dataclasses import dataclass

from helpdesk_ai.logging import get_logger

log = get_logger("helpdesk_ai.models.pricing")


@dataclass(frozen=True)
class ModelPricing:
    """Price per 1 million tokens for a model."""

    input: float
    output: float


# Pricing table - costs per 1 million tokens (USD)
PRICING: dict[str, ModelPricing] = {
    # Anthropic
    "claude-3-5-haiku-20241022": ModelPricing(input=1.00, output=5.00),
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.00, output=15.00),
    "claude-3-opus-20240229": ModelPricing(input=15.00, output=75.00),
    # OpenAI
    "gpt-4o-mini": ModelPricing(input=0.15, output=0.60),
    "gpt-4o": ModelPricing(input=5.00, output=15.00),
    "gpt-4-turbo": ModelPricing(input=10.00, output=30.00),
    # OpenRouter free models
    "meta-llama/llama-3.1-8b-instruct:free": ModelPricing(input=0.0, output=0.0),
    "meta-llama/llama-3.2-3b-instruct:free": ModelPricing(input=0.0, output=0.0),
    "mistralai/mistral-7b-instruct:free": ModelPricing(input=0.0, output=0.0),
    "google/gemma-2-9b-it:free": ModelPricing(input=0.0, output=0.0),
    "qwen/qwen-2-7b-instruct:free": ModelPricing(input=0.0, output=0.0),
    # OpenRouter cheap models
    "meta-llama/llama-3.1-70b-instruct": ModelPricing(input=0.52, output=0.75),
    "mistralai/mistral-large": ModelPricing(input=2.00, output=6.00),
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate the USD cost of a call.

    Args:
        model: The model identifier.
        input_tokens: Input tokens reported by the provider.
        output_tokens: Output tokens reported by the provider.

    Returns:
        ``input_tokens/1e6 * input_price + output_tokens/1e6 * output_price``,
        or ``0.0`` when the model has no pricing entry.
    """
    pricing = PRICING.get(model)
    if pricing is None:
        log.debug("unknown_pricing", model=model)
        return 0.0

    input_cost = (input_tokens / 1_000_000) * pricing.input
    output_cost = (output_tokens / 1_000_000) * pricing.output
    return input_cost + output_cost


def has_pricing(model: str) -> bool:
    """Check if we have pricing data for a model."""
    return model in PRICING


def get_all_known_models() -> list[str]:
    """Get a list of all models with known pricing."""
    return list(PRICING.keys())
