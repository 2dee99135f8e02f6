"""Provider catalogue and fallback-chain construction.

Defines the supported providers and task types, each provider's endpoint and
default model, and the logic that turns the runtime AI settings into the
ordered list of (provider, model) candidates tried for one request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from helpdesk_ai.logging import get_logger

if TYPE_CHECKING:
    from helpdesk_ai.settings_manager import AISettings

log = get_logger("helpdesk_ai.agent.providers")


class Provider(Enum):
    """Available completion providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


class TaskType(Enum):
    """Well-known task types.

    Task types select per-task provider/model overrides.  Any other string is
    accepted as a task type as well; these are just the ones the helpdesk uses.
    """

    SUMMARY = "summary"
    REPLY = "reply"
    CATEGORIZE = "categorize"
    SENTIMENT = "sentiment"
    OTHER = "other"


@dataclass(frozen=True)
class ProviderConfig:
    """Static endpoint configuration for a provider."""

    base_url: str
    default_model: str


PROVIDER_CONFIG: dict[Provider, ProviderConfig] = {
    Provider.ANTHROPIC: ProviderConfig(
        base_url="https://api.anthropic.com/v1",
        default_model="claude-3-5-haiku-20241022",
    ),
    Provider.OPENAI: ProviderConfig(
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
    ),
    Provider.OPENROUTER: ProviderConfig(
        base_url="https://openrouter.ai/api/v1",
        default_model="meta-llama/llama-3.1-8b-instruct:free",
    ),
}


# Model choices offered to operators, per provider
ANTHROPIC_MODELS: list[dict[str, str]] = [
    {"id": "claude-3-5-haiku-20241022", "name": "Claude 3.5 Haiku (Fast & Cheap)"},
    {"id": "claude-3-5-sonnet-20241022", "name": "Claude 3.5 Sonnet (Balanced)"},
    {"id": "claude-3-opus-20240229", "name": "Claude 3 Opus (Best Quality)"},
]

OPENAI_MODELS: list[dict[str, str]] = [
    {"id": "gpt-4o-mini", "name": "GPT-4o Mini (Fast & Cheap)"},
    {"id": "gpt-4o", "name": "GPT-4o (Best)"},
    {"id": "gpt-4-turbo", "name": "GPT-4 Turbo"},
]

OPENROUTER_FREE_MODELS: list[dict[str, str]] = [
    {"id": "meta-llama/llama-3.1-8b-instruct:free", "name": "Llama 3.1 8B (Free)"},
    {"id": "meta-llama/llama-3.2-3b-instruct:free", "name": "Llama 3.2 3B (Free)"},
    {"id": "mistralai/mistral-7b-instruct:free", "name": "Mistral 7B (Free)"},
    {"id": "google/gemma-2-9b-it:free", "name": "Gemma 2 9B (Free)"},
    {"id": "qwen/qwen-2-7b-instruct:free", "name": "Qwen 2 7B (Free)"},
]

OPENROUTER_CHEAP_MODELS: list[dict[str, str]] = [
    {"id": "meta-llama/llama-3.1-70b-instruct", "name": "Llama 3.1 70B"},
    {"id": "mistralai/mistral-large", "name": "Mistral Large"},
    {"id": "anthropic/claude-3-haiku", "name": "Claude 3 Haiku (via OR)"},
]


@dataclass(frozen=True)
class Candidate:
    """One slot in the fallback chain."""

    provider: Provider
    model: str


def task_key(task_type: TaskType | str | None) -> str:
    """Normalize a task type to the string key used for overrides and logging."""
    if task_type is None:
        return TaskType.OTHER.value
    if isinstance(task_type, TaskType):
        return task_type.value
    return task_type.strip().lower() or TaskType.OTHER.value


def parse_provider(value: str | None) -> Provider | None:
    """Parse a provider id, returning None for blank or unknown values."""
    if not value:
        return None
    try:
        return Provider(value.strip().lower())
    except ValueError:
        return None


def get_model_for_provider(settings: AISettings, provider: Provider) -> str:
    """Get the configured model for *provider*, or its default model."""
    return settings.configured_model(provider) or PROVIDER_CONFIG[provider].default_model


def get_primary_for_task(settings: AISettings, task_type: TaskType | str | None) -> Candidate:
    """Resolve the primary provider/model for a task type.

    A task-specific override wins over the global active provider.  The
    override model is optional; without it the overriding provider's own
    model is used.
    """
    override = settings.task_overrides.get(task_key(task_type))
    if override is not None and override.provider is not None:
        return Candidate(
            provider=override.provider,
            model=override.model or get_model_for_provider(settings, override.provider),
        )

    return Candidate(
        provider=settings.active_provider,
        model=get_model_for_provider(settings, settings.active_provider),
    )


def parse_fallback_order(fallback_order: str | None) -> list[Provider]:
    """Parse a comma-separated provider list, keeping first occurrences only."""
    providers: list[Provider] = []
    if not fallback_order:
        return providers

    for item in fallback_order.split(","):
        name = item.strip()
        if not name:
            continue
        provider = parse_provider(name)
        if provider is None:
            log.warning("unknown_fallback_provider", provider=name)
            continue
        if provider not in providers:
            providers.append(provider)
    return providers


def build_candidates(settings: AISettings, task_type: TaskType | str | None) -> list[Candidate]:
    """Build the ordered fallback chain for a request.

    The primary slot honours task overrides; fallback slots always use each
    provider's own configured model.  Enable flags and API keys are *not*
    checked here -- the broker skips those at attempt time.
    """
    primary = get_primary_for_task(settings, task_type)
    candidates = [primary]

    if not settings.use_fallback:
        return candidates

    for provider in parse_fallback_order(settings.fallback_order):
        if provider == primary.provider:
            continue
        candidates.append(
            Candidate(provider=provider, model=get_model_for_provider(settings, provider))
        )

    return candidates
