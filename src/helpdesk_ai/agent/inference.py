"""InferenceBroker - resilient multi-provider LLM dispatch.

Central class through which ALL helpdesk LLM calls flow.  For every request
the broker:

1. reads the AI settings fresh from the settings store,
2. builds the ordered candidate chain (primary + fallbacks),
3. tries each usable candidate in turn, bounded by a per-attempt timeout,
4. writes one usage record per attempt, success or failure,
5. returns exactly one :class:`InferenceResult`.

``infer`` never raises for configuration, provider or ledger failures; they
come back as a result with empty ``content`` and a non-empty ``error``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from helpdesk_ai.agent.adapters import (
    ProviderAdapter,
    ProviderError,
    ProviderResponse,
    default_adapters,
)
from helpdesk_ai.agent.providers import (
    Candidate,
    Provider,
    build_candidates,
    get_model_for_provider,
    parse_provider,
    task_key,
)
from helpdesk_ai.agent.request import AIMessage, AIRequest
from helpdesk_ai.config import get_settings
from helpdesk_ai.costs.storage import UsageRecord
from helpdesk_ai.logging import get_logger
from helpdesk_ai.models.pricing import estimate_cost

if TYPE_CHECKING:
    from helpdesk_ai.costs.tracker import UsageLogger
    from helpdesk_ai.settings_manager import AISettings, AISettingsStore

log = get_logger("helpdesk_ai.agent.inference")

AI_DISABLED_ERROR = "AI is disabled"
NO_PROVIDERS_ERROR = "No AI providers configured"
NO_API_KEY_ERROR = "No API key configured"
PROBE_PROMPT = 'Say "Hello" and nothing else.'
PROBE_MAX_TOKENS = 10


@dataclass
class InferenceResult:
    """Result of an inference call."""

    content: str
    provider: Provider | None
    model: str | None
    task_type: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int | None = None
    estimated_cost_usd: float = 0.0
    error: str | None = None

    @property
    def success(self) -> bool:
        """True when a provider produced a response."""
        return self.error is None


@dataclass
class ProbeResult:
    """Outcome of a single-provider connectivity probe."""

    success: bool
    latency_ms: int | None = None
    error: str | None = None


class InferenceBroker:
    """Routes requests across providers with fallback and usage accounting."""

    def __init__(
        self,
        settings_store: AISettingsStore,
        usage_logger: UsageLogger,
        adapters: dict[Provider, ProviderAdapter] | None = None,
        timeout_seconds: float | None = None,
    ):
        """Initialize the broker.

        Args:
            settings_store: Source of the AI settings, read on every call.
            usage_logger: Best-effort writer for per-attempt usage records.
            adapters: Adapter per provider (defaults to the SDK-backed ones).
            timeout_seconds: Per-attempt timeout (defaults to the
                ``provider_timeout_seconds`` setting).
        """
        self._settings_store = settings_store
        self._usage_logger = usage_logger
        self._adapters = adapters if adapters is not None else default_adapters()
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().provider_timeout_seconds
        )

    async def infer(self, request: AIRequest) -> InferenceResult:
        """Run *request* against the candidate chain.

        Args:
            request: The provider-neutral request.

        Returns:
            The first successful provider's result, or an error result.
        """
        task = task_key(request.task_type)

        try:
            settings = await self._settings_store.get()
        except Exception as e:
            log.exception("settings_load_failed", task_type=task)
            return self._error_result(task, f"Failed to load AI settings: {e}")

        if not settings.is_enabled:
            log.debug("inference_rejected", task_type=task, reason="disabled")
            return self._error_result(task, AI_DISABLED_ERROR)

        candidates = build_candidates(settings, task)
        last_error: str | None = None
        last_candidate: Candidate | None = None

        for attempt, candidate in enumerate(candidates, start=1):
            provider = candidate.provider.value

            if not settings.is_provider_enabled(candidate.provider):
                log.debug("provider_skipped", provider=provider, reason="disabled")
                continue

            api_key = self._resolve_api_key(settings, candidate.provider)
            if not api_key:
                log.debug("provider_skipped", provider=provider, reason="no_api_key")
                continue

            adapter = self._adapters.get(candidate.provider)
            if adapter is None:
                log.warning("provider_skipped", provider=provider, reason="no_adapter")
                continue

            start = time.perf_counter()
            try:
                response = await self._attempt(adapter, api_key, candidate.model, request)
            except Exception as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                error = str(e) or type(e).__name__
                log.warning(
                    "provider_attempt_failed",
                    provider=provider,
                    model=candidate.model,
                    task_type=task,
                    attempt=attempt,
                    error=error,
                )
                await self._usage_logger.record(
                    UsageRecord(
                        provider=provider,
                        model=candidate.model,
                        task_type=task,
                        latency_ms=latency_ms,
                        success=False,
                        error_message=error,
                        ticket_id=request.ticket_id,
                        user_id=request.user_id,
                    )
                )
                last_error = error
                last_candidate = candidate
                continue

            cost = estimate_cost(candidate.model, response.input_tokens, response.output_tokens)
            await self._usage_logger.record(
                UsageRecord(
                    provider=provider,
                    model=candidate.model,
                    task_type=task,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens,
                    estimated_cost_usd=cost,
                    latency_ms=response.latency_ms,
                    success=True,
                    ticket_id=request.ticket_id,
                    user_id=request.user_id,
                )
            )

            log.info(
                "inference_complete",
                task_type=task,
                provider=provider,
                model=candidate.model,
                attempt=attempt,
                latency_ms=response.latency_ms,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost_usd=round(cost, 6),
            )
            return InferenceResult(
                content=response.content,
                provider=candidate.provider,
                model=candidate.model,
                task_type=task,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                latency_ms=response.latency_ms,
                estimated_cost_usd=cost,
            )

        if last_candidate is None:
            log.warning("inference_rejected", task_type=task, reason="no_providers")
            return self._error_result(task, NO_PROVIDERS_ERROR)

        log.error(
            "all_providers_failed",
            task_type=task,
            provider=last_candidate.provider.value,
            model=last_candidate.model,
            error=last_error,
        )
        return InferenceResult(
            content="",
            provider=last_candidate.provider,
            model=last_candidate.model,
            task_type=task,
            error=last_error,
        )

    async def test_provider(self, provider: Provider | str) -> ProbeResult:
        """Send a tiny fixed prompt to one provider.

        Bypasses the candidate chain and fallback, ignores the global and
        per-provider enable flags, and never writes a usage record.

        Args:
            provider: The provider to probe.

        Returns:
            ProbeResult with the observed latency or the error.
        """
        resolved = provider if isinstance(provider, Provider) else parse_provider(provider)
        if resolved is None:
            return ProbeResult(success=False, error=f"Unknown provider: {provider}")

        try:
            settings = await self._settings_store.get()
        except Exception as e:
            log.exception("settings_load_failed", probe=True)
            return ProbeResult(success=False, error=f"Failed to load AI settings: {e}")

        api_key = self._resolve_api_key(settings, resolved)
        if not api_key:
            return ProbeResult(success=False, error=NO_API_KEY_ERROR)

        adapter = self._adapters.get(resolved)
        if adapter is None:
            return ProbeResult(success=False, error=f"Unknown provider: {resolved.value}")

        request = AIRequest(
            messages=[AIMessage(role="user", content=PROBE_PROMPT)],
            max_tokens=PROBE_MAX_TOKENS,
        )
        model = get_model_for_provider(settings, resolved)
        try:
            response = await self._attempt(adapter, api_key, model, request)
        except Exception as e:
            log.warning("provider_probe_failed", provider=resolved.value, error=str(e))
            return ProbeResult(success=False, error=str(e) or type(e).__name__)

        log.info("provider_probe_ok", provider=resolved.value, latency_ms=response.latency_ms)
        return ProbeResult(success=True, latency_ms=response.latency_ms)

    async def _attempt(
        self, adapter: ProviderAdapter, api_key: str, model: str, request: AIRequest
    ) -> ProviderResponse:
        """One adapter call bounded by the per-attempt timeout."""
        try:
            return await asyncio.wait_for(
                adapter.call(api_key, model, request), timeout=self._timeout
            )
        except TimeoutError as e:
            name = adapter.provider.value
            raise ProviderError(name, f"{name} request timed out after {self._timeout:g}s") from e

    @staticmethod
    def _resolve_api_key(settings: AISettings, provider: Provider) -> str | None:
        """Stored key first, then the environment-level key."""
        return settings.stored_api_key(provider) or get_settings().env_api_key(provider.value)

    @staticmethod
    def _error_result(task: str, error: str) -> InferenceResult:
        return InferenceResult(content="", provider=None, model=None, task_type=task, error=error)
