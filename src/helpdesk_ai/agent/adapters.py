"""Provider adapters.

Each adapter translates an :class:`AIRequest` into one provider wire shape
and normalizes the reply into a :class:`ProviderResponse`.  Two shapes are
supported:

* Anthropic Messages API (``POST /v1/messages``), system prompt top-level.
* OpenAI-compatible Chat Completions (``POST {base}/chat/completions``),
  shared by OpenAI and OpenRouter.

Adapters are stateless: an httpx transport is opened per call and closed
afterwards.  SDK retries are disabled; fallback across providers is the
broker's job.  Every failure surfaces as :class:`ProviderError`.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import anthropic
import httpx
import openai

from helpdesk_ai.agent.providers import PROVIDER_CONFIG, Provider
from helpdesk_ai.agent.request import DEFAULT_TEMPERATURE, AIRequest
from helpdesk_ai.config import get_settings
from helpdesk_ai.logging import get_logger

log = get_logger("helpdesk_ai.agent.adapters")

ANTHROPIC_VERSION = "2023-06-01"


class ProviderError(Exception):
    """A provider call failed (HTTP error, transport error or bad body)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


@dataclass
class ProviderResponse:
    """Normalized provider reply."""

    content: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _status_error(name: str, e: anthropic.APIStatusError | openai.APIStatusError) -> ProviderError:
    body = e.response.text if e.response is not None else str(e)
    return ProviderError(name, f"{name} API error: {body}", e.status_code)


def _malformed(name: str, e: Exception) -> ProviderError:
    return ProviderError(name, f"{name} returned a malformed response: {e}")


class ProviderAdapter(ABC):
    """Contract shared by all wire shapes."""

    provider: Provider

    @abstractmethod
    async def call(self, api_key: str, model: str, request: AIRequest) -> ProviderResponse:
        """Send *request* to *model* and return the normalized reply.

        Raises:
            ProviderError: On any HTTP, transport or decoding failure.
        """


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API."""

    provider = Provider.ANTHROPIC

    def _build_kwargs(self, model: str, request: AIRequest) -> dict[str, Any]:
        system_parts = [m.content for m in request.messages if m.role == "system"]
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": request.resolved_max_tokens,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages
                if m.role != "system"
            ],
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        # Only sent when the caller asked for one
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        return kwargs

    async def call(self, api_key: str, model: str, request: AIRequest) -> ProviderResponse:
        name = self.provider.value
        timeout = get_settings().provider_timeout_seconds
        http_client = _http_client(timeout)
        client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=PROVIDER_CONFIG[self.provider].base_url.removesuffix("/v1"),
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
            default_headers={"anthropic-version": ANTHROPIC_VERSION},
        )
        kwargs = self._build_kwargs(model, request)
        start = time.perf_counter()
        try:
            raw = await client.messages.with_raw_response.create(**kwargs)
            latency_ms = _elapsed_ms(start)
            response = raw.parse()
        except anthropic.APIStatusError as e:
            raise _status_error(name, e) from e
        except anthropic.APITimeoutError as e:
            raise ProviderError(name, f"{name} API error: request timed out") from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(name, f"{name} connection error: {e}") from e
        except (ValueError, TypeError) as e:
            raise _malformed(name, e) from e
        except anthropic.APIError as e:
            raise _malformed(name, e) from e
        finally:
            await http_client.aclose()

        try:
            block = response.content[0] if response.content else None
            content = getattr(block, "text", "") if block is not None else ""
            input_tokens = response.usage.input_tokens if response.usage else 0
            output_tokens = response.usage.output_tokens if response.usage else 0
        except (AttributeError, IndexError, TypeError) as e:
            raise _malformed(name, e) from e

        log.debug("provider_response", provider=name, model=model, latency_ms=latency_ms)
        return ProviderResponse(
            content=content or "",
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            latency_ms=latency_ms,
        )


class OpenAICompatibleAdapter(ProviderAdapter):
    """OpenAI-compatible Chat Completions (OpenAI, OpenRouter)."""

    def __init__(self, provider: Provider = Provider.OPENAI):
        if provider == Provider.ANTHROPIC:
            raise ValueError("Anthropic does not speak the chat completions shape")
        self.provider = provider

    def _default_headers(self) -> dict[str, str] | None:
        if self.provider != Provider.OPENROUTER:
            return None
        settings = get_settings()
        return {"HTTP-Referer": settings.app_url, "X-Title": settings.app_title}

    async def call(self, api_key: str, model: str, request: AIRequest) -> ProviderResponse:
        name = self.provider.value
        timeout = get_settings().provider_timeout_seconds
        http_client = _http_client(timeout)
        client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=PROVIDER_CONFIG[self.provider].base_url,
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
            default_headers=self._default_headers(),
        )
        messages: list[Any] = [{"role": m.role, "content": m.content} for m in request.messages]
        temperature = request.temperature
        if temperature is None:
            temperature = DEFAULT_TEMPERATURE

        start = time.perf_counter()
        try:
            raw = await client.chat.completions.with_raw_response.create(
                model=model,
                messages=messages,
                max_tokens=request.resolved_max_tokens,
                temperature=temperature,
            )
            latency_ms = _elapsed_ms(start)
            response = raw.parse()
        except openai.APIStatusError as e:
            raise _status_error(name, e) from e
        except openai.APITimeoutError as e:
            raise ProviderError(name, f"{name} API error: request timed out") from e
        except openai.APIConnectionError as e:
            raise ProviderError(name, f"{name} connection error: {e}") from e
        except (ValueError, TypeError) as e:
            raise _malformed(name, e) from e
        except openai.APIError as e:
            raise _malformed(name, e) from e
        finally:
            await http_client.aclose()

        try:
            content = response.choices[0].message.content if response.choices else ""
            input_tokens = response.usage.prompt_tokens if response.usage else 0
            output_tokens = response.usage.completion_tokens if response.usage else 0
        except (AttributeError, IndexError, TypeError) as e:
            raise _malformed(name, e) from e

        log.debug("provider_response", provider=name, model=model, latency_ms=latency_ms)
        return ProviderResponse(
            content=content or "",
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            latency_ms=latency_ms,
        )


def default_adapters() -> dict[Provider, ProviderAdapter]:
    """One adapter per provider."""
    return {
        Provider.ANTHROPIC: AnthropicAdapter(),
        Provider.OPENAI: OpenAICompatibleAdapter(Provider.OPENAI),
        Provider.OPENROUTER: OpenAICompatibleAdapter(Provider.OPENROUTER),
    }
