"""Unit tests for the provider adapters."""

import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from helpdesk_ai.agent.adapters import (
    AnthropicAdapter,
    OpenAICompatibleAdapter,
    ProviderAdapter,
    ProviderError,
    default_adapters,
)
from helpdesk_ai.agent.providers import Provider
from helpdesk_ai.agent.request import AIMessage, AIRequest

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _request(**kwargs) -> AIRequest:
    return AIRequest(
        messages=[
            AIMessage(role="system", content="You are helpful."),
            AIMessage(role="system", content="Be brief."),
            AIMessage(role="user", content="Hello"),
        ],
        **kwargs,
    )


def _client(create_path: str, parsed=None, side_effect=None) -> MagicMock:
    """An SDK client whose raw-response ``create`` returns *parsed* on parse()."""
    client = MagicMock()
    raw = MagicMock()
    raw.parse.return_value = parsed
    create = AsyncMock(return_value=raw, side_effect=side_effect)
    target = client
    for part in create_path.split("."):
        target = getattr(target, part)
    target.with_raw_response.create = create
    return client


def _anthropic_message(text="Hi there", input_tokens=12, output_tokens=4):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _chat_completion(content="Hi there", prompt_tokens=20, completion_tokens=6):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _slow_parse(parsed, delay: float = 0.3):
    """A parse() that takes *delay* seconds before returning *parsed*."""

    def parse():
        time.sleep(delay)
        return parsed

    return parse


class TestProviderError:
    """Tests for ProviderError."""

    def test_attributes(self):
        """Provider, message and status are kept."""
        err = ProviderError("openai", "openai API error: boom", 500)
        assert str(err) == "openai API error: boom"
        assert err.provider == "openai"
        assert err.status_code == 500


class TestAnthropicAdapter:
    """Tests for the Anthropic Messages adapter."""

    @pytest.mark.asyncio
    async def test_call_success(self):
        """System messages are lifted out and the reply normalized."""
        client = _client("messages", parsed=_anthropic_message())

        with patch(
            "helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client
        ) as mock_cls:
            response = await AnthropicAdapter().call(
                "sk-ant", "claude-3-5-haiku-20241022", _request()
            )

        assert response.content == "Hi there"
        assert response.input_tokens == 12
        assert response.output_tokens == 4
        assert response.latency_ms >= 0

        client_kwargs = mock_cls.call_args.kwargs
        assert client_kwargs["api_key"] == "sk-ant"
        assert client_kwargs["max_retries"] == 0
        assert client_kwargs["base_url"] == "https://api.anthropic.com"
        assert client_kwargs["default_headers"] == {"anthropic-version": "2023-06-01"}
        assert client_kwargs["timeout"] == 30.0

        sent = client.messages.with_raw_response.create.await_args.kwargs
        assert sent["model"] == "claude-3-5-haiku-20241022"
        assert sent["system"] == "You are helpful.\n\nBe brief."
        assert sent["messages"] == [{"role": "user", "content": "Hello"}]
        assert sent["max_tokens"] == 1024
        assert "temperature" not in sent

    @pytest.mark.asyncio
    async def test_call_passes_explicit_options(self):
        """Explicit max_tokens and temperature are forwarded."""
        client = _client("messages", parsed=_anthropic_message())
        request = AIRequest(
            messages=[AIMessage(role="user", content="Hi")], max_tokens=64, temperature=0.0
        )

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            await AnthropicAdapter().call("k", "claude-3-opus-20240229", request)

        sent = client.messages.with_raw_response.create.await_args.kwargs
        assert sent["max_tokens"] == 64
        assert sent["temperature"] == 0.0
        assert "system" not in sent

    @pytest.mark.asyncio
    async def test_status_error_carries_body(self):
        """Non-2xx responses become ProviderError with the raw body."""
        body = '{"type":"error","error":{"type":"rate_limit_error"}}'
        response = httpx.Response(
            429, text=body, request=httpx.Request("POST", _ANTHROPIC_URL)
        )
        error = anthropic.RateLimitError("rate limited", response=response, body=None)
        client = _client("messages", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            with pytest.raises(ProviderError) as exc_info:
                await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

        assert str(exc_info.value) == f"anthropic API error: {body}"
        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Transport failures become ProviderError."""
        error = anthropic.APIConnectionError(request=httpx.Request("POST", _ANTHROPIC_URL))
        client = _client("messages", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            with pytest.raises(ProviderError, match="anthropic connection error"):
                await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

    @pytest.mark.asyncio
    async def test_timeout_error(self):
        """SDK timeouts become ProviderError."""
        error = anthropic.APITimeoutError(request=httpx.Request("POST", _ANTHROPIC_URL))
        client = _client("messages", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            with pytest.raises(ProviderError, match="timed out"):
                await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        """A success body that cannot be parsed becomes ProviderError."""
        client = _client("messages")
        raw = client.messages.with_raw_response.create.return_value
        raw.parse.side_effect = ValueError("Expecting value")

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            with pytest.raises(ProviderError, match="malformed response"):
                await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

    @pytest.mark.asyncio
    async def test_latency_excludes_parsing(self):
        """Latency stops when the response arrives, before the body is parsed."""
        client = _client("messages")
        raw = client.messages.with_raw_response.create.return_value
        raw.parse.side_effect = _slow_parse(_anthropic_message())

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            response = await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

        assert response.content == "Hi there"
        assert response.latency_ms < 150

    @pytest.mark.asyncio
    async def test_response_validation_error(self):
        """A body failing SDK validation becomes ProviderError."""
        response = httpx.Response(
            200, text="{}", request=httpx.Request("POST", _ANTHROPIC_URL)
        )
        client = _client("messages")
        raw = client.messages.with_raw_response.create.return_value
        raw.parse.side_effect = anthropic.APIResponseValidationError(response=response, body={})

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            with pytest.raises(ProviderError, match="^anthropic returned a malformed response"):
                await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

    @pytest.mark.asyncio
    async def test_empty_content(self):
        """No content blocks gives empty text."""
        message = SimpleNamespace(content=[], usage=None)
        client = _client("messages", parsed=message)

        with patch("helpdesk_ai.agent.adapters.anthropic.AsyncAnthropic", return_value=client):
            response = await AnthropicAdapter().call("k", "claude-3-5-haiku-20241022", _request())

        assert response.content == ""
        assert response.input_tokens == 0
        assert response.output_tokens == 0


class TestOpenAICompatibleAdapter:
    """Tests for the chat completions adapter."""

    @pytest.mark.asyncio
    async def test_openai_success(self):
        """All messages are sent flat with default options."""
        client = _client("chat.completions", parsed=_chat_completion())

        with patch(
            "helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client
        ) as mock_cls:
            response = await OpenAICompatibleAdapter(Provider.OPENAI).call(
                "sk-openai", "gpt-4o-mini", _request()
            )

        assert response.content == "Hi there"
        assert response.input_tokens == 20
        assert response.output_tokens == 6

        client_kwargs = mock_cls.call_args.kwargs
        assert client_kwargs["api_key"] == "sk-openai"
        assert client_kwargs["base_url"] == "https://api.openai.com/v1"
        assert client_kwargs["max_retries"] == 0
        assert client_kwargs["default_headers"] is None

        sent = client.chat.completions.with_raw_response.create.await_args.kwargs
        assert sent["model"] == "gpt-4o-mini"
        assert [m["role"] for m in sent["messages"]] == ["system", "system", "user"]
        assert sent["max_tokens"] == 1024
        assert sent["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_zero_temperature_is_kept(self):
        """An explicit 0.0 temperature is not replaced by the default."""
        client = _client("chat.completions", parsed=_chat_completion())
        request = AIRequest(messages=[AIMessage(role="user", content="Hi")], temperature=0.0)

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            await OpenAICompatibleAdapter(Provider.OPENAI).call("k", "gpt-4o", request)

        sent = client.chat.completions.with_raw_response.create.await_args.kwargs
        assert sent["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_openrouter_headers(self, monkeypatch: pytest.MonkeyPatch):
        """OpenRouter gets its base URL and attribution headers."""
        monkeypatch.setenv("APP_URL", "https://help.example.com")
        monkeypatch.setenv("APP_TITLE", "Example Helpdesk")
        from helpdesk_ai.config import get_settings

        get_settings.cache_clear()
        client = _client("chat.completions", parsed=_chat_completion())

        with patch(
            "helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client
        ) as mock_cls:
            await OpenAICompatibleAdapter(Provider.OPENROUTER).call(
                "sk-or", "meta-llama/llama-3.1-8b-instruct:free", _request()
            )

        client_kwargs = mock_cls.call_args.kwargs
        assert client_kwargs["base_url"] == "https://openrouter.ai/api/v1"
        assert client_kwargs["default_headers"] == {
            "HTTP-Referer": "https://help.example.com",
            "X-Title": "Example Helpdesk",
        }

    @pytest.mark.asyncio
    async def test_status_error_carries_body(self):
        """Non-2xx responses become ProviderError with the raw body."""
        body = '{"error":{"message":"Incorrect API key provided"}}'
        response = httpx.Response(401, text=body, request=httpx.Request("POST", _OPENAI_URL))
        error = openai.AuthenticationError("bad key", response=response, body=None)
        client = _client("chat.completions", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            with pytest.raises(ProviderError) as exc_info:
                await OpenAICompatibleAdapter(Provider.OPENAI).call("k", "gpt-4o", _request())

        assert str(exc_info.value) == f"openai API error: {body}"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_openrouter_error_names_provider(self):
        """Errors are labelled with the provider actually called."""
        response = httpx.Response(
            502, text="Bad Gateway", request=httpx.Request("POST", _OPENAI_URL)
        )
        error = openai.InternalServerError("bad gateway", response=response, body=None)
        client = _client("chat.completions", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            with pytest.raises(ProviderError, match="^openrouter API error: Bad Gateway$"):
                await OpenAICompatibleAdapter(Provider.OPENROUTER).call(
                    "k", "mistralai/mistral-large", _request()
                )

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Transport failures become ProviderError."""
        error = openai.APIConnectionError(request=httpx.Request("POST", _OPENAI_URL))
        client = _client("chat.completions", side_effect=error)

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            with pytest.raises(ProviderError, match="openai connection error"):
                await OpenAICompatibleAdapter(Provider.OPENAI).call("k", "gpt-4o", _request())

    @pytest.mark.asyncio
    async def test_latency_excludes_parsing(self):
        """Latency stops when the response arrives, before the body is parsed."""
        client = _client("chat.completions")
        raw = client.chat.completions.with_raw_response.create.return_value
        raw.parse.side_effect = _slow_parse(_chat_completion())

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            response = await OpenAICompatibleAdapter(Provider.OPENAI).call(
                "k", "gpt-4o", _request()
            )

        assert response.content == "Hi there"
        assert response.latency_ms < 150

    @pytest.mark.asyncio
    async def test_response_validation_error(self):
        """A body failing SDK validation becomes ProviderError."""
        response = httpx.Response(200, text="{}", request=httpx.Request("POST", _OPENAI_URL))
        client = _client("chat.completions")
        raw = client.chat.completions.with_raw_response.create.return_value
        raw.parse.side_effect = openai.APIResponseValidationError(response=response, body={})

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            with pytest.raises(ProviderError, match="^openrouter returned a malformed response"):
                await OpenAICompatibleAdapter(Provider.OPENROUTER).call(
                    "k", "mistralai/mistral-large", _request()
                )

    @pytest.mark.asyncio
    async def test_missing_usage_and_content(self):
        """Null content and missing usage normalize to empty and zero."""
        completion = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))], usage=None
        )
        client = _client("chat.completions", parsed=completion)

        with patch("helpdesk_ai.agent.adapters.openai.AsyncOpenAI", return_value=client):
            response = await OpenAICompatibleAdapter(Provider.OPENAI).call(
                "k", "gpt-4o", _request()
            )

        assert response.content == ""
        assert response.input_tokens == 0
        assert response.output_tokens == 0

    def test_rejects_anthropic(self):
        """The chat completions shape is not used for Anthropic."""
        with pytest.raises(ValueError):
            OpenAICompatibleAdapter(Provider.ANTHROPIC)


class TestDefaultAdapters:
    """Tests for the default adapter mapping."""

    def test_one_adapter_per_provider(self):
        """Each provider maps to an adapter for itself."""
        adapters = default_adapters()
        assert set(adapters) == set(Provider)
        for provider, adapter in adapters.items():
            assert isinstance(adapter, ProviderAdapter)
            assert adapter.provider is provider
        assert isinstance(adapters[Provider.ANTHROPIC], AnthropicAdapter)
