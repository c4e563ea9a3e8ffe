"""Unit tests for the OpenAI chat and embedding adapters and client construction.

The async OpenAI client is replaced by MagicMock/AsyncMock objects; no
network calls are made.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from presales_core.config.settings import Settings
from presales_core.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from presales_core.providers.llm.openai_provider import OpenAILLMProvider
from presales_core.providers.openai_client import build_openai_client
from presales_core.utils.errors import ConfigurationError, EmbeddingFailure, LLMError


def _settings(**overrides) -> Settings:
    values = {"openai_api_key": "sk-test", "blob_signing_secret": "secret"}
    values.update(overrides)
    return Settings(**values)


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _chat_response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=42),
    )


def _chat_client(**create_kwargs) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(**create_kwargs)
    return client


def _embedding_client() -> MagicMock:
    async def _create(input, model, **kwargs):
        dim = kwargs.get("dimensions", 4)
        # Items deliberately returned in reverse order.
        data = [
            SimpleNamespace(index=i, embedding=[float(i)] * dim)
            for i in reversed(range(len(input)))
        ]
        return SimpleNamespace(data=data, usage=SimpleNamespace(total_tokens=len(input)))

    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=_create)
    return client


class TestOpenAILLMProvider:
    @pytest.mark.asyncio
    async def test_complete_returns_content(self) -> None:
        client = _chat_client(return_value=_chat_response('{"ok": true}'))
        provider = OpenAILLMProvider(_settings(), client)

        result = await provider.complete("system", "user", temperature=0.1, json_response=True)

        assert result == '{"ok": true}'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_plain_completion_has_no_response_format(self) -> None:
        client = _chat_client(return_value=_chat_response("text"))

        await OpenAILLMProvider(_settings(), client).complete("s", "u")

        assert "response_format" not in client.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_empty_response_raises(self) -> None:
        client = _chat_client(return_value=_chat_response("   "))

        with pytest.raises(LLMError, match="empty response"):
            await OpenAILLMProvider(_settings(), client).complete("s", "u")

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self) -> None:
        client = _chat_client(side_effect=openai.APITimeoutError(request=_request()))

        with pytest.raises(LLMError, match="timed out") as exc_info:
            await OpenAILLMProvider(_settings(), client).complete("s", "u")
        assert isinstance(exc_info.value.__cause__, openai.APITimeoutError)

    @pytest.mark.asyncio
    async def test_api_error_is_wrapped(self) -> None:
        client = _chat_client(side_effect=openai.APIConnectionError(request=_request()))

        with pytest.raises(LLMError) as exc_info:
            await OpenAILLMProvider(_settings(), client).complete("s", "u")
        assert exc_info.value.provider_name == "openai"

    def test_provider_label_follows_endpoint(self) -> None:
        azure = OpenAILLMProvider(_settings(azure_openai_endpoint="https://x.openai.azure.com"), MagicMock())
        compatible = OpenAILLMProvider(_settings(openai_base_url="http://localhost:11434/v1"), MagicMock())

        assert azure.get_provider_name() == "azure-openai"
        assert compatible.get_provider_name() == "openai-compatible"

    def test_availability_follows_api_key(self) -> None:
        assert OpenAILLMProvider(_settings(), MagicMock()).is_available()
        assert not OpenAILLMProvider(_settings(openai_api_key=""), MagicMock()).is_available()


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_vectors_are_ordered_by_index(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(embedding_dimension=4), _embedding_client())

        vectors = await provider.embed(["a", "b", "c"])

        assert [v[0] for v in vectors] == [0.0, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_dimensions_sent_when_shortening(self) -> None:
        client = _embedding_client()
        provider = OpenAIEmbeddingProvider(_settings(embedding_dimension=256), client)

        vectors = await provider.embed(["a"])

        assert client.embeddings.create.call_args.kwargs["dimensions"] == 256
        assert len(vectors[0]) == 256

    @pytest.mark.asyncio
    async def test_native_dimension_sends_no_dimensions(self) -> None:
        client = _embedding_client()
        provider = OpenAIEmbeddingProvider(_settings(), client)

        await provider.embed(["a"])

        assert "dimensions" not in client.embeddings.create.call_args.kwargs
        assert provider.get_dimension() == 1536

    @pytest.mark.asyncio
    async def test_large_inputs_are_split(self) -> None:
        client = _embedding_client()
        provider = OpenAIEmbeddingProvider(_settings(embedding_dimension=4), client)

        vectors = await provider.embed([f"t{i}" for i in range(2050)])

        assert len(vectors) == 2050
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_input_skips_api(self) -> None:
        client = _embedding_client()

        assert await OpenAIEmbeddingProvider(_settings(), client).embed([]) == []
        client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_is_wrapped(self) -> None:
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=openai.APIConnectionError(request=_request()))

        with pytest.raises(EmbeddingFailure):
            await OpenAIEmbeddingProvider(_settings(), client).embed_single("query")


class TestBuildOpenAIClient:
    def test_missing_key_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            build_openai_client(_settings(openai_api_key=""))

    def test_azure_endpoint_selects_azure_client(self) -> None:
        client = build_openai_client(_settings(azure_openai_endpoint="https://x.openai.azure.com"))

        assert isinstance(client, openai.AsyncAzureOpenAI)

    def test_base_url_is_applied(self) -> None:
        client = build_openai_client(_settings(openai_base_url="http://localhost:11434/v1"))

        assert isinstance(client, openai.AsyncOpenAI)
        assert str(client.base_url).startswith("http://localhost:11434/v1")
