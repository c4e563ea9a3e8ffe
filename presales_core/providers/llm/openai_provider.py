"""OpenAI-compatible chat provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
Works against OpenAI, any OpenAI-compatible endpoint (``openai_base_url``)
and Azure OpenAI (``azure_openai_endpoint``; the model name is then the
deployment name).
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from presales_core.config.settings import Settings
from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """Chat provider backed by an OpenAI-compatible API (``gpt-4o-mini`` by default)."""

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key
        self._client = client
        self._text_model = settings.openai_text_model or "gpt-4o-mini"
        if settings.uses_azure_openai():
            self._provider_label = "azure-openai"
        elif settings.openai_base_url:
            self._provider_label = "openai-compatible"
        else:
            self._provider_label = "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_response: bool = False,
    ) -> str:
        request: dict[str, Any] = {
            "model": self._text_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_response:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} request timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=self._text_model,
            provider=self._provider_label,
            json_response=json_response,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        return bool(self._api_key)
