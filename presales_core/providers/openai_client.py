"""Construction of the async OpenAI / Azure OpenAI client.

The process entry point builds one client (over one shared
``httpx.AsyncClient``) and hands it to both OpenAI providers; closing it
is the entry point's job.
"""

from __future__ import annotations

import httpx
import openai

from presales_core.config.settings import Settings
from presales_core.utils.errors import ConfigurationError


def build_openai_client(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> openai.AsyncOpenAI:
    """Return an ``AsyncAzureOpenAI`` when an Azure endpoint is set, else ``AsyncOpenAI``.

    The SDK's own timeout is left generous; pipeline stages apply the
    caller-supplied collaborator timeout on top.
    """
    if not settings.openai_api_key:
        raise ConfigurationError(
            message="OPENAI_API_KEY is not set", provider_name="openai"
        )

    client_kwargs: dict = {
        "api_key": settings.openai_api_key,
        "timeout": openai.Timeout(settings.collaborator_timeout_seconds, connect=5.0),
        "max_retries": 2,
    }
    if http_client is not None:
        client_kwargs["http_client"] = http_client

    if settings.uses_azure_openai():
        return openai.AsyncAzureOpenAI(
            azure_endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
            **client_kwargs,
        )

    if settings.openai_base_url:
        client_kwargs["base_url"] = settings.openai_base_url
    return openai.AsyncOpenAI(**client_kwargs)
