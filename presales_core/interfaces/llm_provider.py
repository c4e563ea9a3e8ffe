"""Abstract base class for chat-inference providers.

Used for document summaries and for the three case-study stages
(extract, validate, enhance), all of which send a system/user message pair
and expect text (usually JSON) back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: OpenAILLMProvider (OpenAI and Azure OpenAI)
# Located in: presales_core/providers/llm/
class ILLMProvider(ABC):
    """Contract for chat/structured-inference services."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_response: bool = False,
    ) -> str:
        """Generate a completion for a system/user message pair.

        Parameters
        ----------
        system_prompt:
            The instruction message that frames the model's behaviour.
        user_prompt:
            The request itself, including any document text.
        temperature:
            Sampling temperature (0.0 = deterministic).
        max_tokens:
            Upper bound on response tokens.
        json_response:
            Ask the backend to constrain output to a JSON object when it
            supports doing so.  Callers still parse and validate the result.

        Returns
        -------
        str
            The model's text response (never empty).

        Raises
        ------
        presales_core.utils.errors.LLMError
            If the API call fails, times out, or returns no content.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
