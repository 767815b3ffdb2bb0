from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional


@dataclass(frozen=True)
class GenerationRequest:
    """A single provider call as issued by an orchestrator."""

    model: str
    system_instruction: str
    prompt: str
    temperature: Optional[float] = None
    max_output_tokens: int = 8192
    json_mode: bool = False
    use_external_retrieval: bool = False


class GenerationBackend(ABC):
    """
    An interface for the provider call layer.

    Implementations must raise only ``ProviderError`` subclasses (see
    ``seo_llm_core.errors``) so that orchestrators never inspect provider
    specific exceptions or error messages.
    """

    @abstractmethod
    async def complete(self, api_key: str, request: GenerationRequest) -> str:
        """
        Generates the complete response text for a request.

        Args:
            api_key: The API key to authenticate the call with.
            request: The request to send.

        Returns:
            The response text.
        """
        pass

    @abstractmethod
    def stream(self, api_key: str, request: GenerationRequest) -> AsyncIterator[str]:
        """
        Generates the response as an async iterator of text chunks.

        Errors surface while iterating, including errors opening the stream.
        """
        pass
