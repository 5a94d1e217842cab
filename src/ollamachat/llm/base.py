from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from .models import ModelInfo, QueryOptions, StreamChunk


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    This module hides the design decision of which LLM backend is used.
    Implementations must handle backend-specific details like:
    - HTTP client setup
    - Request body and stream framing
    - Mapping transport and protocol faults onto ProviderError

    Supports async context manager protocol for proper resource cleanup:
        async with provider:
            async for chunk in provider.stream_query(model, prompt):
                ...
        # Automatically cleaned up
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider type identifier (e.g. 'ollama')."""

    @property
    def supports_tools(self) -> bool:
        """Whether the provider can call tools."""
        return False

    @abstractmethod
    def stream_query(
        self,
        model: str,
        prompt: str,
        options: QueryOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Send one query and stream the response.

        Args:
            model: Model to use
            prompt: Complete prompt text
            options: Sampling options (temperature, max tokens)

        Returns:
            Async iterator of StreamChunk; the first non-empty fragment has
            ``is_new_turn=True``. Iteration ends when the backend signals
            completion. Cancelling the consuming task aborts the request.

        Raises:
            ProviderError: Transport, protocol, timeout or backend failure
        """

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """List models available on the backend.

        Raises:
            ProviderError: If the backend cannot be queried
        """

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""
        pass

    async def __aenter__(self) -> "LLMProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
