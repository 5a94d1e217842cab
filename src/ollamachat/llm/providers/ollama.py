import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as ModelValidationError

from ...errors import (
    ProviderProtocolError,
    ProviderRemoteError,
    ProviderTimeoutError,
    ProviderUnreachableError,
)
from ..base import LLMProvider
from ..models import (
    DEFAULT_TIMEOUT_SECONDS,
    ModelInfo,
    QueryOptions,
    StreamChunk,
    StreamFrame,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

_ERROR_BODY_LIMIT = 200


class _TagEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class _TagsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    models: list[_TagEntry] = []


async def decode_frames(lines: AsyncIterator[str]) -> AsyncIterator[StreamFrame]:
    """Decode newline-delimited JSON frames one line at a time.

    Blank lines are skipped. Only the current line is held in memory.

    Raises:
        ProviderProtocolError: If a line is not a valid frame
    """
    async for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            frame = StreamFrame.model_validate_json(line)
        except ModelValidationError as e:
            raise ProviderProtocolError(f"failed to decode response frame: {e}") from e
        yield frame


class OllamaProvider(LLMProvider):
    """Ollama provider using the native ``/api/generate`` streaming endpoint.

    Hidden design decisions:
    - Request body layout (model, prompt, stream, options)
    - Newline-delimited JSON framing of the response
    - Timeout policy: every network wait and the stream as a whole are
      bounded by ``timeout_seconds``
    - No automatic retries
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        **client_kwargs: Any
    ):
        """Initialize Ollama provider.

        Args:
            base_url: Ollama server URL (default: http://localhost:11434)
            timeout_seconds: Per-request timeout
            client: Pre-built httpx client (the provider will not close it)
            **client_kwargs: Additional kwargs for httpx.AsyncClient
        """
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            **client_kwargs
        )

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def _build_payload(self, model: str, prompt: str, options: QueryOptions) -> dict[str, Any]:
        backend_options: dict[str, Any] = {"temperature": options.temperature}
        if options.max_tokens > 0:
            backend_options["num_predict"] = options.max_tokens
        return {
            "model": model,
            "prompt": prompt,
            "stream": True,
            "options": backend_options,
        }

    async def stream_query(
        self,
        model: str,
        prompt: str,
        options: QueryOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion from Ollama.

        Args:
            model: Model to use
            prompt: Complete prompt text
            options: Sampling options

        Yields:
            StreamChunk per non-empty fragment, first one tagged as new turn
        """
        options = options or QueryOptions()
        payload = self._build_payload(model, prompt, options)
        logger.info(
            "Sending query to Ollama model=%s query_length=%d", model, len(prompt)
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout_seconds
        chunk_count = 0

        try:
            async with self._client.stream(
                "POST",
                f"{self._base_url}/api/generate",
                json=payload,
                timeout=self._timeout_seconds,
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "Unexpected status code from Ollama status_code=%d",
                        response.status_code,
                    )
                    raise ProviderUnreachableError(
                        f"unexpected status code: {response.status_code}: "
                        f"{body[:_ERROR_BODY_LIMIT]}",
                        status_code=response.status_code,
                    )

                completed = False
                frames = decode_frames(response.aiter_lines())
                async with aclosing(frames):
                    while not completed:
                        # Each read gets only what is left of the overall budget
                        remaining = deadline - loop.time()
                        try:
                            if remaining <= 0:
                                raise asyncio.TimeoutError
                            frame = await asyncio.wait_for(frames.__anext__(), remaining)
                        except StopAsyncIteration:
                            break
                        except asyncio.TimeoutError:
                            logger.error(
                                "Ollama stream exceeded timeout_seconds=%s", self._timeout_seconds
                            )
                            raise ProviderTimeoutError(
                                f"request timed out after {self._timeout_seconds:g}s"
                            ) from None
                        if frame.error:
                            logger.error("Error in Ollama response error=%s", frame.error)
                            raise ProviderRemoteError(f"ollama error: {frame.error}")
                        if frame.response:
                            yield StreamChunk(text=frame.response, is_new_turn=chunk_count == 0)
                            chunk_count += 1
                        completed = frame.done

                if not completed:
                    raise ProviderProtocolError(
                        "stream ended before the completion frame"
                    )

        except httpx.TimeoutException as e:
            logger.error("Ollama request timed out timeout_seconds=%s", self._timeout_seconds)
            raise ProviderTimeoutError(
                f"request timed out after {self._timeout_seconds:g}s"
            ) from e
        except (httpx.RemoteProtocolError, httpx.DecodingError) as e:
            raise ProviderProtocolError(f"malformed response from Ollama: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Failed to send request to Ollama error=%s", e)
            raise ProviderUnreachableError(f"failed to send request: {e}") from e

        logger.info("Completed streaming response chunk_count=%d", chunk_count)

    async def list_models(self) -> list[ModelInfo]:
        """Fetch installed models from ``/api/tags``."""
        logger.info("Fetching available models")
        try:
            response = await self._client.get(
                f"{self._base_url}/api/tags", timeout=self._timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"request timed out after {self._timeout_seconds:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnreachableError(f"failed to fetch models: {e}") from e

        if not response.is_success:
            raise ProviderUnreachableError(
                f"unexpected status code: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            tags = _TagsResponse.model_validate_json(response.content)
        except ModelValidationError as e:
            raise ProviderProtocolError(f"failed to decode models response: {e}") from e

        models = [
            ModelInfo(name=entry.name, description=f"Ollama model: {entry.name}")
            for entry in tags.models
        ]
        logger.info("Fetched models count=%d", len(models))
        return models

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()
