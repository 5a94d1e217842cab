"""Pytest configuration and shared fixtures."""
import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from ollamachat.chat import ChatCallbacks, TurnStatus
from ollamachat.errors import ProviderError
from ollamachat.llm import LLMProvider, OllamaProvider
from ollamachat.llm.models import ModelInfo, QueryOptions, StreamChunk
from ollamachat.sessions import ChatSession, InMemorySessionStore


def ndjson(*frames: dict[str, Any]) -> bytes:
    """Encode frames as newline-delimited JSON."""
    return b"".join(json.dumps(frame).encode("utf-8") + b"\n" for frame in frames)


class SlowStream(httpx.AsyncByteStream):
    """Response body that sleeps before every line and records closing."""

    def __init__(self, lines: list[bytes], delay: float):
        self.lines = lines
        self.delay = delay
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for line in self.lines:
            await asyncio.sleep(self.delay)
            yield line

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider(LLMProvider):
    """Scripted provider for orchestrator tests.

    Yields ``chunks`` in order. With ``pause_after`` set it stops after that
    many chunks, sets ``paused`` and waits for ``release``. With ``error``
    set it raises once all chunks are out.
    """

    def __init__(
        self,
        chunks: list[str] | None = None,
        error: Exception | None = None,
        pause_after: int | None = None,
        models: list[str] | None = None
    ):
        self.chunks = chunks or []
        self.error = error
        self.pause_after = pause_after
        self.models = models or []
        self.paused = asyncio.Event()
        self.release = asyncio.Event()
        self.calls: list[tuple[str, str, QueryOptions | None]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "fake"

    async def stream_query(
        self,
        model: str,
        prompt: str,
        options: QueryOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append((model, prompt, options))
        for index, text in enumerate(self.chunks):
            if self.pause_after is not None and index == self.pause_after:
                self.paused.set()
                await self.release.wait()
            yield StreamChunk(text=text, is_new_turn=index == 0)
        if self.pause_after is not None and self.pause_after >= len(self.chunks):
            self.paused.set()
            await self.release.wait()
        if self.error is not None:
            raise self.error

    async def list_models(self) -> list[ModelInfo]:
        if isinstance(self.error, ProviderError):
            raise self.error
        return [ModelInfo(name=name) for name in self.models]

    async def close(self) -> None:
        self.closed = True


class RecordingCallbacks(ChatCallbacks):
    """Collects every notification for later assertions."""

    def __init__(self) -> None:
        self.chunks: list[tuple[str, bool]] = []
        self.finished: list[tuple[TurnStatus, str | None]] = []
        self.session_lists: list[list[ChatSession]] = []

    def on_chunk(self, text: str, is_new_turn: bool) -> None:
        self.chunks.append((text, is_new_turn))

    def on_turn_finished(self, status: TurnStatus, error: str | None) -> None:
        self.finished.append((status, error))

    def on_session_list_changed(self, sessions: list[ChatSession]) -> None:
        self.session_lists.append(sessions)


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    """Return an in-memory session store."""
    return InMemorySessionStore()


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture
def fake_provider() -> Callable[..., FakeProvider]:
    """Factory for scripted providers."""
    return FakeProvider


@pytest.fixture
def ollama_provider() -> Callable[..., OllamaProvider]:
    """Factory for an OllamaProvider backed by an httpx.MockTransport.

    The handler receives each httpx.Request; captured requests are appended
    to ``provider.requests``.
    """

    def _build(
        handler: Callable[[httpx.Request], httpx.Response],
        timeout_seconds: float = 30.0,
    ) -> OllamaProvider:
        requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        provider = OllamaProvider(
            base_url="http://ollama.test:11434",
            timeout_seconds=timeout_seconds,
            client=client,
        )
        provider.requests = requests  # type: ignore[attr-defined]
        return provider

    return _build
