"""Data structures for the chat module."""

import asyncio
from collections.abc import Generator
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..llm.models import DEFAULT_MAX_TOKENS
from ..sessions.models import (
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MODEL_NAME,
    DEFAULT_PROVIDER,
    DEFAULT_TEMPERATURE,
    ChatSession,
)

CANCELED_MARKER = "**Request canceled**"
ERROR_MARKER_PREFIX = "**Error:** "


def error_marker(message: str) -> str:
    return f"{ERROR_MARKER_PREFIX}{message}"


class TurnState(str, Enum):
    """Lifecycle of one query turn.

    Idle -> Sending -> Streaming -> {Completed | Canceled | Failed} -> Idle
    """

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


class TurnStatus(str, Enum):
    """How a turn ended."""

    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"


class TurnResult(BaseModel):
    """Outcome of a turn.

    Attributes:
        status: How the turn ended
        session_id: Session the turn belonged to
        content: Assistant text accumulated during the turn
        error: Failure message when status is FAILED
    """

    status: TurnStatus
    session_id: str
    content: str = ""
    error: str | None = None


class ChatDefaults(BaseModel):
    """Global defaults used when a session has no override."""

    default_model: str = Field(default=DEFAULT_MODEL_NAME, description="Fallback model name")
    default_provider: str = Field(default=DEFAULT_PROVIDER)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_context_messages: int = Field(default=DEFAULT_MAX_CONTEXT_MESSAGES, ge=0)


class ChatCallbacks:
    """Notifications from the orchestrator to a front-end.

    Subclass and override what you need; every method is a no-op here.
    Callbacks run on the event loop and should return quickly.
    """

    def on_chunk(self, text: str, is_new_turn: bool) -> None:
        """A fragment of the assistant response arrived."""

    def on_turn_finished(self, status: TurnStatus, error: str | None) -> None:
        """The turn reached a terminal state and the session was saved."""

    def on_session_list_changed(self, sessions: list[ChatSession]) -> None:
        """The list of known sessions changed (most recent first)."""


class TurnHandler:
    """Awaitable handle on a turn running in the background.

    ``await handler`` resolves to a TurnResult; a cancelled turn resolves
    to a CANCELED result rather than raising.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.started = asyncio.Event()
        self.cancel_requested = False
        self._background_task: asyncio.Task | None = None

    @property
    def background_task(self) -> asyncio.Task:
        """Get the background task."""
        if not self._background_task:
            raise RuntimeError("No background task running")
        return self._background_task

    @background_task.setter
    def background_task(self, task: asyncio.Task) -> None:
        """Set the background task."""
        if self._background_task is not None:
            raise RuntimeError("Background task already set")
        self._background_task = task

    def done(self) -> bool:
        return self._background_task is not None and self._background_task.done()

    def cancel(self) -> bool:
        return self.background_task.cancel()

    def result(self) -> TurnResult:
        return self.background_task.result()

    def __await__(self) -> Generator[Any, None, TurnResult]:
        return self.background_task.__await__()
