"""Data models for chat sessions.

These models define the persisted shape of sessions, messages and
preferences, independent of the store backend used.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MODEL_NAME = "llama3.2:latest"
DEFAULT_PROVIDER = "ollama"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_CONTEXT_MESSAGES = 10

_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def generate_session_id() -> str:
    """Time-ordered id with a random suffix so ids created in the same second differ."""
    return f"{utc_now():%Y%m%d-%H%M%S}-{uuid4().hex[:8]}"


def default_session_name() -> str:
    return f"Session {datetime.now():%H:%M}"


def _ensure_utc(value: datetime) -> datetime:
    # Naive timestamps in hand-edited or legacy records are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single message in a conversation."""

    sender: Sender
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("sender", mode="before")
    @classmethod
    def normalize_sender(cls, value: Any) -> Any:
        """Older records call the assistant 'llm'."""
        if isinstance(value, str) and value.lower() == "llm":
            return Sender.ASSISTANT
        return value

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_aware(cls, value: datetime) -> datetime:
        return _ensure_utc(value)


class ChatSession(BaseModel):
    """A named conversation with its own model and sampling overrides.

    An empty ``model`` means "use the globally configured default".
    ``max_context_messages`` of 0 sends no history at all.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=generate_session_id)
    name: str = Field(default_factory=default_session_name)
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    model: str = ""
    provider: str = DEFAULT_PROVIDER
    max_context_messages: int = Field(default=DEFAULT_MAX_CONTEXT_MESSAGES, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)

    @field_validator("created_at", "updated_at")
    @classmethod
    def timestamps_are_aware(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def touch(self) -> datetime:
        """Advance ``updated_at``; never moves backwards, never repeats.

        Returns:
            The new ``updated_at`` value
        """
        now = utc_now()
        if now <= self.updated_at:
            now = self.updated_at + _TICK
        self.updated_at = now
        return now

    def add_message(self, message: ChatMessage) -> ChatMessage:
        """Append a message and refresh ``updated_at``."""
        self.messages.append(message)
        self.touch()
        return message

    @property
    def last_message(self) -> ChatMessage | None:
        return self.messages[-1] if self.messages else None

    def effective_model(self, default_model: str) -> str:
        return self.model or default_model


class AppPreferences(BaseModel):
    """Cross-session defaults; one record per installation."""

    model_config = ConfigDict(extra="ignore")

    # UI hints, not used by the core
    window_width: int = 600
    window_height: int = 700
    theme: str = "auto"
    font_size: int = 12
    max_history_length: int = 100

    default_model: str = DEFAULT_MODEL_NAME
    default_provider: str = DEFAULT_PROVIDER
    auto_save_history: bool = True
    enable_markdown: bool = True
    show_timestamps: bool = False

    max_context_length: int = DEFAULT_MAX_CONTEXT_MESSAGES
    enable_tool_calling: bool = False
    enable_mcp_servers: bool = False
    enable_agents: bool = False
    log_level: str = "info"


class StorageConfig(BaseModel):
    """Where and how sessions are stored."""

    type: str = Field(default="file", description="Store backend: 'file' or 'memory'")
    base_path: str = Field(default="data", description="Root directory for file storage")
