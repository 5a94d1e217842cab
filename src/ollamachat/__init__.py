"""
ollamachat: a chat client core for local Ollama models.

Each module hides one design decision: the llm module hides the backend
wire protocol, the sessions module hides how conversations are stored, and
the chat module hides how turns are assembled, streamed and recorded.
"""

__version__ = "0.1.0"

from .chat import ChatCallbacks, ChatDefaults, ChatOrchestrator, TurnResult, TurnStatus
from .errors import (
    ChatError,
    ConfigError,
    ProviderError,
    SessionNotFoundError,
    StorageError,
    UnsupportedProviderError,
    ValidationError,
)
from .llm import LLMProvider, OllamaProvider, create_llm_provider
from .sessions import ChatMessage, ChatSession, SessionStore, create_session_store

__all__ = [
    "ChatCallbacks",
    "ChatDefaults",
    "ChatError",
    "ChatMessage",
    "ChatOrchestrator",
    "ChatSession",
    "ConfigError",
    "LLMProvider",
    "OllamaProvider",
    "ProviderError",
    "SessionNotFoundError",
    "SessionStore",
    "StorageError",
    "TurnResult",
    "TurnStatus",
    "UnsupportedProviderError",
    "ValidationError",
    "create_llm_provider",
    "create_session_store",
]
