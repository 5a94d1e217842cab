"""Session store module for ollamachat.

Provides durable storage for chat sessions and application preferences.
"""

from .base import SessionStore
from .factory import create_session_store
from .file_store import FileSessionStore
from .in_memory import InMemorySessionStore
from .models import (
    AppPreferences,
    ChatMessage,
    ChatSession,
    Sender,
    StorageConfig,
)

__all__ = [
    "AppPreferences",
    "ChatMessage",
    "ChatSession",
    "FileSessionStore",
    "InMemorySessionStore",
    "Sender",
    "SessionStore",
    "StorageConfig",
    "create_session_store",
]
