"""Abstract base class for session store backends.

This module defines the interface for session persistence.
The abstraction hides:
- Record format (JSON files, in-process dicts)
- Directory layout and file naming
- One-time upgrades of older storage formats

Consistency model: single writer, last write wins. There is no version
stamp or lock; a multi-process deployment would need a per-session lock.
"""

from abc import ABC, abstractmethod

from .models import AppPreferences, ChatSession


class SessionStore(ABC):
    """Abstract session store.

    Provides a unified interface for storing and retrieving chat sessions
    and the preferences record across different backends.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend (create directories, run upgrades)."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the backend."""

    @abstractmethod
    async def save_session(self, session: ChatSession) -> None:
        """Write the whole session, replacing any previous record.

        ``session.updated_at`` is refreshed before writing.

        Raises:
            StorageError: If the record cannot be written
        """

    @abstractmethod
    async def load_session(self, session_id: str) -> ChatSession:
        """Read one session.

        Raises:
            SessionNotFoundError: If no record exists for ``session_id``
            StorageError: If the record cannot be read or decoded
        """

    @abstractmethod
    async def list_sessions(self) -> list[ChatSession]:
        """All sessions, most recently updated first. Empty when none exist."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Remove one session.

        Raises:
            SessionNotFoundError: If no record exists for ``session_id``
        """

    @abstractmethod
    async def load_preferences(self) -> AppPreferences:
        """Read the preferences record, or defaults when none was saved."""

    @abstractmethod
    async def save_preferences(self, preferences: AppPreferences) -> None:
        """Replace the preferences record."""

    @abstractmethod
    async def ping(self) -> None:
        """Cheap reachability check.

        Raises:
            StorageError: If the backend is not usable
        """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "SessionStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.disconnect()


def sort_sessions(sessions: list[ChatSession]) -> list[ChatSession]:
    """Most recently updated first; ties broken by id for a stable order."""
    return sorted(sessions, key=lambda s: (s.updated_at, s.id), reverse=True)
