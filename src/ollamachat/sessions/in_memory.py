"""In-memory session store.

Simple dict-based storage for ephemeral runs and tests.
Data is lost when the application exits.
"""

from ..errors import SessionNotFoundError
from .base import SessionStore, sort_sessions
from .models import AppPreferences, ChatSession


class InMemorySessionStore(SessionStore):
    """In-memory session store (process lifetime only).

    Sessions are copied on the way in and out so callers never share
    state with the store, matching the file backend.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}
        self._preferences: AppPreferences | None = None

    async def connect(self) -> None:
        """Initialize store (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close store (no-op for in-memory)."""
        pass

    async def save_session(self, session: ChatSession) -> None:
        session.touch()
        self._sessions[session.id] = session.model_copy(deep=True)

    async def load_session(self, session_id: str) -> ChatSession:
        if session_id not in self._sessions:
            raise SessionNotFoundError(session_id, "load")
        return self._sessions[session_id].model_copy(deep=True)

    async def list_sessions(self) -> list[ChatSession]:
        return sort_sessions([s.model_copy(deep=True) for s in self._sessions.values()])

    async def delete_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id, "delete")

    async def load_preferences(self) -> AppPreferences:
        if self._preferences is None:
            return AppPreferences()
        return self._preferences.model_copy(deep=True)

    async def save_preferences(self, preferences: AppPreferences) -> None:
        self._preferences = preferences.model_copy(deep=True)

    async def ping(self) -> None:
        """Always reachable."""
        pass

    @property
    def backend_type(self) -> str:
        return "memory"
