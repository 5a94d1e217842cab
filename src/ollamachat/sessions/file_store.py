"""File-backed session store.

One indented JSON record per session under ``<base>/sessions/<id>.json``
plus ``<base>/preferences.json``. Records are small, so reads and writes
are synchronous and run inline on the event loop.
"""

import contextlib
import logging
import os
import re
from pathlib import Path

from pydantic import ValidationError as ModelValidationError

from ..errors import SessionNotFoundError, StorageError, ValidationError
from .base import SessionStore, sort_sessions
from .migration import migrate_legacy_history
from .models import AppPreferences, ChatSession

logger = logging.getLogger(__name__)

SESSIONS_DIRNAME = "sessions"
PREFERENCES_FILENAME = "preferences.json"

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class FileSessionStore(SessionStore):
    """JSON-file session store.

    Each save fully replaces the record through a temporary file and
    ``os.replace``, so a crash never leaves a half-written session.
    """

    def __init__(self, base_path: str | Path = "data"):
        self._base_path = Path(base_path or "data")

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def sessions_dir(self) -> Path:
        return self._base_path / SESSIONS_DIRNAME

    @property
    def backend_type(self) -> str:
        return "file"

    async def connect(self) -> None:
        """Create the storage root and upgrade any legacy history file."""
        try:
            self._base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"failed to create storage directory: {e}", "connect", self._base_path
            ) from e
        logger.info("Initialized file storage base_path=%s", self._base_path)
        await migrate_legacy_history(self, self._base_path)

    async def disconnect(self) -> None:
        logger.debug("Closing file storage base_path=%s", self._base_path)

    def _session_path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id or ""):
            raise ValidationError("session id", f"invalid session id: {session_id!r}")
        return self.sessions_dir / f"{session_id}.json"

    async def save_session(self, session: ChatSession) -> None:
        path = self._session_path(session.id)
        logger.info(
            "Saving chat session session_id=%s message_count=%d",
            session.id,
            len(session.messages),
        )
        session.touch()
        _write_atomic(path, session.model_dump_json(indent=2), "save")

    async def load_session(self, session_id: str) -> ChatSession:
        path = self._session_path(session_id)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Session not found session_id=%s", session_id)
            raise SessionNotFoundError(session_id, "load", path) from None
        except OSError as e:
            raise StorageError(f"failed to read session file: {e}", "load", path) from e

        try:
            session = ChatSession.model_validate_json(data)
        except ModelValidationError as e:
            raise StorageError(f"failed to decode session: {e}", "load", path) from e

        logger.debug(
            "Loaded chat session session_id=%s message_count=%d",
            session_id,
            len(session.messages),
        )
        return session

    async def list_sessions(self) -> list[ChatSession]:
        if not self.sessions_dir.exists():
            logger.info("No sessions directory found, returning empty list")
            return []

        try:
            paths = sorted(self.sessions_dir.glob("*.json"))
        except OSError as e:
            raise StorageError(
                f"failed to read sessions directory: {e}", "list", self.sessions_dir
            ) from e

        sessions: list[ChatSession] = []
        for path in paths:
            if not path.is_file():
                continue
            try:
                sessions.append(await self.load_session(path.stem))
            except (StorageError, ValidationError) as e:
                # One corrupt record must not hide the others
                logger.warning("Skipping unreadable session file path=%s error=%s", path, e)

        logger.debug("Listed chat sessions count=%d", len(sessions))
        return sort_sessions(sessions)

    async def delete_session(self, session_id: str) -> None:
        path = self._session_path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Session not found for deletion session_id=%s", session_id)
            raise SessionNotFoundError(session_id, "delete", path) from None
        except OSError as e:
            raise StorageError(f"failed to delete session file: {e}", "delete", path) from e
        logger.info("Deleted chat session session_id=%s", session_id)

    async def load_preferences(self) -> AppPreferences:
        path = self._base_path / PREFERENCES_FILENAME
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("Preferences file not found, returning defaults")
            return AppPreferences()
        except OSError as e:
            raise StorageError(
                f"failed to read preferences file: {e}", "load_preferences", path
            ) from e

        try:
            return AppPreferences.model_validate_json(data)
        except ModelValidationError as e:
            raise StorageError(
                f"failed to decode preferences: {e}", "load_preferences", path
            ) from e

    async def save_preferences(self, preferences: AppPreferences) -> None:
        path = self._base_path / PREFERENCES_FILENAME
        _write_atomic(path, preferences.model_dump_json(indent=2), "save_preferences")
        logger.info("Saved application preferences")

    async def ping(self) -> None:
        base = self._base_path
        if not base.is_dir():
            raise StorageError("storage directory is not accessible", "ping", base)
        if not os.access(base, os.R_OK | os.W_OK | os.X_OK):
            raise StorageError("storage directory is not writable", "ping", base)


def _write_atomic(path: Path, text: str, operation: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(text)
            handle.write("\n")
        os.replace(tmp_path, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        raise StorageError(f"failed to write file: {e}", operation, path) from e
