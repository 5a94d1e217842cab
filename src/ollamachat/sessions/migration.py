"""One-time upgrade of the single-conversation history file.

Early versions kept one conversation in ``chat_history.json`` as a bare JSON
array of ``{sender, content, timestamp}`` objects. On store startup that file
is imported as a regular session and renamed, so the upgrade runs once and
there is never a second code path reading the old format.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter
from pydantic import ValidationError as ModelValidationError

from ..errors import StorageError
from .models import ChatMessage, ChatSession, Sender, utc_now

if TYPE_CHECKING:
    from .base import SessionStore

logger = logging.getLogger(__name__)

LEGACY_HISTORY_FILENAME = "chat_history.json"
MIGRATED_SUFFIX = ".migrated"
IMPORTED_SESSION_NAME = "Imported chat"

_TIMESTAMP = TypeAdapter(datetime)
# Legacy files carry nanosecond precision with trailing zeros trimmed
_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def _microseconds(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def _parse_timestamp(raw: Any) -> datetime:
    """Parse an RFC 3339 timestamp of any fraction length; now() if unreadable."""
    if isinstance(raw, str) and raw.strip():
        try:
            normalized = _FRACTION.sub(_microseconds, raw.strip(), count=1)
            return _TIMESTAMP.validate_python(normalized)
        except ModelValidationError:
            pass
    return utc_now()


def read_legacy_history(path: Path) -> list[ChatMessage]:
    """Parse a legacy history file into messages.

    Raises:
        StorageError: If the file is not a JSON array of message objects
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8") or "[]")
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"failed to read legacy history: {e}", "migrate", path) from e

    if payload is None:
        return []
    if not isinstance(payload, list):
        raise StorageError("legacy history is not a list of messages", "migrate", path)

    messages = []
    for entry in payload:
        if not isinstance(entry, dict):
            raise StorageError("legacy history entry is not an object", "migrate", path)
        sender = Sender.USER if entry.get("sender") == "user" else Sender.ASSISTANT
        messages.append(
            ChatMessage(
                sender=sender,
                content=str(entry.get("content") or ""),
                timestamp=_parse_timestamp(entry.get("timestamp")),
            )
        )
    return messages


async def migrate_legacy_history(store: "SessionStore", base_path: Path) -> ChatSession | None:
    """Import ``<base_path>/chat_history.json`` as a session, once.

    Returns:
        The imported session, or None when there was nothing to import
    """
    legacy_path = Path(base_path) / LEGACY_HISTORY_FILENAME
    if not legacy_path.is_file():
        return None

    messages = read_legacy_history(legacy_path)
    session = None
    if messages:
        session = ChatSession(
            name=IMPORTED_SESSION_NAME,
            messages=messages,
            created_at=messages[0].timestamp,
            updated_at=messages[-1].timestamp,
        )
        await store.save_session(session)
        logger.info(
            "Imported legacy chat history session_id=%s message_count=%d",
            session.id,
            len(messages),
        )

    done_path = legacy_path.with_name(legacy_path.name + MIGRATED_SUFFIX)
    try:
        legacy_path.replace(done_path)
    except OSError as e:
        raise StorageError(
            f"failed to retire legacy history: {e}", "migrate", legacy_path
        ) from e
    return session
