"""Plain-text transcript export."""

import logging
from pathlib import Path

from ..errors import StorageError
from ..sessions.models import ChatSession, Sender

logger = logging.getLogger(__name__)

USER_LABEL = "You:"
ASSISTANT_LABEL = "LLM:"


def format_transcript(session: ChatSession) -> str:
    """Render the session as labelled blocks separated by blank lines."""
    blocks = []
    for message in session.messages:
        label = USER_LABEL if message.sender is Sender.USER else ASSISTANT_LABEL
        blocks.append(f"{label}\n{message.content}\n\n")
    return "".join(blocks)


def export_transcript(session: ChatSession, path: str | Path) -> Path:
    """Write the transcript to ``path``, adding a ``.txt`` suffix if missing.

    Returns:
        The path actually written

    Raises:
        StorageError: If the file cannot be written
    """
    target = Path(path)
    if target.suffix.lower() != ".txt":
        target = target.with_name(f"{target.name}.txt")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(format_transcript(session), encoding="utf-8")
    except OSError as e:
        raise StorageError(f"failed to export transcript: {e}", "export", target) from e

    logger.info(
        "Exported transcript session_id=%s messages=%d path=%s",
        session.id, len(session.messages), target,
    )
    return target
