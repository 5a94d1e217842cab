"""Prompt assembly for a single turn.

The prompt is plain text: a preamble, the most recent messages of the
session as ``role: content`` lines, then the new user input and an open
assistant line for the model to complete.
"""

from functools import lru_cache
from pathlib import Path

from ..sessions.models import ChatMessage, ChatSession

_PACKAGED_PREAMBLE = Path(__file__).with_name("system_prompt.txt")


@lru_cache(maxsize=1)
def get_system_prompt() -> str:
    """The preamble opening every prompt.

    A ``prompts/system.txt`` in the working directory takes precedence over
    the packaged default.
    """
    local_path = Path.cwd() / "prompts" / "system.txt"
    path = local_path if local_path.is_file() else _PACKAGED_PREAMBLE
    return path.read_text(encoding="utf-8").rstrip()


def context_window(messages: list[ChatMessage], limit: int) -> list[ChatMessage]:
    """The last ``limit`` messages in chronological order (none when limit <= 0)."""
    if limit <= 0:
        return []
    return messages[-limit:]


def build_prompt(
    session: ChatSession,
    new_user_text: str,
    system_prompt: str | None = None,
) -> str:
    """Build the prompt sent to the provider for one turn.

    The window is counted in messages, not tokens.

    Args:
        session: Session whose history provides context (not modified)
        new_user_text: Text the user just submitted
        system_prompt: Preamble override; defaults to get_system_prompt()

    Returns:
        Complete prompt text
    """
    preamble = get_system_prompt() if system_prompt is None else system_prompt

    parts = [f"{preamble}\n\n"]
    for message in context_window(session.messages, session.max_context_messages):
        parts.append(f"{message.sender.value}: {message.content}\n")
    parts.append(f"user: {new_user_text}\nassistant:")

    return "".join(parts)
