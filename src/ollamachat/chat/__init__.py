"""Chat module: prompt assembly, turn orchestration and transcript export."""

from .context import build_prompt, context_window, get_system_prompt
from .data_structures import (
    CANCELED_MARKER,
    ERROR_MARKER_PREFIX,
    ChatCallbacks,
    ChatDefaults,
    TurnHandler,
    TurnResult,
    TurnState,
    TurnStatus,
)
from .orchestrator import ChatOrchestrator
from .transcript import export_transcript, format_transcript

__all__ = [
    "CANCELED_MARKER",
    "ERROR_MARKER_PREFIX",
    "ChatCallbacks",
    "ChatDefaults",
    "ChatOrchestrator",
    "TurnHandler",
    "TurnResult",
    "TurnState",
    "TurnStatus",
    "build_prompt",
    "context_window",
    "export_transcript",
    "format_transcript",
    "get_system_prompt",
]
