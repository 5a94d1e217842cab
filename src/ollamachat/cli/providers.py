"""Provider factory functions for CLI.

Centralizes creation of the configuration, session store and LLM provider.
Hides configuration details from command implementations.
"""

from pathlib import Path

import typer
from rich.console import Console

from ..chat import ChatDefaults
from ..config import AppConfig, load_config
from ..errors import ChatError
from ..llm import LLMProvider, create_llm_provider_from_config
from ..sessions import SessionStore, create_session_store

# Default console for output
_console = Console()


def get_config(path: Path | None = None, console: Console | None = None) -> AppConfig:
    """Load the application configuration.

    Args:
        path: Configuration file (default: $OLLAMACHAT_CONFIG or configs/config.yaml)
        console: Optional Rich console for output

    Raises:
        SystemExit: If the configuration is unreadable or invalid
    """
    con = console or _console
    try:
        return load_config(path)
    except ChatError as e:
        con.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def get_store(config: AppConfig) -> SessionStore:
    """Create the session store described by ``config.storage``."""
    return create_session_store(config.storage)


def get_llm(config: AppConfig, console: Console | None = None) -> LLMProvider:
    """Create the LLM provider described by ``config.llm``.

    Raises:
        SystemExit: If the provider is unknown or not implemented
    """
    con = console or _console
    try:
        return create_llm_provider_from_config(config)
    except ChatError as e:
        con.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)


def get_chat_defaults(config: AppConfig) -> ChatDefaults:
    """Global chat defaults derived from configuration."""
    return ChatDefaults(
        default_model=config.default_model,
        default_provider=config.llm.provider,
        max_tokens=config.llm.max_tokens,
        temperature=config.llm.temperature,
        max_context_messages=config.chat.max_context_messages,
    )
