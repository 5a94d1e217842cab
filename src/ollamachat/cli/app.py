"""Main CLI application using Typer."""
import asyncio
import contextlib
import shlex
import signal
from collections.abc import Iterator
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..chat import (
    ChatCallbacks,
    ChatOrchestrator,
    TurnStatus,
    export_transcript,
)
from ..config import AppConfig
from ..errors import ChatError, ProviderError, StorageError
from ..log import configure_logging
from ..sessions import ChatSession, Sender
from .providers import get_chat_defaults, get_config, get_llm, get_store

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="ollamachat",
    help="Chat with local Ollama models from the terminal, with persistent sessions",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

REPL_HELP = """\
[bold]Commands[/bold]
  /new [NAME]                 start a new session
  /sessions                   list sessions
  /switch ID                  switch to another session
  /delete ID                  delete a session
  /set key=value ...          session settings: model, context, temperature
  /model NAME                 make NAME the default model
  /models                     list models offered by the server
  /export PATH                write the transcript to a text file
  /help                       show this help
  /quit                       leave (also: exit, quit, q)
Press Ctrl-C while a response is streaming to cancel it."""


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (default: $OLLAMACHAT_CONFIG or configs/config.yaml)"
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error"
    )
):
    """Load configuration and set up logging for every command."""
    settings = get_config(config, console)
    configure_logging(log_level or settings.app.log_level)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> AppConfig:
    return ctx.obj


def _format_time(session: ChatSession) -> str:
    return f"{session.updated_at.astimezone():%Y-%m-%d %H:%M}"


def _sessions_table(sessions: list[ChatSession], current_id: str | None = None) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Messages", justify="right")
    table.add_column("Model")
    table.add_column("Updated")

    for session in sessions:
        marker = "* " if session.id == current_id else ""
        table.add_row(
            f"{marker}{session.id}",
            session.name,
            str(len(session.messages)),
            session.model or "[dim]default[/dim]",
            _format_time(session),
        )
    return table


def _print_messages(session: ChatSession) -> None:
    for message in session.messages:
        if message.sender is Sender.USER:
            console.print("[bold yellow]You:[/bold yellow]")
        else:
            console.print("[bold green]LLM:[/bold green]")
        console.print(message.content, markup=False, highlight=False)
        console.print()


class ConsoleCallbacks(ChatCallbacks):
    """Stream assistant output straight to the console."""

    def __init__(self, output: Console):
        self._console = output

    def on_chunk(self, text: str, is_new_turn: bool) -> None:
        if is_new_turn:
            self._console.print("[bold green]LLM:[/bold green] ", end="")
        self._console.print(text, end="", markup=False, highlight=False)

    def on_turn_finished(self, status: TurnStatus, error: str | None) -> None:
        self._console.print()
        if status is TurnStatus.CANCELED:
            self._console.print("[yellow]Request canceled[/yellow]\n")
        elif status is TurnStatus.FAILED:
            self._console.print(f"[red]Error: {error}[/red]\n")
        else:
            self._console.print()


@contextlib.contextmanager
def _interrupt_cancels_turn(orchestrator: ChatOrchestrator) -> Iterator[None]:
    """While active, Ctrl-C cancels the streaming turn instead of exiting."""
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel_current_turn)
        installed = True
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _parse_settings(args: list[str], session: ChatSession) -> dict[str, str]:
    values = {
        "model": session.model,
        "context": str(session.max_context_messages),
        "temperature": str(session.temperature),
    }
    for arg in args:
        key, sep, value = arg.partition("=")
        key = key.strip().lower()
        if not sep or key not in values:
            raise ValueError(f"expected model=..., context=... or temperature=..., got '{arg}'")
        values[key] = value
    return values


async def _handle_command(orchestrator: ChatOrchestrator, line: str) -> bool:
    """Run one slash command. Returns False when the REPL should stop."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return True

    command, args = parts[0].lower(), parts[1:]

    if command in ("/quit", "/exit"):
        return False

    if command == "/help":
        console.print(REPL_HELP)

    elif command == "/new":
        session = await orchestrator.create_session(" ".join(args) or None)
        console.print(f"[green]Started session {session.name} ({session.id})[/green]")

    elif command == "/sessions":
        current = orchestrator.current_session
        console.print(_sessions_table(orchestrator.sessions, current.id))

    elif command == "/switch" and len(args) == 1:
        session = await orchestrator.switch_session(args[0])
        console.print(f"[green]Switched to {session.name} ({session.id})[/green]\n")
        _print_messages(session)

    elif command == "/delete" and len(args) == 1:
        await orchestrator.delete_session(args[0])
        current = orchestrator.current_session
        console.print(f"[green]Deleted {args[0]}[/green]")
        console.print(f"[dim]Current session: {current.name} ({current.id})[/dim]")

    elif command == "/set" and args:
        try:
            values = _parse_settings(args, orchestrator.current_session)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            return True
        session = await orchestrator.update_session_settings(
            values["model"], values["context"], values["temperature"]
        )
        console.print(
            f"[green]Settings saved[/green] [dim]model={session.model or 'default'} "
            f"context={session.max_context_messages} temperature={session.temperature}[/dim]"
        )

    elif command == "/model" and len(args) == 1:
        await orchestrator.select_default_model(args[0])
        console.print(f"[green]Default model: {orchestrator.effective_model()}[/green]")

    elif command == "/models":
        models = await orchestrator.list_models()
        if not models:
            console.print("[yellow]No models installed[/yellow]")
        for model in models:
            console.print(f"  {model.name}")

    elif command == "/export" and len(args) == 1:
        path = export_transcript(orchestrator.current_session, args[0])
        console.print(f"[green]Transcript written to {path}[/green]")

    else:
        console.print(f"[red]Unknown command or missing argument: {line}[/red]")
        console.print("[dim]Type /help for the list of commands[/dim]")

    return True


@app.command()
def chat(
    ctx: typer.Context,
    session_id: str | None = typer.Option(
        None,
        "--session",
        "-s",
        help="Session to resume (default: most recently used)"
    )
):
    """Interactive chat with streaming responses."""
    settings = _settings(ctx)

    async def _chat():
        store = get_store(settings)
        llm = get_llm(settings, console)
        orchestrator = ChatOrchestrator(
            provider=llm,
            store=store,
            defaults=get_chat_defaults(settings),
            callbacks=ConsoleCallbacks(console),
        )

        try:
            await store.connect()
            session = await orchestrator.start()
            if session_id:
                session = await orchestrator.switch_session(session_id)

            console.print(Panel(
                f"Session: [bold]{session.name}[/bold] ({session.id})\n"
                f"Model: [bold]{orchestrator.effective_model()}[/bold]",
                title="[bold cyan]OllamaChat[/bold cyan]",
                expand=False,
            ))
            console.print("[dim]Type /help for commands, /quit to leave[/dim]\n")

            while True:
                try:
                    user_input = console.input("[bold yellow]You:[/bold yellow] ")
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                text = user_input.strip()
                if not text:
                    continue

                if text.lower() in ("exit", "quit", "q"):
                    console.print("[dim]Goodbye![/dim]")
                    break

                if text.startswith("/"):
                    try:
                        if not await _handle_command(orchestrator, text):
                            console.print("[dim]Goodbye![/dim]")
                            break
                    except ChatError as e:
                        console.print(f"[red]Error: {e}[/red]")
                    continue

                handler = await orchestrator.submit_user_message(user_input)
                if handler is None:
                    continue
                with _interrupt_cancels_turn(orchestrator):
                    await handler

        except ChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await orchestrator.close()
            await store.disconnect()

    asyncio.run(_chat())


@app.command()
def sessions(ctx: typer.Context):
    """List saved sessions, most recent first."""
    settings = _settings(ctx)

    async def _sessions():
        store = get_store(settings)
        try:
            await store.connect()
            items = await store.list_sessions()
            if not items:
                console.print("[yellow]No sessions found[/yellow]")
                return
            console.print(_sessions_table(items))
        except ChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_sessions())


@app.command()
def show(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID")
):
    """Print the messages of a session."""
    settings = _settings(ctx)

    async def _show():
        store = get_store(settings)
        try:
            await store.connect()
            session = await store.load_session(session_id)
            console.print(f"[bold cyan]{session.name}[/bold cyan] [dim]({session.id})[/dim]\n")
            _print_messages(session)
        except ChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_show())


@app.command()
def delete(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt"
    )
):
    """Delete a saved session."""
    settings = _settings(ctx)

    async def _delete():
        store = get_store(settings)
        try:
            await store.connect()
            if not force:
                confirm = typer.confirm(f"Delete session {session_id}?")
                if not confirm:
                    console.print("[dim]Aborted.[/dim]")
                    return
            await store.delete_session(session_id)
            console.print(f"[green]Deleted session {session_id}[/green]")
        except ChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_delete())


@app.command()
def export(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session ID"),
    path: Path = typer.Argument(..., help="Output file (.txt is added if missing)")
):
    """Export a session transcript as plain text."""
    settings = _settings(ctx)

    async def _export():
        store = get_store(settings)
        try:
            await store.connect()
            session = await store.load_session(session_id)
            written = export_transcript(session, path)
            console.print(f"[green]Transcript written to {written}[/green]")
        except ChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await store.disconnect()

    asyncio.run(_export())


@app.command()
def models(ctx: typer.Context):
    """List models available on the Ollama server."""
    settings = _settings(ctx)

    async def _models():
        llm = get_llm(settings, console)
        try:
            items = await llm.list_models()
            if not items:
                console.print("[yellow]No models installed[/yellow]")
                return

            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Model")
            table.add_column("Default", justify="center")
            for item in items:
                is_default = item.name == settings.default_model
                table.add_row(item.name, "[green]+[/green]" if is_default else "")
            console.print(table)
        except ProviderError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await llm.close()

    asyncio.run(_models())


@app.command()
def health(ctx: typer.Context):
    """Check the session store and the Ollama server."""
    settings = _settings(ctx)

    async def _health():
        healthy = True

        store = get_store(settings)
        try:
            await store.connect()
            await store.ping()
            console.print(f"[green]+[/green] Session store ({store.backend_type}): OK")
        except StorageError as e:
            console.print(f"[red]x[/red] Session store: FAILED ({e})")
            healthy = False
        finally:
            await store.disconnect()

        llm = get_llm(settings, console)
        try:
            items = await llm.list_models()
            console.print(
                f"[green]+[/green] {llm.name} at {settings.llm.ollama.base_url}: "
                f"OK ({len(items)} models)"
            )
        except ProviderError as e:
            console.print(f"[red]x[/red] {llm.name}: FAILED ({e})")
            healthy = False
        finally:
            await llm.close()

        if not healthy:
            raise typer.Exit(code=1)

    asyncio.run(_health())


@app.command()
def version():
    """Show the installed version."""
    console.print(f"ollamachat {__version__}")


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
