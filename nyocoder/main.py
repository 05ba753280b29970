"""
nyocoder: AI coding assistant for your terminal.

Command: nyocoder run
"""

import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from . import __version__
from .config import CONFIG_DIR, HISTORY_FILE, Config
from .context import EditorContext
from .logger import setup_logger
from .orchestrator import TurnState
from .session import Session, SessionBusy

console = Console()


def _load_config(project_dir, model, api_key, llm_server, verbose) -> Config:
    config = Config.load(project_dir)
    if model:
        config.model = model
    if api_key:
        config.api_key = api_key
    if llm_server:
        config.llm_server = llm_server.strip().rstrip("/")
    if verbose:
        config.verbose = True
    setup_logger("nyocoder", verbose=config.verbose)
    if not Path(config.project_root).is_dir():
        console.print(f"[red]Error: '{project_dir}' is not a valid directory.[/red]")
        sys.exit(1)
    return config


def _editor_context(files, line) -> Optional[EditorContext]:
    return EditorContext.from_paths(list(files), cursor_line=line) if files else None


def _run_turn(session: Session, message: str) -> None:
    """Run one turn on a worker while this thread answers approvals."""
    from .ui import serve_approvals

    worker = session.send_async(message)
    if worker is None:
        console.print("[yellow]  A request is already running.[/yellow]")
        return
    while worker.is_alive():
        try:
            serve_approvals(console, session.gate, worker)
        except KeyboardInterrupt:
            session.request_stop()
    console.print()


def _handle_command(command: str, session: Session) -> Session:
    """Run a slash command. Returns the session to continue with, or None to quit."""
    from .ui import HELP_TEXT, render_config

    name = command.split()[0].lower()
    if name in ("/quit", "/exit"):
        return None
    if name == "/help":
        console.print(HELP_TEXT)
    elif name == "/reset":
        session.reset()
        console.print("[dim]  Conversation cleared.[/dim]")
    elif name == "/summarize":
        count = session.summarize()
        if count:
            console.print(f"[dim]  Summarized {count} message(s). {session.status_text()}[/dim]")
        else:
            console.print("[dim]  Nothing to summarize.[/dim]")
    elif name == "/tokens":
        console.print(f"[dim]  {session.status_text()}[/dim]")
    elif name == "/config":
        fresh = Config.load(session.config.project_root)
        fresh.verbose = fresh.verbose or session.config.verbose
        new_session = session.rebuild(fresh)
        session.close()
        render_config(console, fresh)
        return new_session
    else:
        console.print(f"[yellow]  Unknown command: {name}. Type /help.[/yellow]")
    return session


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """nyocoder: AI coding assistant for your terminal."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--model", "-m", default=None, help="Model name override")
@click.option("--api-key", "-k", default=None, help="API key override")
@click.option("--llm-server", "-s", default=None, help="LLM server base URL override")
@click.option("--project-dir", "-d", default=".", help="Project directory")
@click.option("--file", "-f", "files", multiple=True, help="Open file to share as context (repeatable)")
@click.option("--line", type=int, default=None, help="Cursor line in the last --file")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(model, api_key, llm_server, project_dir, files, line, verbose):
    """Start an interactive session."""
    from .ui import (
        PTK_STYLE,
        SlashCommandCompleter,
        build_banner,
        make_prompt_html,
        render_startup,
    )

    console.print(build_banner(__version__))
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, model, api_key, llm_server, verbose)
    render_startup(console, config)

    from .ui import ConsoleOutput

    session = Session(
        config,
        output=ConsoleOutput(console),
        context=_editor_context(files, line),
        on_summarized=lambda chars: console.print(f"[dim]  History now {chars:,} chars.[/dim]"),
    )

    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings
    from prompt_toolkit.shortcuts import CompleteStyle

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    prompt = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        multiline=False,
        completer=SlashCommandCompleter(),
        complete_while_typing=True,
        style=PTK_STYLE,
        complete_style=CompleteStyle.COLUMN,
    )

    repl_kb = KeyBindings()

    @repl_kb.add("escape", "enter")
    def _newline(event):
        event.current_buffer.insert_text("\n")

    @repl_kb.add("/")
    def _slash_menu(event):
        buffer = event.current_buffer
        buffer.insert_text("/")
        if buffer.document.text == "/":
            buffer.start_completion(select_first=True)

    pending_ctrl_d_exit = False

    try:
        while True:
            try:
                user_input = prompt.prompt(make_prompt_html(), key_bindings=repl_kb).strip()
                pending_ctrl_d_exit = False
            except EOFError:
                if pending_ctrl_d_exit:
                    console.print("\n[dim]Goodbye![/dim]")
                    break
                pending_ctrl_d_exit = True
                console.print("\n[dim]Press Ctrl-D again to exit.[/dim]")
                continue
            except KeyboardInterrupt:
                console.print("\n[dim]Goodbye![/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                try:
                    next_session = _handle_command(user_input, session)
                except SessionBusy as error:
                    console.print(f"[yellow]  {error}[/yellow]")
                    continue
                if next_session is None:
                    break
                session = next_session
                continue

            _run_turn(session, user_input)
    finally:
        session.close()


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--model", "-m", default=None)
@click.option("--project-dir", "-d", default=".")
@click.option("--file", "-f", "files", multiple=True, help="Open file to share as context (repeatable)")
@click.option("--yes", "-y", is_flag=True, help="Approve every tool call without asking")
@click.option("--verbose", "-v", is_flag=True)
def ask(message, model, project_dir, files, yes, verbose):
    """Run a single query."""
    from .approval import auto_approve, auto_reject
    from .ui import ConsoleOutput

    config = _load_config(project_dir, model, None, None, verbose)
    session = Session(
        config,
        approve=auto_approve if yes else auto_reject,
        output=ConsoleOutput(console),
        context=_editor_context(files, None),
    )
    try:
        state = session.send(" ".join(message))
    finally:
        session.close()
    console.print()
    if state is TurnState.FAILED:
        sys.exit(1)


@cli.command("config")
@click.option("--project-dir", "-d", default=".")
def config_cmd(project_dir):
    """Show configuration."""
    from .ui import render_config

    render_config(console, Config.load(project_dir))


if __name__ == "__main__":
    cli()
