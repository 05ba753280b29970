"""Terminal UI: streamed output, approval prompt, diff panel, slash-command menu."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .approval import ApprovalGate, ApprovalOutcome, ApprovalRequest
from .diff_utils import compute_diff_stats, format_diff_summary

THEME_ACCENT = "#7FA6D9"
THEME_PROMPT = "#B7C6D8"
DIFF_PREVIEW_LINES = 40

PTK_STYLE = Style.from_dict({
    "completion-menu": "bg:default",
    "completion-menu.completion": "bg:default #C8D8EE",
    "completion-menu.completion.current": "bg:#1E2834 #E7EEF8",
    "completion-menu.command": "#57DB9C",
    "completion-menu.description": "#7AA7E8",
})


@dataclass(frozen=True)
class SlashCommandSpec:
    command: str
    description: str


SLASH_COMMAND_SPECS: tuple[SlashCommandSpec, ...] = (
    SlashCommandSpec("/help", "Show help"),
    SlashCommandSpec("/summarize", "Summarize older history"),
    SlashCommandSpec("/tokens", "Show context usage"),
    SlashCommandSpec("/config", "Show config"),
    SlashCommandSpec("/reset", "Reset chat"),
    SlashCommandSpec("/quit", "Quit"),
)


def build_banner(version: str) -> str:
    return (
        f"[bold {THEME_ACCENT}]nyocoder[/bold {THEME_ACCENT}] "
        f"[dim]v{version} · AI coding assistant[/dim]"
    )


def build_help_text() -> str:
    width = max(len(spec.command) for spec in SLASH_COMMAND_SPECS)
    lines = ["", f"[bold {THEME_ACCENT}]Commands:[/bold {THEME_ACCENT}]"]
    for spec in SLASH_COMMAND_SPECS:
        lines.append(f"  {spec.command:<{width}}  {spec.description}")
    lines.extend([
        "",
        f"[bold {THEME_ACCENT}]Tips:[/bold {THEME_ACCENT}]",
        "  Esc → Enter   Multi-line input",
        "  Ctrl-C         Stop the running request",
        "  Ctrl-D         Exit",
    ])
    return "\n".join(lines)


HELP_TEXT = build_help_text()


def make_prompt_html() -> HTML:
    return HTML(
        f'<style fg="{THEME_PROMPT}">nyocoder</style>'
        f'<style fg="#66788A"> › </style>'
    )


def render_startup(console: Console, config) -> None:
    key_status = "[green]✓[/green]" if config.api_key else "[dim]·[/dim]"
    console.print(
        f"[dim]model[/dim] [bold]{config.model}[/bold]"
        f" [dim]• server[/dim] {config.llm_server}"
        f" [dim]• key[/dim] {key_status}"
    )
    console.print(f"[dim]project[/dim] {config.project_root}")
    console.print(f"[dim]config[/dim] {config._config_source or '(defaults)'}")
    approval = ", ".join(config.tools_requiring_approval) or "(none)"
    console.print(f"[dim]approval[/dim] {approval}")
    console.print("[dim]/help · /summarize · Ctrl+C to stop[/dim]")
    console.print()


def render_config(console: Console, config) -> None:
    body = "\n".join(f"[dim]{k:<26}[/dim] {v}" for k, v in config.summary().items())
    console.print(Panel(body, title="[bold]config[/bold]", title_align="left",
                        border_style="#30363D", padding=(0, 1), expand=False))


class SlashCommandCompleter(Completer):
    """Prefix completion for slash commands."""

    def __init__(self, specs: Sequence[SlashCommandSpec] = SLASH_COMMAND_SPECS):
        self.specs = list(specs)

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor.lstrip()
        if not text.startswith("/") or " " in text:
            return
        for spec in self.specs:
            if spec.command.startswith(text.lower()):
                yield Completion(
                    text=spec.command,
                    start_position=-len(text),
                    display=[("class:completion-menu.command", spec.command)],
                    display_meta=spec.description,
                )


class ConsoleOutput:
    """Output sink for the orchestrator: streams raw text to the console.

    Called from the worker thread; writes are serialized so prompt output
    from the UI thread does not interleave mid-chunk.
    """

    def __init__(self, console: Console):
        self.console = console
        self._lock = threading.Lock()

    def __call__(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self.console.file.write(text)
            self.console.file.flush()


def build_diff_panel(diff: str, max_lines: int = DIFF_PREVIEW_LINES) -> Panel:
    """Build a Rich Panel containing colored diff output."""
    diff_text = Text()
    lines = diff.splitlines()
    for i, line in enumerate(lines[:max_lines]):
        if i > 0:
            diff_text.append("\n")
        if line.startswith("+") and not line.startswith("+++"):
            diff_text.append(line, style="#57DB9C")
        elif line.startswith("-") and not line.startswith("---"):
            diff_text.append(line, style="#F85149")
        elif line.startswith("@@"):
            diff_text.append(line, style="#58A6FF")
        else:
            diff_text.append(line, style="#6E7681")
    if len(lines) > max_lines:
        diff_text.append(f"\n… {len(lines) - max_lines} more lines", style="#6E7681")
    added, removed = compute_diff_stats(diff)
    return Panel(diff_text, title=format_diff_summary(added, removed), title_align="left",
                 border_style="#30363D", padding=(0, 1), expand=False)


def _split_patch_request(arguments: str) -> tuple[str, str]:
    """Header lines and diff body of a search_replace approval text."""
    marker = arguments.find("--- original")
    if marker < 0:
        return arguments, ""
    return arguments[:marker].rstrip(), arguments[marker:]


def show_approval_request(console: Console, request: ApprovalRequest) -> None:
    console.print()
    if request.tool_name == "search_replace":
        header, diff = _split_patch_request(request.arguments)
        console.print(f"  [#E3B341]?[/#E3B341] [bold]{header}[/bold]", markup=True, highlight=False)
        if diff:
            console.print(build_diff_panel(diff))
        return
    console.print(f"  [#E3B341]?[/#E3B341] Run tool: [bold]{request.tool_name}[/bold]")
    args = request.arguments
    if len(args) > 2000:
        args = args[:2000] + "\n…"
    console.print(Text(args, style="#8B949E"))


def prompt_approval(console: Console, request: ApprovalRequest) -> ApprovalOutcome:
    """Ask the user. Interrupt or EOF at the prompt stops the session."""
    show_approval_request(console, request)
    try:
        ans = console.input(
            "  [#E3B341]?[/#E3B341] "
            "[bold #E6EDF3](y)[/bold #E6EDF3][#8B949E]es[/#8B949E] / "
            "[bold #E6EDF3](n)[/bold #E6EDF3][#8B949E]o[/#8B949E] / "
            "[bold #E6EDF3](s)[/bold #E6EDF3][#8B949E]top[/#8B949E]: "
        ).strip().lower()
    except (KeyboardInterrupt, EOFError):
        return ApprovalOutcome.STOPPED
    if ans in ("y", "yes"):
        return ApprovalOutcome.APPROVED
    if ans in ("s", "stop"):
        return ApprovalOutcome.STOPPED
    return ApprovalOutcome.REJECTED


def serve_approvals(console: Console, gate: ApprovalGate, worker: threading.Thread,
                    poll: float = 0.1) -> None:
    """Answer approval requests on this thread until ``worker`` finishes."""
    while worker.is_alive():
        request: Optional[ApprovalRequest] = gate.next_request(timeout=poll)
        if request is None:
            continue
        request.resolve(prompt_approval(console, request))
