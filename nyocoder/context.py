"""Editor context block prepended to the first message of a session."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

CONTEXT_OPEN = "---Context---"
CONTEXT_CLOSE = "---End Context---"
CONTEXT_SEPARATOR = "\n\n---\n\n"
SURROUNDING_LINES = 5


@dataclass
class EditorContext:
    """Snapshot of what the user is looking at.

    ``cursor_line`` and ``cursor_column`` are 1-based. ``active_text`` is the
    content of the active file, used for the surrounding-code excerpt.
    """
    open_files: List[str] = field(default_factory=list)
    active_file: Optional[str] = None
    cursor_line: Optional[int] = None
    cursor_column: Optional[int] = None
    active_text: Optional[str] = None
    selected_text: str = ""

    @classmethod
    def from_paths(cls, paths: List[str], cursor_line: Optional[int] = None,
                   cursor_column: int = 1) -> "EditorContext":
        """Build a context from files named on the command line; the last one is active."""
        files = [str(Path(p).expanduser().resolve()) for p in paths]
        ctx = cls(open_files=files)
        if files:
            ctx.active_file = files[-1]
            active = Path(files[-1])
            if active.is_file():
                ctx.active_text = active.read_text(encoding="utf-8", errors="replace")
            if cursor_line:
                ctx.cursor_line = cursor_line
                ctx.cursor_column = cursor_column
        return ctx

    def surrounding_code(self, context_lines: int = SURROUNDING_LINES) -> str:
        """Lines around the cursor, the cursor line marked with ``>``."""
        if self.active_text is None or not self.cursor_line:
            return ""
        lines = self.active_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        start = max(0, self.cursor_line - 1 - context_lines)
        end = min(len(lines), self.cursor_line + context_lines)
        out = []
        for i in range(start, end):
            marker = "> " if i == self.cursor_line - 1 else "  "
            out.append(marker + lines[i])
        return "\n".join(out).rstrip()

    def build_prompt_context(self) -> str:
        """Render the context section, or "" when there is nothing to say."""
        parts: List[str] = []
        has_context = False

        if self.open_files:
            parts.append("Open files in editor:")
            for path in self.open_files:
                if not path or not path.strip():
                    continue
                marker = " *" if self.active_file and path == self.active_file else ""
                parts.append(f"  - {path}{marker}")
                has_context = True
            parts.append("")

        if self.active_file:
            parts.append(f"Active file: {self.active_file}")
            has_context = True

            if self.cursor_line:
                parts.append(f"Cursor position: Line {self.cursor_line}, Column {self.cursor_column or 1}")
                code = self.surrounding_code()
                if code:
                    parts.extend(["Surrounding code:", "```", code, "```"])

            if self.selected_text:
                parts.extend(["Selected text:", "```", self.selected_text, "```"])

        if not has_context:
            return ""
        return f"{CONTEXT_OPEN}\n" + "\n".join(parts).rstrip() + f"\n{CONTEXT_CLOSE}"


def with_context(message: str, context: Optional[EditorContext]) -> str:
    """Prefix ``message`` with the context block when one is available."""
    if context is None:
        return message
    block = context.build_prompt_context()
    if not block.strip():
        return message
    return block + CONTEXT_SEPARATOR + message
