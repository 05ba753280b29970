"""File operations: read, write, move, copy, delete, list, grep."""

import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from ..logger import get_logger
from .shell import run_process, truncate_middle

_log = get_logger(__name__)

GREP_TIMEOUT = 60

GREP_EXCLUDE_DIRS = (
    ".git", ".svn", ".hg", ".venv", "venv", "__pycache__", "node_modules",
    "bin", "obj", ".vs", "packages", "dist", "build", ".idea", ".vscode",
    "target", "vendor", "bower_components", ".nuget", "TestResults",
)

GREP_EXCLUDE_FILES = (
    "*.pyc", "*.pyo", "*.exe", "*.dll", "*.so", "*.dylib", "*.obj", "*.o",
    "*.a", "*.lib", "*.pdb", "*.ilk", "*.class", "*.jar", "*.war", "*.ear",
    "*.zip", "*.tar", "*.gz", "*.rar", "*.png", "*.jpg", "*.jpeg", "*.gif",
    "*.bmp", "*.ico", "*.svg", "*.pdf", "*.mp3", "*.mp4", "*.avi", "*.mov",
    "*.ttf", "*.woff", "*.woff2", "*.eot", "*.min.js", "*.min.css", "*.map",
    "*.lock", "*.cache",
)


class FileOperationError(Exception):
    pass


def format_file_size(size: int) -> str:
    """``1536`` -> ``1.5 KB``; at most two decimals, trailing zeros dropped."""
    units = ("B", "KB", "MB", "GB", "TB")
    value = float(size)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        order += 1
        value /= 1024
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[order]}"


class FileOps:
    """Filesystem tools confined to the project root.

    Methods return the tool output text. User-facing failures raise
    ``FileOperationError``.
    """

    def __init__(self, project_root: str, max_read_lines: int = 500, max_output: int = 8000):
        self.project_root = Path(project_root).resolve()
        self.max_read_lines = max_read_lines
        self.max_output = max_output

    def _resolve(self, path: str) -> Path:
        expanded = os.path.expandvars(os.path.expanduser(path.strip()))
        p = Path(expanded)
        if not p.is_absolute():
            p = self.project_root / p
        p = p.resolve()
        try:
            p.relative_to(self.project_root)
        except ValueError:
            raise FileOperationError(
                f"Access denied: '{path}' is outside project root ({self.project_root})"
            )
        return p

    def read_file(self, path: str, offset: int = 0) -> str:
        fp = self._resolve(path)
        if not fp.is_file():
            raise FileOperationError(f"File not found: {path}")
        offset = max(0, offset)

        content = fp.read_text(encoding="utf-8", errors="replace")
        lines = content.split("\n")
        if content.endswith("\n"):
            lines.pop()
        total = len(lines)

        if offset >= total:
            raise FileOperationError(
                f"File has {total} lines (0-indexed). Line offset {offset} exceeds file length."
            )

        window = lines[offset:offset + self.max_read_lines]
        end = offset + len(window) - 1
        out = f"File has {total} lines, reading lines {offset}-{end}\n---\n" + "\n".join(window)
        if offset + len(window) < total:
            out += "\n...[truncated]"
        return out

    def write_file(self, path: str, content: str) -> str:
        fp = self._resolve(path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fp.write_text(content, encoding="utf-8")
        _log.debug("Wrote %d chars to %s", len(content), fp)
        return f"File written successfully: {path}"

    def _transfer_paths(self, source: str, destination: str) -> Tuple[Path, Path]:
        src = self._resolve(source)
        dst = self._resolve(destination)
        if not src.is_file():
            raise FileOperationError(f"Source file not found: {source}")
        if dst.exists():
            raise FileOperationError(f"Destination file already exists: {destination}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        return src, dst

    def move_file(self, source: str, destination: str) -> str:
        src, dst = self._transfer_paths(source, destination)
        shutil.move(str(src), str(dst))
        return f"File moved successfully from '{source}' to '{destination}'"

    def copy_file(self, source: str, destination: str) -> str:
        src, dst = self._transfer_paths(source, destination)
        shutil.copy2(str(src), str(dst))
        return f"File copied successfully from '{source}' to '{destination}'"

    def delete_file(self, path: str) -> str:
        fp = self._resolve(path)
        if not fp.is_file():
            raise FileOperationError(f"File not found: {path}")
        fp.unlink()
        return f"File deleted successfully: {path}"

    def list_directory(self, path: str) -> str:
        fp = self._resolve(path)
        if not fp.is_dir():
            raise FileOperationError(f"Directory not found: {path}")

        entries = sorted(fp.iterdir(), key=lambda e: e.name)
        dirs = [e for e in entries if e.is_dir()]
        files = [e for e in entries if e.is_file()]

        out: List[str] = [f"Contents of: {path}", ""]
        if dirs:
            out.append("Directories:")
            out.extend(f"  [DIR]  {d.name}" for d in dirs)
            out.append("")
        if files:
            out.append("Files:")
            out.extend(f"  [FILE] {f.name} ({format_file_size(f.stat().st_size)})" for f in files)
        if not dirs and not files:
            out.append("Directory is empty.")
        return "\n".join(out) + "\n"

    def grep_command(self, pattern: str, directory: Path, file_pattern: str = "",
                     case_insensitive: bool = False) -> List[str]:
        cmd = ["grep", "-r"]
        if case_insensitive:
            cmd.append("-i")
        cmd.append("-E")
        if file_pattern:
            cmd.append(f"--include={file_pattern}")
        cmd.extend(f"--exclude-dir={d}" for d in GREP_EXCLUDE_DIRS)
        cmd.extend(f"--exclude={f}" for f in GREP_EXCLUDE_FILES)
        cmd.extend(["-e", pattern, str(directory)])
        return cmd

    def grep_search(self, pattern: str, directory: Optional[str] = None,
                    file_pattern: str = "", case_insensitive: bool = False) -> Tuple[str, int]:
        """Recursive regex search. Returns ``(output, exit_code)``."""
        if directory:
            search_root = self._resolve(directory)
        else:
            search_root = self.project_root
        if not search_root.is_dir():
            raise FileOperationError(f"Error: Directory not found: {directory or search_root}")

        cmd = self.grep_command(pattern, search_root, file_pattern, case_insensitive)
        output, code = run_process(cmd, cwd=str(self.project_root), timeout=GREP_TIMEOUT,
                                   combine_stderr=False)
        if code in (0, 1) and not output.strip():
            return f"No matches found for pattern: {pattern}", 0
        return truncate_middle(output, self.max_output), code
