"""Process execution: the shell tool and the shared run-with-timeout helper."""

import os
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..errors import ShellBlockedError, ShellTimeoutError
from ..logger import get_logger

_log = get_logger(__name__)

TRUNCATION_MARKER = "\n...(truncated)...\n"


def run_process(args: Sequence[str], cwd: Optional[str] = None, timeout: int = 30,
                combine_stderr: bool = True) -> Tuple[str, int]:
    """Run ``args`` and return ``(output, exit_code)``.

    The child is killed when ``timeout`` seconds elapse and
    ``ShellTimeoutError`` is raised; the exit code is never invented.
    """
    program = args[0] if args else ""
    try:
        result = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if combine_stderr else subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            cwd=cwd,
            env={**os.environ, "TERM": "dumb"},
        )
    except subprocess.TimeoutExpired as e:
        # subprocess.run kills the child before re-raising.
        raise ShellTimeoutError(timeout, program) from e

    output = result.stdout or ""
    if not combine_stderr and result.stderr:
        output = f"{output}\n{result.stderr}" if output else result.stderr
    return output, result.returncode


def truncate_middle(text: str, limit: int) -> str:
    """Keep the head and the tail of ``text`` when it exceeds ``limit`` chars."""
    if limit <= 0 or len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + TRUNCATION_MARKER + text[-half:]


class ShellExecutor:
    """Run ``bash -c`` commands in the project root, refusing dangerous ones."""

    DANGEROUS_PATTERNS = [
        r"\brm\b\s+-[^\s;|&]*r[^\s;|&]*f[^\s;|&]*\s+/(?:\s|$)",
        r"\b(?:mkfs(?:\.[a-z0-9_+\-]+)?|fdisk|parted|sfdisk|wipefs)\b",
        r"\bdd\b[^\n;|&]*\bof\s*=\s*/dev/",
        r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
        r"(?:>|>>)\s*/dev/sd[a-z]\d*",
        r"\b(?:curl|wget)\b[^\n;|&]*\|\s*(?:sh|bash|zsh|ksh)\b",
        r"\b(?:shutdown|reboot|halt|poweroff)\b",
    ]

    _MAX_ANALYSIS_DEPTH = 3

    def __init__(self, project_root: str, blocked_commands: Optional[List[str]] = None,
                 timeout: int = 30, max_output: int = 8000):
        self.project_root = Path(project_root).resolve()
        self.timeout = timeout
        self.max_output = max_output
        self.blocked = [b for b in (blocked_commands or []) if b and b.strip()]
        self._dangerous_regexes = [re.compile(p, re.IGNORECASE) for p in self.DANGEROUS_PATTERNS]
        self._blocked_rules = [(b, self._canonicalize(b)) for b in self.blocked]

    @staticmethod
    def _canonicalize(command: str) -> str:
        """Lower-case and strip quoting noise so ``r'm' -rf`` reads as ``rm -rf``."""
        normalized = command.lower().replace("\\\n", " ")
        normalized = re.sub(r"\$\{?\s*ifs\s*\}?", " ", normalized)
        normalized = re.sub(r"['\"`\\]", "", normalized)
        return re.sub(r"\s+", " ", normalized).strip()

    @staticmethod
    def _substitutions(command: str) -> List[str]:
        """Bodies of ``$(...)`` and backtick substitutions, outermost first."""
        found = re.findall(r"`([^`]+)`", command)
        i = 0
        while i < len(command) - 1:
            if command[i] == "$" and command[i + 1] == "(":
                depth, start, i = 1, i + 2, i + 2
                while i < len(command) and depth:
                    if command[i] == "(":
                        depth += 1
                    elif command[i] == ")":
                        depth -= 1
                    i += 1
                found.append(command[start:i - 1] if depth == 0 else command[start:])
            else:
                i += 1
        return [f.strip() for f in found if f.strip()]

    def _fragments(self, command: str) -> List[str]:
        fragments, frontier = [], [command]
        for _ in range(self._MAX_ANALYSIS_DEPTH):
            nxt = []
            for fragment in frontier:
                if fragment in fragments:
                    continue
                fragments.append(fragment)
                nxt.extend(self._substitutions(fragment))
                nxt.extend(m.strip() for m in re.findall(r"\beval\b\s+([^\n]+)", fragment))
            if not nxt:
                break
            frontier = nxt
        return fragments

    def block_reason(self, command: str) -> Optional[str]:
        """Why ``command`` must not run, or None."""
        for fragment in self._fragments(command):
            canonical = self._canonicalize(fragment)
            for raw, rule in self._blocked_rules:
                if rule and (rule in canonical or rule.replace(" ", "") in canonical.replace(" ", "")):
                    return f"matches blocked command '{raw}'"
            for pattern in self._dangerous_regexes:
                if pattern.search(fragment) or pattern.search(canonical):
                    return f"matches dangerous pattern '{pattern.pattern}'"
        return None

    def execute(self, command: str) -> Tuple[str, int]:
        """Run ``command``; stdout and stderr are merged, the exit code is the child's."""
        reason = self.block_reason(command)
        if reason:
            _log.warning("Command blocked: %s", reason)
            raise ShellBlockedError(reason)

        _log.debug("Executing command: %s", command[:100])
        output, code = run_process(["bash", "-c", command], cwd=str(self.project_root),
                                   timeout=self.timeout)
        output = truncate_middle(output, self.max_output)
        return output, code
