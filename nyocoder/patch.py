"""SEARCH/REPLACE patch engine.

A patch is a list of blocks::

    <<<<<<< SEARCH
    exact text to find
    =======
    replacement text
    >>>>>>> REPLACE

Blocks apply in order to a working copy. Each SEARCH must occur exactly
once in the working copy at the time it is applied. ``preview`` never
touches the file; ``apply`` writes the result and is only called after the
caller has obtained approval.
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol

from .diff_utils import build_line_diff
from .errors import (
    PatchAmbiguous,
    PatchEmptyInstruction,
    PatchError,
    PatchNoBlocks,
    PatchNotFound,
    PatchTargetMissing,
)
from .logger import get_logger

_log = get_logger(__name__)

FENCED_BLOCK_RE = re.compile(
    r"```[\s\S]*?\n<{5,} SEARCH\r?\n(.*?)\r?\n?={5,}\r?\n(.*?)\r?\n?>{5,} REPLACE\s*\n```",
    re.DOTALL,
)
BLOCK_RE = re.compile(
    r"<{5,} SEARCH\r?\n(.*?)\r?\n?={5,}\r?\n(.*?)\r?\n?>{5,} REPLACE",
    re.DOTALL,
)

EXPECTED_FORMAT = (
    "No valid SEARCH/REPLACE blocks found in content.\n"
    "Expected format:\n"
    "<<<<<<< SEARCH\n"
    "[exact content to find]\n"
    "=======\n"
    "[exact text to replace it with]\n"
    ">>>>>>> REPLACE"
)


class ChangeKind(Enum):
    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"


@dataclass(frozen=True)
class SearchReplaceBlock:
    search: str
    replace: str


@dataclass
class Change:
    """One applied block.

    ``start_index`` locates the edit in the final content, ``original_index``
    in the content before any block was applied.
    """
    start_index: int
    original_index: int
    old_length: int
    new_length: int
    old_text: str
    new_text: str
    kind: ChangeKind


@dataclass(frozen=True)
class InlineSpan:
    start: int
    length: int
    kind: ChangeKind


@dataclass
class InlinePreview:
    content: str = ""
    spans: List[InlineSpan] = field(default_factory=list)


@dataclass
class ApplyResult:
    original_content: str = ""
    new_content: str = ""
    blocks: List[SearchReplaceBlock] = field(default_factory=list)
    changes: List[Change] = field(default_factory=list)
    errors: List[PatchError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    diff: str = ""
    path: str = ""

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def unchanged(self) -> bool:
        return self.new_content == self.original_content

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]


class DocumentHost(Protocol):
    """Editor buffers the engine can read from and write to."""

    def read_open_document(self, path: str) -> Optional[str]: ...

    def replace_open_document(self, path: str, content: str, save: bool) -> bool: ...

    def open_document(self, path: str) -> None: ...

    def scroll_to(self, path: str, offset: int) -> None: ...


class PreviewObserver(Protocol):
    def on_preview(self, path: str, spans: List[InlineSpan]) -> None: ...

    def on_cleared(self, path: str) -> None: ...


class DiskDocumentHost:
    """No editor attached: nothing is ever open, everything goes to disk."""

    def read_open_document(self, path: str) -> Optional[str]:
        return None

    def replace_open_document(self, path: str, content: str, save: bool) -> bool:
        return False

    def open_document(self, path: str) -> None:
        pass

    def scroll_to(self, path: str, offset: int) -> None:
        pass


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def parse_blocks(text: str) -> List[SearchReplaceBlock]:
    """Extract blocks, preferring the fenced form when any fenced block is present."""
    matches = FENCED_BLOCK_RE.findall(text)
    if not matches:
        matches = BLOCK_RE.findall(text)
    return [
        SearchReplaceBlock(
            search=normalize_line_endings(search.rstrip("\r\n")),
            replace=normalize_line_endings(replace.rstrip("\r\n")),
        )
        for search, replace in matches
    ]


def count_occurrences(text: str, search: str) -> int:
    """Non-overlapping occurrences; an empty needle never matches."""
    if not search:
        return 0
    return text.count(search)


def find_unique_index(haystack: str, needle: str) -> int:
    """Index of ``needle`` when it occurs exactly once, else -1."""
    if not haystack or not needle:
        return -1
    first = haystack.find(needle)
    if first < 0:
        return -1
    if haystack.find(needle, first + len(needle)) >= 0:
        return -1
    return first


def change_kind(old_text: str, new_text: str) -> ChangeKind:
    if not old_text and new_text:
        return ChangeKind.ADDITION
    if old_text and not new_text:
        return ChangeKind.DELETION
    return ChangeKind.MODIFICATION


def not_found_message(block_number: int, search: str) -> str:
    return (
        f"SEARCH/REPLACE block {block_number} failed: Search text not found.\n"
        f"Search text was:\n{search}\n\n"
        "Tip: SEARCH must match EXACTLY including whitespace + line endings.\n"
    )


def ambiguous_message(block_number: int, count: int) -> str:
    return (
        f"SEARCH/REPLACE block {block_number} failed: SEARCH text appears {count} times.\n"
        "Your SEARCH text must match EXACTLY once. Make it more specific."
    )


def apply_blocks(original: str, blocks: List[SearchReplaceBlock], result: ApplyResult) -> None:
    """Apply ``blocks`` to ``original`` in memory, filling ``result``.

    A failing block is recorded and skipped; later blocks still run so every
    problem is reported at once.
    """
    current = original
    recorded: List[Change] = []
    cumulative_delta = 0
    last_found = -1

    for number, block in enumerate(blocks, start=1):
        occurrences = count_occurrences(current, block.search)
        if occurrences == 0:
            result.errors.append(PatchNotFound(not_found_message(number, block.search), number))
            continue
        if occurrences != 1:
            result.errors.append(
                PatchAmbiguous(ambiguous_message(number, occurrences), number, occurrences)
            )
            continue

        index = current.find(block.search)

        original_index = find_unique_index(original, block.search)
        if original_index < 0:
            # Text produced by an earlier block: estimate from the running delta.
            original_index = min(max(index - cumulative_delta, 0), len(original))

        change = Change(
            start_index=index,
            original_index=original_index,
            old_length=len(block.search),
            new_length=len(block.replace),
            old_text=block.search,
            new_text=block.replace,
            kind=change_kind(block.search, block.replace),
        )

        current = current[:index] + block.replace + current[index + len(block.search):]

        delta = len(block.replace) - len(block.search)
        if delta:
            for earlier in recorded:
                if earlier.start_index > index:
                    earlier.start_index += delta
        recorded.append(change)

        if index >= last_found:
            cumulative_delta += delta
            last_found = index

    result.new_content = current
    result.changes = recorded


def _trim_leading_blanks(text: str) -> str:
    return text.lstrip(" \t")


def build_inline_preview(result: ApplyResult) -> InlinePreview:
    """Old and new text side by side in one buffer, for in-editor review.

    Each replacement is inserted right after the text it replaces, which
    stays in place and is marked as a deletion.
    """
    if result is None:
        return InlinePreview()
    if result.errors:
        return InlinePreview(content=result.original_content or "")

    current = result.original_content or ""
    spans: List[InlineSpan] = []

    # Back to front so earlier offsets stay valid.
    for change in sorted(result.changes, key=lambda c: c.original_index, reverse=True):
        start = min(max(change.original_index, 0), len(current))
        old_len = max(0, change.old_length)
        if start + old_len > len(current):
            old_len = len(current) - start

        inserted = _trim_leading_blanks(change.new_text or "")
        insert_at = start + old_len
        if inserted:
            current = current[:insert_at] + inserted + current[insert_at:]
            # Spans already recorded lie at or after this insertion.
            spans = [InlineSpan(s.start + len(inserted), s.length, s.kind)
                     if s.start >= insert_at else s for s in spans]
            spans.append(InlineSpan(insert_at, len(inserted), ChangeKind.ADDITION))
        if old_len > 0:
            spans.append(InlineSpan(start, old_len, ChangeKind.DELETION))

    return InlinePreview(content=current, spans=spans)


class PatchEngine:
    """Preview and apply SEARCH/REPLACE instructions against one file."""

    def __init__(self, host: Optional[DocumentHost] = None, project_root: Optional[str] = None,
                 diff_max_lines: int = 200):
        self.host = host if host is not None else DiskDocumentHost()
        self.project_root = Path(project_root).resolve() if project_root else Path.cwd()
        self.diff_max_lines = diff_max_lines

    def resolve_path(self, path: str) -> str:
        if not path or not path.strip():
            return ""
        expanded = Path(os.path.expandvars(os.path.expanduser(path.strip())))
        if not expanded.is_absolute():
            expanded = self.project_root / expanded
        return str(expanded.resolve())

    def read_target(self, path: str) -> str:
        content = self.host.read_open_document(path)
        if content is None:
            content = Path(path).read_text(encoding="utf-8")
        return normalize_line_endings(content)

    def preview(self, path: str, instruction: str) -> ApplyResult:
        """Compute the edit without touching the file. Problems land in ``errors``."""
        result = ApplyResult()

        resolved = self.resolve_path(path)
        if not resolved:
            result.errors.append(PatchTargetMissing("File path cannot be empty"))
            return result
        if not Path(resolved).is_file():
            result.errors.append(PatchTargetMissing(f"File does not exist: {resolved}"))
            return result
        if not instruction:
            result.errors.append(PatchEmptyInstruction("Empty content provided"))
            return result

        result.path = resolved
        result.blocks = parse_blocks(instruction)
        if not result.blocks:
            result.errors.append(PatchNoBlocks(EXPECTED_FORMAT))
            return result

        self.host.open_document(resolved)
        result.original_content = self.read_target(resolved)

        apply_blocks(result.original_content, result.blocks, result)
        result.diff = build_line_diff(result.original_content, result.new_content, self.diff_max_lines)

        if result.changes:
            self.host.scroll_to(resolved, result.changes[0].original_index)

        _log.debug("Patch preview %s: %d block(s), %d change(s), %d error(s)",
                   resolved, len(result.blocks), len(result.changes), len(result.errors))
        return result

    def apply(self, result: ApplyResult) -> bool:
        """Write ``result.new_content``. Refused when the preview had errors."""
        if result is None or result.errors or not result.path:
            return False
        if result.unchanged:
            return True
        if not self.host.replace_open_document(result.path, result.new_content, True):
            Path(result.path).write_text(result.new_content, encoding="utf-8")
        _log.info("Applied %d change(s) to %s", len(result.changes), result.path)
        return True

    def run(self, path: str, instruction: str) -> ApplyResult:
        """Preview and apply with no approval step."""
        result = self.preview(path, instruction)
        if result.ok and not result.unchanged:
            self.apply(result)
        return result
