"""Line diffs for edit review."""

from typing import List, Tuple

DIFF_TRUNCATED = "...(diff truncated)"


def build_line_diff(old_content: str, new_content: str, max_lines: int = 200) -> str:
    """Lockstep line diff between two texts.

    Lines are compared pairwise by position; a mismatch emits ``-old`` then
    ``+new``. This is a review aid, not a minimal edit script: an inserted
    line shifts every following pair. Output stops after ``max_lines`` body
    lines with a truncation marker.
    """
    a = (old_content or "").replace("\r\n", "\n").split("\n")
    b = (new_content or "").replace("\r\n", "\n").split("\n")

    out: List[str] = ["--- original", "+++ new"]
    i = j = emitted = 0

    while i < len(a) or j < len(b):
        if emitted >= max_lines:
            out.append(DIFF_TRUNCATED)
            break

        la = a[i] if i < len(a) else None
        lb = b[j] if j < len(b) else None

        if la == lb:
            out.append(" " + la)
            emitted += 1
            i += 1
            j += 1
            continue

        if la is not None:
            out.append("-" + la)
            emitted += 1
            i += 1
        if lb is not None:
            out.append("+" + lb)
            emitted += 1
            j += 1

    return "\n".join(out) + "\n"


def compute_diff_stats(diff_text: str) -> Tuple[int, int]:
    """Count added and removed lines in a diff.

    Returns: (lines_added, lines_removed)
    """
    added = removed = 0
    for line in diff_text.splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def format_diff_summary(added: int, removed: int) -> str:
    """Format diff statistics as a short summary."""
    parts = []
    if added:
        parts.append(f"+{added}")
    if removed:
        parts.append(f"-{removed}")
    return " ".join(parts) if parts else "no changes"
