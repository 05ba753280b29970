"""The search_replace tool: preview, inline review, approval, apply."""

from typing import Optional, Tuple

from ..approval import ApprovalCallback, ApprovalOutcome
from ..logger import get_logger
from ..patch import ApplyResult, DocumentHost, PatchEngine, PreviewObserver, build_inline_preview

_log = get_logger(__name__)

REJECTED_MESSAGE = "Rejected by user. No changes applied."
STOPPED_MESSAGE = "Session stopped by user. No changes applied."
NO_UI_MESSAGE = "Error: Approval UI unavailable. No changes applied."
APPLY_FAILED_MESSAGE = "Error: Failed to apply changes."
UNCHANGED_MESSAGE = "No changes were necessary (file already matches)."


def approval_text(result: ApplyResult, path: str) -> str:
    return f"Apply these changes?\nFile: {result.path or path}\n\n{result.diff}"


class SearchReplaceTool:
    """Edits are never written without an explicit APPROVED answer.

    With no approval callback the tool refuses to apply anything.
    """

    def __init__(self, engine: PatchEngine,
                 approve: Optional[ApprovalCallback] = None,
                 observer: Optional[PreviewObserver] = None):
        self.engine = engine
        self.approve = approve
        self.observer = observer

    @property
    def host(self) -> DocumentHost:
        return self.engine.host

    def _show_preview(self, result: ApplyResult) -> Optional[str]:
        """Put the inline preview into the open editor buffer, unsaved.

        Returns the buffer text it replaced, or None when the file is not open.
        """
        before = self.host.read_open_document(result.path)
        if before is None:
            return None
        inline = build_inline_preview(result)
        if not self.host.replace_open_document(result.path, inline.content, False):
            return None
        if inline.spans and self.observer:
            self.observer.on_preview(result.path, inline.spans)
        return before

    def _clear_preview(self, result: ApplyResult) -> None:
        if self.observer:
            self.observer.on_cleared(result.path)

    def __call__(self, path: str, instruction: str) -> Tuple[str, int]:
        """Returns ``(output, exit_code)``."""
        result = self.engine.preview(path, instruction)

        if result.errors:
            return "Errors:\n" + "\n".join(result.error_messages) + "\n", 1

        if result.unchanged:
            return UNCHANGED_MESSAGE + "\n", 0

        buffer_before = self._show_preview(result)
        shown_inline = buffer_before is not None

        outcome = ApprovalOutcome.REJECTED
        message, code = NO_UI_MESSAGE, 1
        try:
            if self.approve is not None:
                outcome = self.approve("search_replace", approval_text(result, path))
                message = STOPPED_MESSAGE if outcome is ApprovalOutcome.STOPPED else REJECTED_MESSAGE
                code = 0
        finally:
            # The buffer must never keep the preview unless the edit goes ahead.
            self._clear_preview(result)
            if shown_inline and outcome is not ApprovalOutcome.APPROVED:
                self.host.replace_open_document(result.path, buffer_before, False)

        if outcome is not ApprovalOutcome.APPROVED:
            _log.info("search_replace on %s not applied (%s)", result.path, outcome.value)
            return message + "\n", code

        applied = False
        if shown_inline:
            applied = self.host.replace_open_document(result.path, result.new_content, True)
        if not applied:
            applied = self.engine.apply(result)
        if not applied:
            return APPLY_FAILED_MESSAGE + "\n", 1

        return f"Approved and applied {len(result.changes)} block(s).\n", 0
