"""Tests for the approval-gated search_replace tool."""

import pytest

from nyocoder.approval import ApprovalOutcome
from nyocoder.patch import ChangeKind, PatchEngine
from nyocoder.tools.search_replace import (
    NO_UI_MESSAGE,
    REJECTED_MESSAGE,
    STOPPED_MESSAGE,
    SearchReplaceTool,
)

from conftest import MemoryHost, RecordingApprover, RecordingObserver


def block(search: str, replace: str) -> str:
    return f"<<<<<<< SEARCH\n{search}\n=======\n{replace}\n>>>>>>> REPLACE"


def make_tool(tmp_path, *outcomes, host=None, observer=None, approve=True):
    engine = PatchEngine(host, project_root=str(tmp_path))
    approver = RecordingApprover(*outcomes) if approve else None
    return SearchReplaceTool(engine, approve=approver, observer=observer), approver


class TestDiskFile:
    def test_approved_edit_is_written(self, tmp_path):
        target = tmp_path / "main.py"
        target.write_text("foo baz\n", encoding="utf-8")
        tool, approver = make_tool(tmp_path, ApprovalOutcome.APPROVED)

        output, code = tool("main.py", block("foo", "bar"))

        assert code == 0
        assert output == "Approved and applied 1 block(s).\n"
        assert target.read_text(encoding="utf-8") == "bar baz\n"
        name, text = approver.requests[0]
        assert name == "search_replace"
        assert text.startswith("Apply these changes?\nFile: ")
        assert "+bar baz" in text

    def test_rejected_edit_leaves_file(self, tmp_path):
        target = tmp_path / "main.py"
        target.write_text("foo baz\n", encoding="utf-8")
        tool, _ = make_tool(tmp_path, ApprovalOutcome.REJECTED)

        output, code = tool("main.py", block("foo", "bar"))

        assert (output, code) == (REJECTED_MESSAGE + "\n", 0)
        assert target.read_text(encoding="utf-8") == "foo baz\n"

    def test_stopped_edit_leaves_file(self, tmp_path):
        target = tmp_path / "main.py"
        target.write_text("foo baz\n", encoding="utf-8")
        tool, _ = make_tool(tmp_path, ApprovalOutcome.STOPPED)

        output, code = tool("main.py", block("foo", "bar"))

        assert (output, code) == (STOPPED_MESSAGE + "\n", 0)
        assert target.read_text(encoding="utf-8") == "foo baz\n"

    def test_no_approval_ui_refuses(self, tmp_path):
        target = tmp_path / "main.py"
        target.write_text("foo baz\n", encoding="utf-8")
        tool, _ = make_tool(tmp_path, approve=False)

        output, code = tool("main.py", block("foo", "bar"))

        assert (output, code) == (NO_UI_MESSAGE + "\n", 1)
        assert target.read_text(encoding="utf-8") == "foo baz\n"

    def test_errors_skip_approval(self, tmp_path):
        (tmp_path / "main.py").write_text("foo baz foo\n", encoding="utf-8")
        tool, approver = make_tool(tmp_path)

        output, code = tool("main.py", block("foo", "bar"))

        assert code == 1
        assert output.startswith("Errors:\n")
        assert "appears 2 times" in output
        assert approver.requests == []

    def test_noop_edit(self, tmp_path):
        (tmp_path / "main.py").write_text("same\n", encoding="utf-8")
        tool, approver = make_tool(tmp_path)

        output, code = tool("main.py", block("same", "same"))

        assert code == 0
        assert "No changes were necessary" in output
        assert approver.requests == []


class TestOpenDocument:
    def setup_file(self, tmp_path, text):
        target = tmp_path / "open.py"
        target.write_text(text, encoding="utf-8")
        resolved = str(target.resolve())
        return target, resolved, MemoryHost({resolved: text})

    def test_reject_restores_buffer_byte_for_byte(self, tmp_path):
        original = "line one\r\n\tfoo = 1\r\nlast"
        target, resolved, host = self.setup_file(tmp_path, original)
        observer = RecordingObserver()
        tool, _ = make_tool(tmp_path, ApprovalOutcome.REJECTED, host=host, observer=observer)

        output, code = tool("open.py", block("foo = 1", "foo = 2"))

        assert code == 0
        assert output == REJECTED_MESSAGE + "\n"
        assert host.documents[resolved] == original
        assert host.saved == {}
        assert observer.cleared == [resolved]

    def test_preview_shown_while_waiting(self, tmp_path):
        target, resolved, host = self.setup_file(tmp_path, "foo baz\n")
        observer = RecordingObserver()
        seen = {}

        def approve(name, text):
            seen["buffer"] = host.documents[resolved]
            return ApprovalOutcome.APPROVED

        engine = PatchEngine(host, project_root=str(tmp_path))
        tool = SearchReplaceTool(engine, approve=approve, observer=observer)

        output, code = tool("open.py", block("foo", "bar"))

        assert code == 0
        assert seen["buffer"] == "foobar baz\n"
        path, spans = observer.previews[0]
        assert path == resolved
        assert {s.kind for s in spans} == {ChangeKind.ADDITION, ChangeKind.DELETION}
        assert host.saved[resolved] == "bar baz\n"
        assert host.documents[resolved] == "bar baz\n"

    def test_stop_restores_buffer(self, tmp_path):
        target, resolved, host = self.setup_file(tmp_path, "foo baz\n")
        tool, _ = make_tool(tmp_path, ApprovalOutcome.STOPPED, host=host)

        output, _ = tool("open.py", block("foo", "bar"))

        assert output == STOPPED_MESSAGE + "\n"
        assert host.documents[resolved] == "foo baz\n"
        assert target.read_text(encoding="utf-8") == "foo baz\n"

    def test_failing_prompt_restores_buffer(self, tmp_path):
        target, resolved, host = self.setup_file(tmp_path, "foo baz\n")
        observer = RecordingObserver()

        def approve(name, text):
            raise RuntimeError("prompt closed")

        engine = PatchEngine(host, project_root=str(tmp_path))
        tool = SearchReplaceTool(engine, approve=approve, observer=observer)

        with pytest.raises(RuntimeError):
            tool("open.py", block("foo", "bar"))

        assert host.documents[resolved] == "foo baz\n"
        assert host.saved == {}
        assert observer.cleared == [resolved]
        assert target.read_text(encoding="utf-8") == "foo baz\n"
