"""Shared fixtures for nyocoder tests."""

import json
import os
from typing import List, Optional
from unittest.mock import MagicMock

import pytest
import yaml

from nyocoder.approval import ApprovalOutcome
from nyocoder.llm import CompletionResponse
from nyocoder.stream import ToolCall
from nyocoder.tools.registry import ToolRegistry


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("NYOCODER_API_KEY", "NYOCODER_LLM_SERVER", "NYOCODER_MODEL", "NYOCODER_VERBOSE",
                "NYOCODER_LOG_DIR"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def sample_config_data():
    """Minimal .nyocoder.yml data dict."""
    return {
        "api-key": "sk-test-123456789",
        "llm-server": "http://localhost:9000/",
        "model": "qwen-coder",
        "max-content-length": 4000,
        "max-read-lines": 100,
        "context-window-size": 32000,
        "command-timeout": 10,
        "max-iterations": 5,
        "show-tool-output": False,
        "verbose": False,
        "tools-requiring-approval": ["run_shell_command", "search_replace"],
        "blocked-commands": ["sudo ", "git push"],
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    """Write a config YAML to tmp_dir and return its Path."""
    path = tmp_dir / ".nyocoder.yml"
    with open(path, "w") as f:
        yaml.dump(sample_config_data, f, default_flow_style=False)
    return path


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    c.input = MagicMock(return_value="n")
    return c


# ── Fake HTTP ──


def sse_lines(*frames, done: bool = True) -> List[str]:
    """Render dict frames as ``data:`` lines, optionally closed by [DONE]."""
    lines = []
    for frame in frames:
        lines.append(frame if isinstance(frame, str) else "data: " + json.dumps(frame))
        lines.append("")
    if done:
        lines.append("data: [DONE]")
    return lines


def text_frame(text: str, finish_reason: Optional[str] = None) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}


def tool_frame(index: int, call_id: str = "", name: str = "", arguments: str = "") -> dict:
    function = {}
    if name:
        function["name"] = name
    if arguments:
        function["arguments"] = arguments
    record = {"index": index, "function": function}
    if call_id:
        record["id"] = call_id
        record["type"] = "function"
    return {"choices": [{"index": 0, "delta": {"tool_calls": [record]}}]}


class FakeResponse:
    """Stands in for a streaming ``requests.Response``."""

    def __init__(self, lines: List[str], status_error: Optional[Exception] = None):
        self.lines = lines
        self.status_error = status_error
        self.encoding = None
        self.closed = False

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def iter_lines(self, decode_unicode=False):
        yield from self.lines

    def close(self):
        self.closed = True


class FakeHttp:
    """Records posts and returns queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []
        self.closed = False

    def post(self, url, data=None, headers=None, stream=False, timeout=None):
        self.posts.append({"url": url, "payload": json.loads(data), "headers": headers,
                           "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


@pytest.fixture
def fake_http_factory():
    return FakeHttp


# ── Fake model client ──


class ScriptedClient:
    """Model client that replays canned responses and records each call."""

    def __init__(self, *responses: CompletionResponse, on_call=None):
        self.responses = list(responses)
        self.calls = []
        self.on_call = on_call
        self.closed = False

    def complete(self, messages, output=None, on_tool_call_started=None,
                 on_tool_arguments=None, stop_requested=None):
        self.calls.append(list(messages))
        if self.on_call:
            self.on_call(len(self.calls))
        if not self.responses:
            return CompletionResponse(content="(no more responses)", finish_reason="stop")
        response = self.responses.pop(0)
        if output and response.content:
            output(response.content)
        return response

    def close(self):
        self.closed = True


def tool_reply(*calls: ToolCall) -> CompletionResponse:
    return CompletionResponse(tool_calls=list(calls), finish_reason="tool_calls")


def text_reply(text: str) -> CompletionResponse:
    return CompletionResponse(content=text, finish_reason="stop")


def call(name: str, call_id: str = "call_1", **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=json.dumps(arguments))


class RecordingApprover:
    """Approval callback that answers from a script and records every question."""

    def __init__(self, *outcomes: ApprovalOutcome):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, tool_name: str, arguments: str) -> ApprovalOutcome:
        self.requests.append((tool_name, arguments))
        if self.outcomes:
            return self.outcomes.pop(0)
        return ApprovalOutcome.APPROVED


@pytest.fixture
def registry(tmp_path):
    """A ToolRegistry rooted at tmp_path that approves everything."""
    return ToolRegistry(str(tmp_path), approve=RecordingApprover())


class MemoryHost:
    """Editor host with in-memory buffers, keyed by resolved path."""

    def __init__(self, documents=None):
        self.documents = dict(documents or {})
        self.saved = {}
        self.opened = []
        self.scrolled = []
        self.history = []

    def read_open_document(self, path):
        return self.documents.get(path)

    def replace_open_document(self, path, content, save):
        if path not in self.documents:
            return False
        self.documents[path] = content
        self.history.append((content, save))
        if save:
            self.saved[path] = content
        return True

    def open_document(self, path):
        self.opened.append(path)

    def scroll_to(self, path, offset):
        self.scrolled.append((path, offset))


class RecordingObserver:
    def __init__(self):
        self.previews = []
        self.cleared = []

    def on_preview(self, path, spans):
        self.previews.append((path, list(spans)))

    def on_cleared(self, path):
        self.cleared.append(path)
