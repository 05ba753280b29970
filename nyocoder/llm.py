"""Chat-completion client for OpenAI-compatible endpoints (HTTP + SSE streaming)."""

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .errors import TransportFailure, UpstreamError
from .logger import get_logger
from .stream import StreamParser, ToolCall, ToolCallAccumulator

_log = get_logger(__name__)

__all__ = [
    "Message", "ToolCall", "CompletionResponse", "LLMClient",
    "BASE_SYSTEM_PROMPT", "build_system_prompt", "message_to_payload",
]

FINISH_STOPPED = "stopped"
FINISH_REQUEST_FAILED = "request_failed"


@dataclass(frozen=True)
class Message:
    role: str
    content: str = ""
    image_data: Optional[bytes] = None
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_call_id: str = ""

    @classmethod
    def user(cls, content: str, image_data: Optional[bytes] = None) -> "Message":
        return cls(role="user", content=content, image_data=image_data)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role="assistant", content=content or "", tool_calls=tuple(tool_calls or ()))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def char_count(self) -> int:
        n = len(self.content)
        for tc in self.tool_calls:
            n += len(tc.name) + len(tc.arguments)
        return n


@dataclass
class CompletionResponse:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = ""

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def stopped(self) -> bool:
        return self.finish_reason == FINISH_STOPPED

    @property
    def failed(self) -> bool:
        return self.finish_reason == FINISH_REQUEST_FAILED


BASE_SYSTEM_PROMPT = """\
You are nyocoder, a coding assistant working inside the user's project.
You can run shell commands, read, write, move, copy and delete files, list
directories, grep the source tree and edit files with SEARCH/REPLACE blocks.

## Core workflow:
1. Explore first: list_directory, grep_search and read_file before changing anything.
2. Edit precisely: use search_replace for targeted edits; rewrite whole files only when creating them.
3. Verify: re-read the file or run the tests after editing.

## Rules:
- A SEARCH block must match the file EXACTLY once, whitespace included.
- Mutating tools need the user's approval; if a call is rejected, ask how to proceed.
- Respond in the same language the user uses.
"""


def build_system_prompt(project_instructions: Optional[str] = None) -> str:
    prompt = BASE_SYSTEM_PROMPT
    if project_instructions:
        prompt += f"\n\n## Project instructions (AGENT.md):\n{project_instructions}"
    return prompt


def message_to_payload(msg: Message) -> Dict[str, Any]:
    """Render one Message in the chat-completions wire shape."""
    obj: Dict[str, Any] = {"role": msg.role}

    if msg.tool_call_id:
        obj["tool_call_id"] = msg.tool_call_id

    if msg.tool_calls:
        obj["content"] = msg.content or ""
        obj["tool_calls"] = [
            {"id": tc.id or "", "type": "function",
             "function": {"name": tc.name or "", "arguments": tc.arguments or ""}}
            for tc in msg.tool_calls
        ]
    elif msg.image_data is not None:
        parts: List[Dict[str, Any]] = []
        if msg.content:
            parts.append({"type": "text", "text": msg.content})
        if msg.image_data:
            encoded = base64.b64encode(msg.image_data).decode("ascii")
            parts.append({"type": "image_url",
                          "image_url": {"url": f"data:image/png;base64,{encoded}"}})
        if not parts:
            parts.append({"type": "text", "text": ""})
        obj["content"] = parts
    else:
        obj["content"] = msg.content or ""

    return obj


class LLMClient:
    """Streams one completion per call. Holds no conversation state."""

    def __init__(self, endpoint: str, api_key: str, model: str,
                 system_prompt: str = BASE_SYSTEM_PROMPT,
                 tools: Optional[List[dict]] = None,
                 connect_timeout: float = 10.0, read_timeout: float = 300.0,
                 http: Optional[requests.Session] = None):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools or []
        self.timeout = (connect_timeout, read_timeout)
        self.http = http or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.endpoint}/v1/chat/completions"

    def build_payload(self, messages: List[Message]) -> Dict[str, Any]:
        wire = [{"role": "system", "content": self.system_prompt}]
        wire.extend(message_to_payload(m) for m in messages)
        return {
            "model": self.model,
            "messages": wire,
            "tools": self.tools,
            "stream": True,
        }

    def complete(self, messages: List[Message],
                 output: Optional[Callable[[str], None]] = None,
                 on_tool_call_started: Optional[Callable[[str], None]] = None,
                 on_tool_arguments: Optional[Callable[[str], None]] = None,
                 stop_requested: Optional[Callable[[], bool]] = None) -> CompletionResponse:
        """Send the history and stream the reply.

        Never raises for transport problems: they are reported through
        ``output`` and returned as a ``request_failed`` finish reason.
        """
        def _stopping() -> bool:
            return bool(stop_requested and stop_requested())

        def _emit(text: str) -> None:
            if output:
                output(text)

        if _stopping():
            return CompletionResponse(finish_reason=FINISH_STOPPED)

        accumulator = ToolCallAccumulator(on_started=on_tool_call_started,
                                          on_arguments=on_tool_arguments)

        def _on_error(err: UpstreamError) -> None:
            _emit(f"[API Error] {err.payload}\n")

        parser = StreamParser(accumulator, on_text=output, on_error=_on_error)
        payload = self.build_payload(messages)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }

        _log.debug("POST %s model=%s messages=%d", self.url, self.model, len(payload["messages"]))
        response = None
        try:
            response = self.http.post(
                self.url,
                data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers=headers,
                stream=True,
                timeout=self.timeout,
            )
            response.raise_for_status()
            response.encoding = "utf-8"

            for line in response.iter_lines(decode_unicode=True):
                if _stopping():
                    _log.debug("Stop requested mid-stream, closing connection")
                    return CompletionResponse(content=parser.content,
                                              finish_reason=FINISH_STOPPED)
                if not parser.feed(line):
                    break
        except requests.RequestException as e:
            if _stopping():
                return CompletionResponse(finish_reason=FINISH_STOPPED)
            failure = TransportFailure(str(e))
            _log.error("Request failed: %s", failure)
            _emit(f"Error sending request: {failure}\n")
            return CompletionResponse(finish_reason=FINISH_REQUEST_FAILED)
        finally:
            if response is not None:
                response.close()

        tool_calls = accumulator.finalize()
        if tool_calls and on_tool_call_started:
            _emit(")\n")

        _log.debug("Stream finished: reason=%s tool_calls=%d chars=%d",
                   parser.finish_reason or "-", len(tool_calls), len(parser.content))
        return CompletionResponse(content=parser.content, tool_calls=tool_calls,
                                  finish_reason=parser.finish_reason)

    def close(self):
        self.http.close()
