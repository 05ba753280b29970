"""Streaming chat-completion decoding: SSE frame parser and tool-call accumulator."""

import json
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .errors import ProtocolDecodeError, UpstreamError
from .logger import get_logger

_log = get_logger(__name__)

__all__ = ["ToolCall", "ToolCallAccumulator", "StreamParser", "decode_frame"]

DATA_PREFIX = "data: "
EVENT_PREFIX = "event: "
DONE_SENTINEL = "[DONE]"


@dataclass
class ToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""
    index: int = 0


class ToolCallAccumulator:
    """Merge per-index tool-call deltas into complete calls.

    ``on_started(name)`` fires once per index, when its name is first seen.
    ``on_arguments(chunk)`` receives each argument character exactly once,
    in order, and only after the call has been announced.
    """

    def __init__(self,
                 on_started: Optional[Callable[[str], None]] = None,
                 on_arguments: Optional[Callable[[str], None]] = None):
        self.on_started = on_started
        self.on_arguments = on_arguments
        self._calls: Dict[int, ToolCall] = {}
        self._surfaced: Dict[int, int] = {}
        self._announced: set[int] = set()

    def __len__(self) -> int:
        return len(self._calls)

    def apply(self, delta: dict) -> None:
        """Fold one ``delta.tool_calls[]`` record into the accumulated state."""
        index = delta.get("index")
        if not isinstance(index, int):
            try:
                index = int(index) if index is not None else 0
            except (TypeError, ValueError):
                index = 0

        call = self._calls.get(index)
        if call is None:
            call = ToolCall(index=index)
            self._calls[index] = call
            self._surfaced[index] = 0

        call_id = delta.get("id")
        if call_id:
            call.id = str(call_id)

        function = delta.get("function") or {}
        if not isinstance(function, dict):
            return

        name = function.get("name")
        if name:
            call.name = str(name)
            if index not in self._announced:
                self._announced.add(index)
                if self.on_started:
                    self.on_started(call.name)

        chunk = function.get("arguments")
        if chunk:
            call.arguments += chunk if isinstance(chunk, str) else json.dumps(chunk)

        self._flush(index)

    def _flush(self, index: int) -> None:
        # Arguments that arrive before the name are held back until it is announced.
        if index not in self._announced:
            return
        call = self._calls[index]
        already = self._surfaced[index]
        if len(call.arguments) > already:
            if self.on_arguments:
                self.on_arguments(call.arguments[already:])
            self._surfaced[index] = len(call.arguments)

    def finalize(self) -> List[ToolCall]:
        """Return accumulated calls in ascending stream-index order."""
        return [self._calls[i] for i in sorted(self._calls)]


def decode_frame(payload: str) -> dict:
    """Decode one ``data:`` payload into a JSON object."""
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(payload, str(e)) from e
    if not isinstance(obj, dict):
        raise ProtocolDecodeError(payload, "frame is not an object")
    return obj


class StreamParser:
    """Consume response lines one at a time.

    Tolerant by construction: unknown lines are ignored, malformed frames are
    logged and skipped, and error frames are reported without ending the
    stream.
    """

    def __init__(self,
                 accumulator: Optional[ToolCallAccumulator] = None,
                 on_text: Optional[Callable[[str], None]] = None,
                 on_error: Optional[Callable[[UpstreamError], None]] = None):
        self.accumulator = accumulator if accumulator is not None else ToolCallAccumulator()
        self.on_text = on_text
        self.on_error = on_error
        self.finish_reason: str = ""
        self.done = False
        self.decode_errors = 0
        self._parts: List[str] = []
        self._last_event: Optional[str] = None

    @property
    def content(self) -> str:
        return "".join(self._parts)

    def feed(self, line: str) -> bool:
        """Process one line. Returns False once the terminal sentinel is seen."""
        if self.done:
            return False
        if line is None:
            return True
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.rstrip("\r")

        if line.startswith(EVENT_PREFIX):
            self._last_event = line[len(EVENT_PREFIX):].strip()
            return True

        if not line.startswith(DATA_PREFIX):
            return True

        payload = line[len(DATA_PREFIX):]
        if payload.strip() == DONE_SENTINEL:
            self.done = True
            return False

        if self._last_event == "error" or '"error"' in payload:
            self._last_event = None
            error = UpstreamError(payload.strip())
            _log.warning("Upstream error frame: %s", error.payload[:200])
            if self.on_error:
                self.on_error(error)
            return True

        self._last_event = None

        try:
            frame = decode_frame(payload)
        except ProtocolDecodeError as e:
            self.decode_errors += 1
            _log.debug("%s", e)
            return True

        self._apply_frame(frame)
        return True

    def _apply_frame(self, frame: dict) -> None:
        choices = frame.get("choices")
        if not isinstance(choices, list):
            return

        for choice in choices:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta") or {}
            if not isinstance(delta, dict):
                delta = {}

            content = delta.get("content")
            if content and isinstance(content, str):
                self._parts.append(content)
                if self.on_text:
                    self.on_text(content)

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self.finish_reason = str(finish_reason)

            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for record in tool_calls:
                    if isinstance(record, dict):
                        self.accumulator.apply(record)
