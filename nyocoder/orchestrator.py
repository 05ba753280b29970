"""Conversation orchestrator: alternates model turns and tool executions."""

import threading
from enum import Enum
from typing import Callable, Iterator, List, Optional

from .approval import ApprovalCallback, ApprovalOutcome, auto_approve
from .errors import UserRejected, UserStopped
from .llm import CompletionResponse, Message
from .logger import get_logger
from .stream import ToolCall
from .tools.registry import ToolRegistry, ToolResult, format_command_result

_log = get_logger(__name__)

STOP_NOTICE = "\n[Session stopped by user]\n"
CANCELLED_OUTPUT = str(UserRejected(""))

_ESCAPES = (
    ("\\n", "\n"),
    ("\\r", "\r"),
    ("\\t", "\t"),
    ('\\"', '"'),
    ("\\'", "'"),
    ("\\\\", "\\"),
)


class TurnState(Enum):
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    APPROVAL_PENDING = "approval_pending"
    EXECUTING = "executing"
    PLAIN_TEXT_RECEIVED = "plain_text_received"
    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TurnState.DONE, TurnState.STOPPED, TurnState.FAILED)


def unescape_arguments(raw: str) -> str:
    """Make JSON argument text readable for the approval prompt."""
    text = raw or ""
    for escaped, plain in _ESCAPES:
        text = text.replace(escaped, plain)
    return text


class Conversation:
    """Append-only message history for one session.

    ``on_append(char_delta)`` is told how much visible text each message
    adds. The only way to shrink history is ``replace_with_summary``.
    """

    def __init__(self, on_append: Optional[Callable[[int], None]] = None):
        self._messages: List[Message] = []
        self._lock = threading.Lock()
        self.on_append = on_append

    def append(self, message: Message) -> None:
        with self._lock:
            self._messages.append(message)
        if self.on_append:
            self.on_append(message.char_count)

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    @property
    def char_count(self) -> int:
        return sum(m.char_count for m in self.messages)

    def replace_with_summary(self, messages: List[Message]) -> int:
        """Swap the whole history. Returns the new visible char count."""
        with self._lock:
            self._messages = list(messages)
        return self.char_count

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()


class Orchestrator:
    """Drives one user turn to a terminal state.

    ``client.complete`` streams a reply; ``registry.dispatch`` runs tools;
    ``approve(tool_name, rendered_args)`` gates the tools named in
    ``approval_tools``. ``process`` never raises.
    """

    def __init__(self, client, registry: ToolRegistry,
                 approve: Optional[ApprovalCallback] = None,
                 output: Optional[Callable[[str], None]] = None,
                 stop_requested: Optional[Callable[[], bool]] = None,
                 approval_tools=None, show_tool_output: bool = True,
                 max_iterations: int = 50):
        self.client = client
        self.registry = registry
        self.approve = approve or auto_approve
        self.output = output
        self.stop_requested = stop_requested
        self.approval_tools = frozenset(approval_tools if approval_tools is not None
                                        else ToolRegistry.APPROVAL_TOOLS)
        self.show_tool_output = show_tool_output
        self.max_iterations = max_iterations
        self.state = TurnState.DONE

    def _emit(self, text: str) -> None:
        if self.output and text:
            self.output(text)

    def _stopping(self) -> bool:
        return bool(self.stop_requested and self.stop_requested())

    def _set(self, state: TurnState) -> TurnState:
        _log.debug("Turn state: %s -> %s", self.state.value, state.value)
        self.state = state
        return state

    def _stop(self) -> TurnState:
        self._emit(STOP_NOTICE)
        return self._set(TurnState.STOPPED)

    def _on_tool_call_started(self, name: str) -> None:
        self._emit(f"\n[tool call] {name}(")

    def _stream(self, conversation: Conversation) -> CompletionResponse:
        return self.client.complete(
            conversation.messages,
            output=self.output,
            on_tool_call_started=self._on_tool_call_started if self.output else None,
            on_tool_arguments=self._emit if self.output else None,
            stop_requested=self.stop_requested,
        )

    def _run_call(self, call: ToolCall) -> ToolResult:
        """Approve and dispatch one call. Raises UserStopped on a stop answer."""
        if call.name in self.approval_tools and not self.registry.gates_itself(call.name):
            self._set(TurnState.APPROVAL_PENDING)
            outcome = self.approve(call.name, unescape_arguments(call.arguments))
            if outcome is ApprovalOutcome.STOPPED:
                raise UserStopped(call.name)
            if outcome is ApprovalOutcome.REJECTED:
                _log.info("Rejected by user: %s", self.registry.describe(call))
                return ToolResult(exit_code=-1,
                                  content=format_command_result(str(UserRejected(call.name)), -1))

        self._set(TurnState.EXECUTING)
        return self.registry.dispatch(call)

    def process(self, conversation: Conversation, user_message: str,
                image: Optional[bytes] = None) -> TurnState:
        try:
            return self._process(conversation, user_message, image)
        except Exception as e:
            _log.exception("Turn failed")
            self._emit(f"\n[Error] {e}\n")
            return self._set(TurnState.FAILED)

    def _process(self, conversation: Conversation, user_message: str,
                 image: Optional[bytes]) -> TurnState:
        conversation.append(Message.user(user_message, image))

        for _ in range(self.max_iterations):
            if self._stopping():
                return self._stop()

            self._set(TurnState.AWAITING_MODEL_RESPONSE)
            response = self._stream(conversation)

            if self._stopping() or response.stopped:
                return self._stop()
            if response.failed:
                return self._set(TurnState.FAILED)

            if not response.has_tool_calls():
                self._set(TurnState.PLAIN_TEXT_RECEIVED)
                conversation.append(Message.assistant(response.content))
                return self._set(TurnState.DONE)

            self._set(TurnState.TOOL_CALLS_PENDING)
            conversation.append(Message.assistant("", response.tool_calls))

            for call in response.tool_calls:
                if self._stopping():
                    return self._stop()

                try:
                    result = self._run_call(call)
                except UserStopped:
                    return self._stop()

                conversation.append(Message.tool(result.content, call.id))
                if self.show_tool_output:
                    self._emit(f"\n[tool output]\n{result.content}\n")

                # A self-gated tool may have been stopped from its own prompt.
                if self._stopping():
                    return self._stop()

        _log.warning("Reached max iterations (%d)", self.max_iterations)
        self._emit(f"\n[Reached max iterations ({self.max_iterations})]\n")
        return self._set(TurnState.DONE)
