"""Session: wires config, client, tools, approval and history for one conversation."""

import logging
import threading
from typing import Callable, List, Optional

from .approval import ApprovalCallback, ApprovalGate, CancellationToken
from .config import Config
from .context import EditorContext, with_context
from .llm import LLMClient, Message, build_system_prompt
from .logger import get_logger, turn_scope
from .orchestrator import Conversation, Orchestrator, TurnState
from .patch import DiskDocumentHost, DocumentHost, PatchEngine, PreviewObserver
from .tokenizer import TokenCounter, estimate_tokens
from .tools.registry import ToolRegistry

_log = get_logger(__name__)

KEEP_LAST = 4
SUMMARY_HEADER = "[Conversation summary: earlier messages compacted]"
SUMMARY_ACK = "Understood. I have the context from our earlier conversation. How can I continue helping?"


class SessionBusy(RuntimeError):
    """A turn is already running on this session."""


class Session:
    """One conversation with the model.

    At most one turn runs at a time; ``send`` refuses while another turn
    holds the run lock. ``request_stop`` is safe to call from any thread.
    """

    def __init__(self, config: Config,
                 approve: Optional[ApprovalCallback] = None,
                 output: Optional[Callable[[str], None]] = None,
                 host: Optional[DocumentHost] = None,
                 observer: Optional[PreviewObserver] = None,
                 context: Optional[EditorContext] = None,
                 client: Optional[LLMClient] = None,
                 on_summarized: Optional[Callable[[int], None]] = None):
        self.config = config
        self.output = output
        self.context = context
        self.on_summarized = on_summarized
        self.token = CancellationToken()
        self.gate = ApprovalGate(self.token)
        self.approve = approve if approve is not None else self.gate
        self.host = host if host is not None else DiskDocumentHost()

        root = config.project_root or "."
        self.engine = PatchEngine(self.host, project_root=root,
                                  diff_max_lines=config.diff_max_lines)
        self.registry = ToolRegistry(
            root,
            blocked_commands=config.blocked_commands,
            command_timeout=config.command_timeout,
            max_read_lines=config.max_read_lines,
            max_content_length=config.max_content_length,
            engine=self.engine,
            approve=self.approve,
            observer=observer,
        )

        system_prompt = build_system_prompt(config.project_instructions)
        self.client = client or LLMClient(
            config.llm_server, config.api_key, config.model,
            system_prompt=system_prompt,
            tools=self.registry.schemas,
            read_timeout=config.request_timeout,
        )

        self.counter = TokenCounter(len(system_prompt) + self.registry.definitions_length())
        self.conversation = Conversation(on_append=self.counter.add)
        self.orchestrator = Orchestrator(
            self.client, self.registry,
            approve=self.approve,
            output=output,
            stop_requested=self.token,
            approval_tools=config.approval_tools,
            show_tool_output=config.show_tool_output,
            max_iterations=config.max_iterations,
        )
        self._run_lock = threading.Lock()
        self.turns = 0

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    @property
    def is_new(self) -> bool:
        return len(self.conversation) == 0

    def send(self, message: str, image: Optional[bytes] = None) -> TurnState:
        """Run one turn on the calling thread."""
        if not self._run_lock.acquire(blocking=False):
            raise SessionBusy("A request is already running")
        try:
            self.token.reset()
            self.turns += 1
            with turn_scope(self.turns):
                if self.is_new:
                    message = with_context(message, self.context)
                state = self.orchestrator.process(self.conversation, message, image)
                _log.debug("Turn finished: %s", state.value)
            return state
        finally:
            self._run_lock.release()

    def send_async(self, message: str, image: Optional[bytes] = None,
                   on_done: Optional[Callable[[TurnState], None]] = None) -> Optional[threading.Thread]:
        """Run one turn on a daemon worker thread. None when busy."""
        if self.busy:
            return None

        def _worker():
            try:
                state = self.send(message, image)
            except SessionBusy:
                _log.debug("Turn refused: session busy")
                return
            if on_done:
                on_done(state)

        worker = threading.Thread(target=_worker, name="nyocoder-turn", daemon=True)
        worker.start()
        return worker

    def request_stop(self) -> None:
        """Stop the running turn at the next suspension point."""
        _log.info("Stop requested")
        self.gate.stop()

    def reset(self) -> None:
        if self.busy:
            raise SessionBusy("Cannot reset while a request is running")
        self.conversation.clear()
        self.counter.reset()

    def _summary_split(self, messages: List[Message]) -> int:
        """Index where the kept suffix starts; 0 means nothing to summarize."""
        split = len(messages) - KEEP_LAST
        # Start the suffix on a user message or a plain assistant reply,
        # never between a tool call and its results.
        while split > 0:
            msg = messages[split]
            if msg.role == "user" or (msg.role == "assistant" and not msg.tool_calls):
                break
            split -= 1
        return max(split, 0)

    def summarize(self) -> int:
        """Replace older history with a summary. Returns messages compacted."""
        if self.busy:
            raise SessionBusy("Cannot summarize while a request is running")

        messages = self.conversation.messages
        if len(messages) <= KEEP_LAST:
            return 0
        split = self._summary_split(messages)
        if split <= 0:
            return 0

        parts = []
        for msg in messages[:split]:
            content = (msg.content or "")[:200]
            if msg.role == "user":
                parts.append(f"User: {content}")
            elif msg.role == "assistant":
                if msg.tool_calls:
                    parts.append("Assistant: called " + ", ".join(tc.name for tc in msg.tool_calls))
                elif content:
                    parts.append(f"Assistant: {content}")
            elif msg.role == "tool":
                parts.append(f"Tool result: {content[:100]}")

        summary = SUMMARY_HEADER + "\n" + "\n".join(parts)
        new_history = [Message.user(summary), Message.assistant(SUMMARY_ACK)] + messages[split:]
        new_chars = self.conversation.replace_with_summary(new_history)
        self.counter.reset(new_chars)
        if _log.isEnabledFor(logging.INFO):
            _log.info("Summarized %d message(s); history now %d chars, summary ~%d tokens",
                      split, new_chars, estimate_tokens(summary, self.config.model))
        if self.on_summarized:
            self.on_summarized(new_chars)
        return split

    def status_text(self) -> str:
        return self.counter.status_text(self.config.context_window)

    def rebuild(self, config: Config) -> "Session":
        """A fresh session for ``config``, sharing this one's UI wiring."""
        if self.busy:
            raise SessionBusy("Cannot rebuild while a request is running")
        approve = None if self.approve is self.gate else self.approve
        return Session(
            config,
            approve=approve,
            output=self.output,
            host=self.host,
            observer=self.registry.search_replace.observer,
            context=self.context,
            on_summarized=self.on_summarized,
        )

    def close(self) -> None:
        self.client.close()
