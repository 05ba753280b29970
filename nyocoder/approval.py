"""Human approval of mutating tool calls, shared between worker and UI threads."""

import queue
import threading
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from typing import Callable, List, Optional

from .logger import get_logger

_log = get_logger(__name__)


class ApprovalOutcome(Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    STOPPED = "stopped"


ApprovalCallback = Callable[[str, str], ApprovalOutcome]


class CancellationToken:
    """Session-wide stop flag. Once set it stays set until ``reset``."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()


class ApprovalRequest:
    """One pending question for the user, resolved exactly once."""

    __slots__ = ("tool_name", "arguments", "_future")

    def __init__(self, tool_name: str, arguments: str):
        self.tool_name = tool_name
        self.arguments = arguments
        self._future: Future = Future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, outcome: ApprovalOutcome) -> bool:
        """Deliver the answer. Returns False if it was already answered."""
        if self._future.done():
            return False
        try:
            self._future.set_result(outcome)
        except InvalidStateError:
            # Lost the race against stop(); the first answer stands.
            return False
        return True

    def wait(self, timeout: Optional[float] = None) -> ApprovalOutcome:
        return self._future.result(timeout=timeout)


class ApprovalGate:
    """Approval callback for the orchestrator.

    The worker calls the gate and blocks. The UI thread takes requests with
    ``next_request`` and answers them with ``ApprovalRequest.resolve``.
    ``stop`` answers every pending request with STOPPED, so the worker is
    never left waiting on a UI that went away.
    """

    def __init__(self, token: Optional[CancellationToken] = None):
        self.token = token if token is not None else CancellationToken()
        self._requests: "queue.Queue[ApprovalRequest]" = queue.Queue()
        self._pending: List[ApprovalRequest] = []
        self._lock = threading.Lock()

    def __call__(self, tool_name: str, arguments: str) -> ApprovalOutcome:
        return self.request(tool_name, arguments)

    def request(self, tool_name: str, arguments: str) -> ApprovalOutcome:
        if self.token.cancelled:
            return ApprovalOutcome.STOPPED

        req = ApprovalRequest(tool_name, arguments)
        with self._lock:
            self._pending.append(req)
        self._requests.put(req)

        # stop() may have run between the token check and the append.
        if self.token.cancelled:
            req.resolve(ApprovalOutcome.STOPPED)

        _log.debug("Awaiting approval for %s", tool_name)
        try:
            outcome = req.wait()
        finally:
            with self._lock:
                if req in self._pending:
                    self._pending.remove(req)

        if outcome is ApprovalOutcome.STOPPED:
            self.token.cancel()
        _log.debug("Approval for %s: %s", tool_name, outcome.value)
        return outcome

    def next_request(self, timeout: Optional[float] = None) -> Optional[ApprovalRequest]:
        """Next unanswered request, or None when ``timeout`` elapses first."""
        while True:
            try:
                req = self._requests.get(timeout=timeout)
            except queue.Empty:
                return None
            if not req.done:
                return req

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def stop(self) -> None:
        self.token.cancel()
        with self._lock:
            pending = list(self._pending)
        for req in pending:
            req.resolve(ApprovalOutcome.STOPPED)


def auto_approve(tool_name: str, arguments: str) -> ApprovalOutcome:
    return ApprovalOutcome.APPROVED


def auto_reject(tool_name: str, arguments: str) -> ApprovalOutcome:
    return ApprovalOutcome.REJECTED
