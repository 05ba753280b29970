"""Structured error types for the agent system."""


class AgentError(Exception):
    """Base error for all agent operations."""
    pass


# ── Stream / transport ──


class ProtocolDecodeError(AgentError):
    """A stream frame could not be decoded. Non-fatal: the frame is skipped."""

    def __init__(self, payload: str, reason: str = ""):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed frame ({reason}): {payload[:120]}")


class UpstreamError(AgentError):
    """Explicit error frame sent by the completion endpoint."""

    def __init__(self, payload: str):
        self.payload = payload
        super().__init__(payload)


class TransportFailure(AgentError):
    """Connection, HTTP status or timeout failure while talking to the endpoint."""

    def __init__(self, message: str):
        super().__init__(message)


# ── Tools ──


class ToolError(AgentError):
    """Error raised during tool execution."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"{tool_name} error: {message}")


class ToolArgumentMissing(ToolError):
    """A required tool argument is absent or blank."""

    def __init__(self, tool_name: str, argument: str):
        self.argument = argument
        super().__init__(tool_name, f"missing '{argument}' argument.")


class ToolExecutionFailure(ToolError):
    """A handler raised an unexpected exception."""
    pass


class ShellBlockedError(AgentError):
    """Raised when a shell command is blocked by safety guards."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Blocked: {reason}")


class ShellTimeoutError(AgentError):
    """Raised when a process exceeds its wall-clock timeout and is killed."""

    def __init__(self, timeout: int, program: str = ""):
        self.timeout = timeout
        self.program = program
        if program:
            super().__init__(f"Process '{program}' timed out after {timeout}s")
        else:
            super().__init__(f"Timed out after {timeout}s")


# ── Patch engine ──
# These are recorded on an ApplyResult rather than raised.


class PatchError(AgentError):
    """Base for search/replace failures."""

    kind = "patch"

    def __init__(self, message: str, block_index: int = 0):
        self.block_index = block_index
        self.message = message
        super().__init__(message)


class PatchNoBlocks(PatchError):
    kind = "no_blocks"


class PatchNotFound(PatchError):
    kind = "not_found"


class PatchAmbiguous(PatchError):
    kind = "ambiguous"

    def __init__(self, message: str, block_index: int, count: int):
        self.count = count
        super().__init__(message, block_index)


class PatchTargetMissing(PatchError):
    kind = "target_missing"


class PatchEmptyInstruction(PatchError):
    kind = "empty_instruction"



# ── Approval ──


class UserRejected(AgentError):
    """The user declined one tool call. The session continues."""

    def __init__(self, tool_name: str,
                 message: str = "Tool execution was cancelled by the user."):
        self.tool_name = tool_name
        super().__init__(message)


class UserStopped(AgentError):
    """The user stopped the whole session from an approval prompt."""

    def __init__(self, tool_name: str = ""):
        self.tool_name = tool_name
        super().__init__("Session stopped by user.")
