"""Tool registry: dict-based dispatch, one entry per tool."""
import json
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import ShellBlockedError, ToolArgumentMissing, ToolExecutionFailure
from ..logger import get_logger
from ..patch import PatchEngine
from ..stream import ToolCall
from .arguments import (
    GrepArgs,
    PathArgs,
    ReadFileArgs,
    SearchReplaceArgs,
    ShellArgs,
    ToolArguments,
    TransferArgs,
    WriteFileArgs,
)
from .file_ops import FileOperationError, FileOps
from .search_replace import SearchReplaceTool
from .shell import ShellExecutor

_log = get_logger(__name__)

# Handler result: (output, exit_code)
Outcome = Tuple[str, int]


@dataclass(frozen=True)
class ToolResult:
    exit_code: int
    content: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def format_command_result(output: str, exit_code: int) -> str:
    return f"Exit Code: {exit_code}\nOutput:\n{output}"


class _ToolEntry:
    """Single tool registration: handler + schema + descriptor."""
    __slots__ = ("handler", "schema", "describe")

    def __init__(self, handler: Callable[[ToolArguments], Outcome], schema: dict,
                 describe: Callable[[ToolArguments], str]):
        self.handler = handler
        self.schema = schema
        self.describe = describe


def _schema(name: str, description: str, properties: dict,
            required: list) -> dict:
    """Build an OpenAI-compatible function schema."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_S = lambda desc, **kw: {"type": "string", "description": desc, **kw}

_PATH_NOTE = " Relative paths resolve against the project root; ~ and $VARS are expanded."


class ToolRegistry:
    """Owns the tool implementations and turns a ToolCall into a ToolResult.

    ``dispatch`` never raises: every call produces a result envelope.
    """

    APPROVAL_TOOLS = frozenset({
        "run_shell_command", "write_file", "move_file", "delete_file", "search_replace",
    })
    # Tools that ask for approval themselves, with a richer rendering.
    SELF_GATED_TOOLS = frozenset({"search_replace"})

    def __init__(self, project_root: str, blocked_commands: Optional[List[str]] = None,
                 command_timeout: int = 30, max_read_lines: int = 500,
                 max_content_length: int = 8000, engine: Optional[PatchEngine] = None,
                 approve=None, observer=None):
        self.file_ops = FileOps(project_root, max_read_lines=max_read_lines,
                                max_output=max_content_length)
        self.shell = ShellExecutor(project_root, blocked_commands, command_timeout,
                                   max_output=max_content_length)
        self.engine = engine or PatchEngine(project_root=project_root)
        self.search_replace = SearchReplaceTool(self.engine, approve=approve, observer=observer)
        self.max_read_lines = max_read_lines
        self._tools: Dict[str, _ToolEntry] = {}
        self._register_tools()

    # ── Handlers ──

    def _read_file(self, a: ToolArguments) -> Outcome:
        args = ReadFileArgs.parse(a)
        return self.file_ops.read_file(args.filename, args.offset), 0

    def _write_file(self, a: ToolArguments) -> Outcome:
        args = WriteFileArgs.parse(a)
        return self.file_ops.write_file(args.filename, args.content), 0

    def _move_file(self, a: ToolArguments) -> Outcome:
        args = TransferArgs.parse(a)
        return self.file_ops.move_file(args.source_path, args.destination_path), 0

    def _copy_file(self, a: ToolArguments) -> Outcome:
        args = TransferArgs.parse(a)
        return self.file_ops.copy_file(args.source_path, args.destination_path), 0

    def _grep_search(self, a: ToolArguments) -> Outcome:
        args = GrepArgs.parse(a)
        return self.file_ops.grep_search(args.pattern, args.directory_path,
                                         args.file_pattern, args.case_insensitive)

    def _run_search_replace(self, a: ToolArguments) -> Outcome:
        args = SearchReplaceArgs.parse(a)
        # Refuse paths outside the project before touching the engine.
        self.file_ops._resolve(args.file_path)
        return self.search_replace(args.file_path, args.content)

    def _register_tools(self):
        """Register all tools: single source of truth for schema + handler."""
        f = self.file_ops
        T = _ToolEntry
        S = _schema
        n = self.max_read_lines

        self._tools["run_shell_command"] = T(
            handler=lambda a: self.shell.execute(ShellArgs.parse(a).command),
            schema=S("run_shell_command",
                     "Execute a shell command on the host system and return its output.",
                     {"command": _S("Full command line to execute. Keep it short and avoid interactive programs.")},
                     ["command"]),
            describe=lambda a: a.optional("command"),
        )
        self._tools["read_file"] = T(
            handler=self._read_file,
            schema=S("read_file",
                     f"Read the contents of a local file and return it as a string. Always reads up to {n} lines. "
                     "Use the offset parameter to read different parts of large files.",
                     {"filename": _S("The path of the file to read." + _PATH_NOTE),
                      "offset": _S(f"Optional. Line number to start reading from (0-indexed, default: 0). "
                                   f"For example, offset {n} reads lines {n}-{n * 2 - 1}.")},
                     ["filename"]),
            describe=lambda a: f"read file: {a.optional('filename')}",
        )
        self._tools["write_file"] = T(
            handler=self._write_file,
            schema=S("write_file",
                     "Write the given content to a local file, creating or overwriting it.",
                     {"filename": _S("The path of the file to write to." + _PATH_NOTE),
                      "content": _S("The content to write into the file.")},
                     ["filename", "content"]),
            describe=lambda a: f"write file: {a.optional('filename')}",
        )
        self._tools["move_file"] = T(
            handler=self._move_file,
            schema=S("move_file",
                     "Move or rename a file from one location to another. "
                     "Destination directory will be created if it doesn't exist.",
                     {"source_path": _S("The path of the file to move." + _PATH_NOTE),
                      "destination_path": _S("The path where the file should be moved to." + _PATH_NOTE)},
                     ["source_path", "destination_path"]),
            describe=lambda a: f"move file: {a.optional('source_path')}",
        )
        self._tools["copy_file"] = T(
            handler=self._copy_file,
            schema=S("copy_file",
                     "Copy a file from one location to another. "
                     "Destination directory will be created if it doesn't exist.",
                     {"source_path": _S("The path of the file to copy." + _PATH_NOTE),
                      "destination_path": _S("The path where the file should be copied to." + _PATH_NOTE)},
                     ["source_path", "destination_path"]),
            describe=lambda a: f"copy file: {a.optional('source_path')}",
        )
        self._tools["delete_file"] = T(
            handler=lambda a: (f.delete_file(PathArgs.parse_key(a, "file_path").path), 0),
            schema=S("delete_file",
                     "Delete a file from the file system. Use with caution as this operation cannot be undone.",
                     {"file_path": _S("The path of the file to delete." + _PATH_NOTE)},
                     ["file_path"]),
            describe=lambda a: f"delete file: {a.optional('file_path')}",
        )
        self._tools["list_directory"] = T(
            handler=lambda a: (f.list_directory(PathArgs.parse_key(a, "directory_path").path), 0),
            schema=S("list_directory",
                     "List all files and subdirectories in a given directory.",
                     {"directory_path": _S("The path of the directory to list." + _PATH_NOTE)},
                     ["directory_path"]),
            describe=lambda a: f"list directory: {a.optional('directory_path')}",
        )
        self._tools["grep_search"] = T(
            handler=self._grep_search,
            schema=S("grep_search",
                     "Recursively search for a regular expression pattern in files. Automatically ignores "
                     "files you should not read like .pyc files, .venv directories, node_modules, .git, "
                     "bin/obj folders, etc. Use this to find where functions are defined, how variables "
                     "are used, or to locate specific error messages.",
                     {"pattern": _S("The regular expression pattern to search for."),
                      "directory_path": _S("Optional. The directory to search in. Defaults to the project root."),
                      "file_pattern": _S("Optional. File pattern to filter (e.g., '*.cs', '*.py'). "
                                         "Searches all files if not specified."),
                      "case_insensitive": _S("Optional. Set to 'true' for case-insensitive search. "
                                             "Default is case-sensitive.")},
                     ["pattern"]),
            describe=lambda a: f"grep '{a.optional('pattern')}'"
                               + (f" in {a.optional('directory_path')}" if a.optional("directory_path") else ""),
        )
        self._tools["search_replace"] = T(
            handler=self._run_search_replace,
            schema=S("search_replace",
                     "Make targeted changes to a file using SEARCH/REPLACE blocks. The content format is: "
                     "<<<<<<< SEARCH\n[exact text to find]\n=======\n[exact text to replace with]\n"
                     ">>>>>>> REPLACE. Include multiple blocks to make multiple changes to the same file. "
                     "The SEARCH text must match EXACTLY once (including whitespace, indentation, and "
                     "line endings). The user reviews a diff before anything is written.",
                     {"file_path": _S("The path of the file to modify." + _PATH_NOTE),
                      "content": _S("The SEARCH/REPLACE blocks defining the changes.")},
                     ["file_path", "content"]),
            describe=lambda a: f"search_replace: {a.optional('file_path')}",
        )

    # ── Public API ──

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    @property
    def schemas(self) -> List[dict]:
        return [entry.schema for entry in self._tools.values()]

    def definitions_length(self) -> int:
        """Serialized size of the tool catalogue, for token overhead."""
        return len(json.dumps(self.schemas, ensure_ascii=False))

    def describe(self, call: ToolCall) -> str:
        entry = self._tools.get(call.name)
        if not entry:
            return call.name
        return entry.describe(ToolArguments(call.name, call.arguments))

    def _invoke(self, call: ToolCall) -> Outcome:
        entry = self._tools.get(call.name)
        if not entry:
            return f"error: unknown tool '{call.name}'.", 1

        args = ToolArguments(call.name, call.arguments)
        _log.debug("Dispatch %s", entry.describe(args)[:120])
        try:
            return entry.handler(args)
        except ToolArgumentMissing as e:
            _log.warning("%s", e)
            return f"error: missing '{e.argument}' argument.", 1
        except (FileOperationError, ShellBlockedError) as e:
            return str(e), 1
        except Exception as e:
            failure = ToolExecutionFailure(call.name, str(e) or type(e).__name__)
            _log.exception("%s", failure)
            return f"error: {str(e) or type(e).__name__}", -1

    def dispatch(self, call: ToolCall) -> ToolResult:
        """Run one call. Every failure is folded into the result."""
        output, code = self._invoke(call)
        return ToolResult(exit_code=code, content=format_command_result(output, code))

    @classmethod
    def gates_itself(cls, tool_name: str) -> bool:
        return tool_name in cls.SELF_GATED_TOOLS
