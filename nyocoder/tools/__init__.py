from .registry import ToolRegistry, ToolResult, format_command_result
from .file_ops import FileOps, FileOperationError
from .shell import ShellExecutor
__all__ = ["ToolRegistry", "ToolResult", "format_command_result",
           "FileOps", "FileOperationError", "ShellExecutor"]
