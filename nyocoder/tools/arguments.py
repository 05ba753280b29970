"""Tool-call arguments, decoded once at the dispatch boundary."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import ToolArgumentMissing
from ..logger import get_logger

_log = get_logger(__name__)


def decode_arguments(tool_name: str, raw: str) -> Dict[str, Any]:
    """Parse the JSON argument text; malformed or non-object input yields {}."""
    if not raw or not raw.strip():
        return {}
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        _log.warning("Malformed arguments for %s: %s", tool_name, e)
        return {}
    if not isinstance(obj, dict):
        _log.warning("Arguments for %s are not an object: %r", tool_name, raw[:80])
        return {}
    return obj


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class ToolArguments:
    """Lookup over a decoded argument object.

    Keys match exactly first, then case-insensitively. Values come back as
    trimmed strings; non-string JSON values are serialized.
    """

    def __init__(self, tool_name: str, raw: str = ""):
        self.tool_name = tool_name
        self.raw = raw or ""
        self.values = decode_arguments(tool_name, self.raw)

    def _lookup(self, key: str) -> Optional[str]:
        if key in self.values:
            return _as_text(self.values[key])
        lowered = key.lower()
        for k, v in self.values.items():
            if isinstance(k, str) and k.lower() == lowered:
                return _as_text(v)
        return None

    def optional(self, key: str, default: str = "") -> str:
        value = self._lookup(key)
        if value is None:
            return default
        return value.strip()

    def required(self, key: str) -> str:
        value = self.optional(key)
        if not value:
            raise ToolArgumentMissing(self.tool_name, key)
        return value


# Typed records, one per tool.

@dataclass(frozen=True)
class ShellArgs:
    command: str

    @classmethod
    def parse(cls, args: ToolArguments) -> "ShellArgs":
        return cls(command=args.required("command"))


@dataclass(frozen=True)
class ReadFileArgs:
    filename: str
    offset: int = 0

    @classmethod
    def parse(cls, args: ToolArguments) -> "ReadFileArgs":
        filename = args.required("filename")
        try:
            offset = int(args.optional("offset") or 0)
        except ValueError:
            offset = 0
        return cls(filename=filename, offset=offset)


@dataclass(frozen=True)
class WriteFileArgs:
    filename: str
    content: str

    @classmethod
    def parse(cls, args: ToolArguments) -> "WriteFileArgs":
        return cls(filename=args.required("filename"), content=args.optional("content"))


@dataclass(frozen=True)
class TransferArgs:
    source_path: str
    destination_path: str

    @classmethod
    def parse(cls, args: ToolArguments) -> "TransferArgs":
        return cls(source_path=args.required("source_path"),
                   destination_path=args.required("destination_path"))


@dataclass(frozen=True)
class PathArgs:
    path: str

    @classmethod
    def parse_key(cls, args: ToolArguments, key: str) -> "PathArgs":
        return cls(path=args.required(key))


@dataclass(frozen=True)
class GrepArgs:
    pattern: str
    directory_path: str = ""
    file_pattern: str = ""
    case_insensitive: bool = False

    @classmethod
    def parse(cls, args: ToolArguments) -> "GrepArgs":
        return cls(
            pattern=args.required("pattern"),
            directory_path=args.optional("directory_path"),
            file_pattern=args.optional("file_pattern"),
            case_insensitive=args.optional("case_insensitive").lower() == "true",
        )


@dataclass(frozen=True)
class SearchReplaceArgs:
    file_path: str
    content: str

    @classmethod
    def parse(cls, args: ToolArguments) -> "SearchReplaceArgs":
        return cls(file_path=args.required("file_path"), content=args.required("content"))
