"""
Configuration: one value object loaded at session start.

Loading priority:
  1. Project dir .nyocoder.yml
  2. Git root .nyocoder.yml
  3. Global ~/.nyocoder/config.yml

Environment (after .env files are loaded) overrides file values:
NYOCODER_API_KEY, NYOCODER_LLM_SERVER, NYOCODER_MODEL, NYOCODER_VERBOSE.

There is no implicit reload. Changing configuration means building a new
Session from a freshly loaded Config.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .logger import get_logger

_log = get_logger(__name__)

CONFIG_DIR = Path.home() / ".nyocoder"
CONFIG_FILE = CONFIG_DIR / "config.yml"
HISTORY_FILE = CONFIG_DIR / "history.txt"
PROJECT_CONFIG_NAME = ".nyocoder.yml"

DEFAULT_LLM_SERVER = "http://localhost:8080"
DEFAULT_APPROVAL_TOOLS = [
    "run_shell_command",
    "write_file",
    "move_file",
    "delete_file",
    "search_replace",
]
DEFAULT_BLOCKED_COMMANDS = [
    "rm -rf /", "rm -rf /*", "mkfs", "dd if=", "> /dev/sda",
    "sudo ", "chmod 777", "curl|sh", "curl|bash", "wget|sh",
    ":(){:|:&};:",  # fork bomb
]


# ── Configuration metadata and validation ──


@dataclass
class ConfigFieldSpec:
    """Configuration field specification with validation rules."""
    key: str
    field_name: str
    description: str
    value_type: str  # "str", "int", "bool", "list"
    default: Any
    validator: Optional[Callable[[Any], tuple[bool, Any, str]]] = None  # (valid, coerced_value, error_msg)


def _validate_int_range(value: Any, min_val: int, max_val: int) -> tuple[bool, int, str]:
    """Validate integer within range."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return False, 0, "Must be an integer"
    if parsed < min_val or parsed > max_val:
        return False, max(min_val, min(max_val, parsed)), f"Must be between {min_val} and {max_val}"
    return True, parsed, ""


def _validate_bool(value: Any) -> tuple[bool, bool, str]:
    """Validate boolean value."""
    if isinstance(value, bool):
        return True, value, ""
    if isinstance(value, str):
        val_lower = value.strip().lower()
        if val_lower in ("1", "true", "yes", "on"):
            return True, True, ""
        if val_lower in ("0", "false", "no", "off"):
            return True, False, ""
    return False, False, "Must be true/false, yes/no, on/off, or 1/0"


def _validate_name_list(value: Any) -> tuple[bool, List[str], str]:
    """Validate a list of tool names (list or comma-separated string)."""
    if isinstance(value, str):
        raw_values = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        raw_values = [str(item) for item in value]
    else:
        return False, [], "Must be a list or comma-separated string"

    cleaned = []
    for item in raw_values:
        name = item.strip()
        if name and name not in cleaned:
            cleaned.append(name)
    return True, cleaned, ""


def _validate_url(value: Any) -> tuple[bool, str, str]:
    text = str(value or "").strip().rstrip("/")
    if not text.startswith(("http://", "https://")):
        return False, "", "Must start with http:// or https://"
    return True, text, ""


CONFIG_FIELDS: Dict[str, ConfigFieldSpec] = {
    "api-key": ConfigFieldSpec(
        key="api-key",
        field_name="api_key",
        description="Bearer token sent to the completion endpoint",
        value_type="str",
        default="",
    ),
    "llm-server": ConfigFieldSpec(
        key="llm-server",
        field_name="llm_server",
        description="Endpoint base URL (/v1/chat/completions is appended)",
        value_type="str",
        default=DEFAULT_LLM_SERVER,
        validator=_validate_url,
    ),
    "model": ConfigFieldSpec(
        key="model",
        field_name="model",
        description="Model name sent with every request",
        value_type="str",
        default="local-model",
    ),
    "max-content-length": ConfigFieldSpec(
        key="max-content-length",
        field_name="max_content_length",
        description="Maximum characters of tool output kept per call",
        value_type="int",
        default=8000,
        validator=lambda v: _validate_int_range(v, 500, 1_000_000),
    ),
    "max-read-lines": ConfigFieldSpec(
        key="max-read-lines",
        field_name="max_read_lines",
        description="Lines returned by one read_file call",
        value_type="int",
        default=500,
        validator=lambda v: _validate_int_range(v, 10, 100_000),
    ),
    "context-window-size": ConfigFieldSpec(
        key="context-window-size",
        field_name="context_window_size",
        description="Model context window in tokens (0 = unknown)",
        value_type="int",
        default=0,
        validator=lambda v: _validate_int_range(v, 0, 10_000_000),
    ),
    "command-timeout": ConfigFieldSpec(
        key="command-timeout",
        field_name="command_timeout",
        description="Shell command timeout in seconds",
        value_type="int",
        default=30,
        validator=lambda v: _validate_int_range(v, 1, 3600),
    ),
    "request-timeout": ConfigFieldSpec(
        key="request-timeout",
        field_name="request_timeout",
        description="Read timeout for the streaming HTTP response in seconds",
        value_type="int",
        default=300,
        validator=lambda v: _validate_int_range(v, 5, 3600),
    ),
    "max-iterations": ConfigFieldSpec(
        key="max-iterations",
        field_name="max_iterations",
        description="Maximum model round-trips per turn",
        value_type="int",
        default=50,
        validator=lambda v: _validate_int_range(v, 1, 500),
    ),
    "diff-max-lines": ConfigFieldSpec(
        key="diff-max-lines",
        field_name="diff_max_lines",
        description="Line budget of the search_replace review diff",
        value_type="int",
        default=200,
        validator=lambda v: _validate_int_range(v, 10, 10_000),
    ),
    "show-tool-output": ConfigFieldSpec(
        key="show-tool-output",
        field_name="show_tool_output",
        description="Echo tool results to the output pane",
        value_type="bool",
        default=True,
    ),
    "tools-requiring-approval": ConfigFieldSpec(
        key="tools-requiring-approval",
        field_name="tools_requiring_approval",
        description="Tools that need explicit user approval",
        value_type="list",
        default=list(DEFAULT_APPROVAL_TOOLS),
        validator=_validate_name_list,
    ),
    "verbose": ConfigFieldSpec(
        key="verbose",
        field_name="verbose",
        description="Debug logging",
        value_type="bool",
        default=False,
    ),
}


def validate_config_value(key: str, value: Any) -> tuple[bool, Any, str]:
    """
    Validate a configuration value.

    Returns:
        (is_valid, coerced_value, error_message)
    """
    if key not in CONFIG_FIELDS:
        return False, value, f"Unknown configuration key: {key}"

    spec = CONFIG_FIELDS[key]

    if spec.validator:
        return spec.validator(value)

    if spec.value_type == "str":
        return True, str(value), ""
    elif spec.value_type == "int":
        try:
            return True, int(value), ""
        except (TypeError, ValueError):
            return False, spec.default, "Must be an integer"
    elif spec.value_type == "bool":
        return _validate_bool(value)

    return True, value, ""


@dataclass
class Config:
    api_key: str = ""
    llm_server: str = DEFAULT_LLM_SERVER
    model: str = "local-model"
    max_content_length: int = 8000
    max_read_lines: int = 500
    context_window_size: int = 0
    command_timeout: int = 30
    request_timeout: int = 300
    max_iterations: int = 50
    diff_max_lines: int = 200
    show_tool_output: bool = True
    tools_requiring_approval: List[str] = field(default_factory=lambda: list(DEFAULT_APPROVAL_TOOLS))
    blocked_commands: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS))
    verbose: bool = False
    project_root: Optional[str] = None
    project_instructions: Optional[str] = None
    _config_source: str = ""

    @classmethod
    def load(cls, project_dir: str = ".") -> "Config":
        config = cls()
        project_path = Path(project_dir).resolve()

        for env_path in [CONFIG_DIR / ".env", project_path / ".env"]:
            if env_path.exists():
                load_dotenv(env_path, override=False)

        git_root = cls._find_git_root(project_path)
        for candidate in [
            project_path / PROJECT_CONFIG_NAME,
            (git_root / PROJECT_CONFIG_NAME) if git_root and git_root != project_path else None,
            CONFIG_FILE,
        ]:
            if candidate and candidate.exists():
                config._load_yaml(candidate)
                config._config_source = str(candidate)
                break

        config._apply_env()
        config.project_root = str(project_path)

        agent_md = project_path / "AGENT.md"
        if agent_md.is_file():
            config.project_instructions = agent_md.read_text(encoding="utf-8", errors="replace")

        _log.debug("Config loaded from %s", config._config_source or "<defaults>")
        return config

    def _load_yaml(self, filepath: Path):
        try:
            with open(filepath, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Ignoring unreadable config %s: %s", filepath, e)
            return
        if not isinstance(data, dict):
            _log.warning("Ignoring config %s: top level must be a mapping", filepath)
            return

        self.api_key = str(data.get("api-key", self.api_key) or "")
        ok, server, _ = validate_config_value("llm-server", data.get("llm-server", self.llm_server))
        if ok:
            self.llm_server = server
        self.model = str(data.get("model", self.model) or self.model)
        self.max_content_length = self._coerce_positive_int(
            data.get("max-content-length", 8000), default=8000, min_value=500, max_value=1_000_000
        )
        self.max_read_lines = self._coerce_positive_int(
            data.get("max-read-lines", 500), default=500, min_value=10, max_value=100_000
        )
        self.context_window_size = self._coerce_positive_int(
            data.get("context-window-size", 0), default=0, min_value=0, max_value=10_000_000
        )
        self.command_timeout = self._coerce_positive_int(
            data.get("command-timeout", 30), default=30, min_value=1, max_value=3600
        )
        self.request_timeout = self._coerce_positive_int(
            data.get("request-timeout", 300), default=300, min_value=5, max_value=3600
        )
        self.max_iterations = self._coerce_positive_int(
            data.get("max-iterations", 50), default=50, min_value=1, max_value=500
        )
        self.diff_max_lines = self._coerce_positive_int(
            data.get("diff-max-lines", 200), default=200, min_value=10, max_value=10_000
        )
        self.show_tool_output = self._coerce_bool(data.get("show-tool-output"), True)
        self.verbose = self._coerce_bool(data.get("verbose"), False)

        if "tools-requiring-approval" in data:
            ok, names, err = validate_config_value("tools-requiring-approval", data["tools-requiring-approval"])
            if ok:
                self.tools_requiring_approval = names
            else:
                _log.warning("tools-requiring-approval: %s", err)

        blocked = data.get("blocked-commands")
        if isinstance(blocked, list):
            self.blocked_commands = [str(item) for item in blocked if str(item).strip()]

    def _apply_env(self):
        env_map = {
            "NYOCODER_API_KEY": ("api_key", str),
            "NYOCODER_LLM_SERVER": ("llm_server", lambda v: v.strip().rstrip("/")),
            "NYOCODER_MODEL": ("model", str),
            "NYOCODER_VERBOSE": ("verbose", lambda v: v.lower() in ("true", "1")),
        }
        for env_var, (attr, conv) in env_map.items():
            val = os.environ.get(env_var)
            if val:
                try:
                    setattr(self, attr, conv(val))
                except (ValueError, TypeError) as e:
                    _log.warning("Ignoring %s: %s", env_var, e)

    @property
    def approval_tools(self) -> frozenset:
        return frozenset(self.tools_requiring_approval)

    @property
    def context_window(self) -> Optional[int]:
        return self.context_window_size or None

    def summary(self) -> dict:
        masked = ""
        if self.api_key:
            masked = self.api_key[:4] + "…" if len(self.api_key) > 8 else "***"
        return {
            "source": self._config_source or "(defaults)",
            "llm-server": self.llm_server,
            "model": self.model,
            "api-key": masked or "(not set)",
            "max-content-length": self.max_content_length,
            "max-read-lines": self.max_read_lines,
            "context-window-size": self.context_window_size or "(unknown)",
            "command-timeout": f"{self.command_timeout}s",
            "max-iterations": self.max_iterations,
            "tools-requiring-approval": ", ".join(self.tools_requiring_approval) or "(none)",
            "project-root": self.project_root,
        }

    def get_config_value(self, key: str) -> Any:
        """Get configuration value by key."""
        if key not in CONFIG_FIELDS:
            return None
        spec = CONFIG_FIELDS[key]
        return getattr(self, spec.field_name, spec.default)

    @staticmethod
    def _coerce_bool(value, default: bool) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in ("1", "true", "yes", "on"):
                return True
            if text in ("0", "false", "no", "off"):
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        return default

    @staticmethod
    def _coerce_positive_int(value, default: int, min_value: int = 1, max_value: int = 100000) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        if parsed < min_value:
            return min_value
        if parsed > max_value:
            return max_value
        return parsed

    @staticmethod
    def _find_git_root(path: Path) -> Optional[Path]:
        current = path
        while current != current.parent:
            if (current / ".git").exists():
                return current
            current = current.parent
        return None
