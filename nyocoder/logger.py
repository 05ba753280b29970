"""Logging for nyocoder: turn-tagged records, console plus rotating file."""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional, Union

__all__ = ["setup_logger", "get_logger", "turn_scope", "current_turn"]

LOG_DIR_ENV = "NYOCODER_LOG_DIR"
LOG_FILE_NAME = "nyocoder.log"
DEFAULT_LOG_DIR = Path("~/.nyocoder/logs")
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s, %(turn)s): %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3
IDLE = "idle"

_turn_state = threading.local()


@contextmanager
def turn_scope(turn_id: int) -> Iterator[None]:
    """Mark records logged on this thread as belonging to ``turn_id``."""
    previous = getattr(_turn_state, "turn_id", None)
    _turn_state.turn_id = turn_id
    try:
        yield
    finally:
        _turn_state.turn_id = previous


def current_turn() -> Optional[int]:
    return getattr(_turn_state, "turn_id", None)


class TurnFilter(logging.Filter):
    """Stamps ``record.turn`` with the turn running on the emitting thread.

    Turns run on worker threads while the main thread answers approval
    prompts, so records from the two read apart in the log.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        turn_id = current_turn()
        record.turn = f"turn {turn_id}" if turn_id is not None else IDLE
        return True


class ConsoleFormatter(logging.Formatter):
    """One-letter level prefix; records from inside a turn name it."""

    def __init__(self) -> None:
        super().__init__("[%(levelname).1s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        turn = getattr(record, "turn", IDLE)
        if turn == IDLE:
            return base
        prefix, _, rest = base.partition(" ")
        return f"{prefix} ({turn}) {rest}"


def setup_logger(
    name: str,
    verbose: bool = False,
    log_file: Union[str, Path, bool, None] = None,
) -> logging.Logger:
    """Configure and return the package logger.

    Args:
        name: Logger name. ``"nyocoder"`` configures every module logger,
            since they are all children of the package logger.
        verbose: ``True`` enables DEBUG logs; ``False`` keeps output at WARNING+.
        log_file: File logging target.
            - ``None`` or ``True``: ``$NYOCODER_LOG_DIR/nyocoder.log``, or
              ``~/.nyocoder/logs/nyocoder.log`` when the variable is unset
            - ``False``: disable file logging
            - ``str``/``Path``: use a custom log file path
    """
    logger = logging.getLogger(name)
    level = logging.DEBUG if verbose else logging.WARNING

    # Calling again (e.g. after /config) replaces the handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False
    turn_filter = TurnFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.addFilter(turn_filter)
    console_handler.setFormatter(ConsoleFormatter())
    logger.addHandler(console_handler)

    log_path = _resolve_log_path(log_file)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.addFilter(turn_filter)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    # The HTTP stack logs every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name without changing its configuration."""
    return logging.getLogger(name)


def _resolve_log_path(log_file: Union[str, Path, bool, None]) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        env_dir = os.environ.get(LOG_DIR_ENV)
        base = Path(env_dir) if env_dir else DEFAULT_LOG_DIR
        return base.expanduser() / LOG_FILE_NAME
    return Path(log_file).expanduser()
