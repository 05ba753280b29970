"""Token estimation and the running character/token counter."""

import math
import re
import threading
from typing import Optional

import tiktoken

from .logger import get_logger

_log = get_logger(__name__)

_encoder_cache = {}

CHARS_PER_TOKEN = 4
_CJK_RE = re.compile(r'[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]')


def _get_encoder(model: str):
    """Get tiktoken encoder for model, with caching."""
    if model in _encoder_cache:
        return _encoder_cache[model]

    try:
        enc = tiktoken.encoding_for_model(model)
    except KeyError:
        # Unknown model name: cl100k_base is close enough for budgeting.
        enc = tiktoken.get_encoding("cl100k_base")

    _encoder_cache[model] = enc
    return enc


def estimate_tokens(text: str, model: Optional[str] = None) -> int:
    """Estimate token count for text.

    Uses tiktoken for accurate counting when a model is given,
    falls back to heuristic estimation otherwise.
    """
    if not text:
        return 0

    if model:
        try:
            return len(_get_encoder(model).encode(text))
        except Exception as e:
            # Encoding files unavailable (offline first run); use the heuristic.
            _log.debug("tiktoken unavailable for %s: %s", model, e)

    return _heuristic_estimate(text)


def _heuristic_estimate(text: str) -> int:
    """Heuristic token estimation for mixed CJK/English text."""
    if not text:
        return 0

    cjk_chars = len(_CJK_RE.findall(text))
    non_cjk = _CJK_RE.sub(' ', text)

    # English: ~4 chars per token, CJK: ~1.5 chars per token
    english_tokens = len(non_cjk) / 4
    cjk_tokens = cjk_chars / 1.5

    return max(1, int(english_tokens + cjk_tokens))


def approximate_tokens(char_count: int) -> int:
    """Cheap chars/4 estimate used for the live status line."""
    if char_count <= 0:
        return 0
    return math.ceil(char_count / CHARS_PER_TOKEN)


class TokenCounter:
    """Running character count of the visible conversation.

    Written from the worker thread, read from the UI thread. ``overhead`` is
    the fixed cost of the system prompt and the tool catalogue, which are sent
    with every request but never shown.
    """

    def __init__(self, overhead_chars: int = 0):
        self._lock = threading.Lock()
        self._chars = 0
        self.overhead_chars = max(0, overhead_chars)

    def add(self, delta: int) -> None:
        if not delta:
            return
        with self._lock:
            self._chars = max(0, self._chars + delta)

    def reset(self, count: int = 0) -> None:
        with self._lock:
            self._chars = max(0, count)

    @property
    def chars(self) -> int:
        with self._lock:
            return self._chars

    def snapshot(self) -> int:
        """Approximate token count including the fixed overhead."""
        return approximate_tokens(self.chars + self.overhead_chars)

    def status_text(self, context_window: Optional[int] = None) -> str:
        tokens = self.snapshot()
        if context_window and context_window > 0:
            pct = tokens / context_window * 100
            return f"Tokens: ~{tokens:,} / {context_window:,} ({pct:.1f}%)"
        return f"Tokens: ~{tokens:,}"
