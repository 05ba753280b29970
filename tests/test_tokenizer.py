"""Tests for token estimation and the running counter."""

import threading
from unittest.mock import patch

from nyocoder.tokenizer import TokenCounter, approximate_tokens, estimate_tokens


def test_approximate_tokens():
    assert approximate_tokens(0) == 0
    assert approximate_tokens(1) == 1
    assert approximate_tokens(8) == 2
    assert approximate_tokens(9) == 3


def test_heuristic_without_model():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd" * 10) == 10
    assert estimate_tokens("你好世界你好") == 5


def test_encoder_failure_falls_back_to_heuristic():
    with patch("nyocoder.tokenizer._get_encoder", side_effect=OSError("offline")):
        assert estimate_tokens("abcd" * 10, model="gpt-4o") == 10


class TestTokenCounter:
    def test_add_and_reset(self):
        counter = TokenCounter(overhead_chars=40)
        counter.add(40)
        assert counter.chars == 40
        assert counter.snapshot() == 20
        counter.reset(4)
        assert counter.chars == 4
        counter.add(-100)
        assert counter.chars == 0

    def test_status_text(self):
        counter = TokenCounter()
        counter.add(4000)
        assert counter.status_text() == "Tokens: ~1,000"
        assert counter.status_text(10000) == "Tokens: ~1,000 / 10,000 (10.0%)"

    def test_concurrent_adds(self):
        counter = TokenCounter()

        def worker():
            for _ in range(1000):
                counter.add(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter.chars == 4000
