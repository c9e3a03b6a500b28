"""Tests for ObservationWindow."""

from __future__ import annotations

import random
import threading

import pytest

from lagguard.window import ObservationWindow


def _assert_consistent(window: ObservationWindow) -> None:
    counts = window.counts()
    assert sum(counts.values()) == window.total
    assert all(c > 0 for c in counts.values())
    assert window.total <= window.capacity


class TestObservationWindowBasic:
    def test_empty_window(self):
        window = ObservationWindow(capacity=10)
        assert window.total == 0
        assert window.count("a") == 0
        assert window.ratio("a") == 0

    def test_record_counts_per_key(self):
        window = ObservationWindow(capacity=10)
        window.record("a")
        window.record("a")
        window.record("b")
        assert window.total == 3
        assert window.count("a") == 2
        assert window.count("b") == 1

    def test_ratio_single_key_is_one(self):
        window = ObservationWindow(capacity=10)
        for _ in range(7):
            window.record("a")
        assert window.ratio("a") == 1

    def test_ratio_shared(self):
        window = ObservationWindow(capacity=10)
        window.record("a")
        window.record("b")
        assert window.ratio("a") == 0.5
        assert window.ratio("c") == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ObservationWindow(capacity=0)


class TestObservationWindowEviction:
    def test_oldest_key_evicted_first(self):
        window = ObservationWindow(capacity=3)
        window.record("a")
        window.record("b")
        window.record("c")
        window.record("d")
        assert window.total == 3
        assert window.count("a") == 0
        assert "a" not in window.counts()
        assert window.counts() == {"b": 1, "c": 1, "d": 1}

    def test_eviction_decrements_repeated_key(self):
        window = ObservationWindow(capacity=3)
        for key in ("a", "a", "b", "c"):
            window.record(key)
        assert window.counts() == {"a": 1, "b": 1, "c": 1}

    def test_capacity_one(self):
        window = ObservationWindow(capacity=1)
        window.record("a")
        window.record("b")
        assert window.counts() == {"b": 1}
        assert window.ratio("b") == 1

    def test_invariant_after_random_sequence(self):
        rng = random.Random(1234)
        window = ObservationWindow(capacity=50)
        calls = 0
        for _ in range(400):
            window.record(rng.choice("abcdefg"))
            calls += 1
            _assert_consistent(window)
        assert window.total == min(calls, 50)

    def test_clear(self):
        window = ObservationWindow(capacity=5)
        window.record("a")
        window.clear()
        assert window.total == 0
        assert window.counts() == {}


class TestObservationWindowThreadSafety:
    def test_concurrent_records_keep_counts_exact(self):
        window = ObservationWindow(capacity=100)
        barrier = threading.Barrier(8)

        def worker(n: int) -> None:
            barrier.wait()
            for i in range(500):
                window.record(f"k{(n + i) % 5}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        _assert_consistent(window)
        assert window.total == 100
