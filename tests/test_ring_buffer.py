"""Tests for the circular sample buffer."""

from __future__ import annotations

import threading

import numpy as np

from voice_input.core.ring_buffer import RingBuffer


def _arange(start: int, stop: int) -> np.ndarray:
    return np.arange(start, stop, dtype=np.float32)


def test_snapshot_of_empty_buffer_is_empty() -> None:
    buffer = RingBuffer(8)

    snapshot = buffer.snapshot()

    assert snapshot.size == 0
    assert snapshot.dtype == np.float32
    assert len(buffer) == 0


def test_appends_within_capacity_are_returned_in_order() -> None:
    buffer = RingBuffer(10)
    buffer.append(_arange(0, 3))
    buffer.append(_arange(3, 7))

    np.testing.assert_array_equal(buffer.snapshot(), _arange(0, 7))
    assert len(buffer) == 7


def test_overflow_keeps_most_recent_samples_across_wrap() -> None:
    buffer = RingBuffer(5)
    buffer.append(_arange(0, 3))
    buffer.append(_arange(3, 7))

    np.testing.assert_array_equal(buffer.snapshot(), _arange(2, 7))
    assert len(buffer) == 5


def test_append_longer_than_capacity_keeps_its_tail() -> None:
    buffer = RingBuffer(4)
    buffer.append(_arange(100, 103))
    buffer.append(_arange(0, 10))

    np.testing.assert_array_equal(buffer.snapshot(), _arange(6, 10))

    buffer.append(_arange(10, 11))
    np.testing.assert_array_equal(buffer.snapshot(), _arange(7, 11))


def test_clear_resets_to_empty() -> None:
    buffer = RingBuffer(4)
    buffer.append(_arange(0, 6))

    buffer.clear()

    assert buffer.snapshot().size == 0
    assert len(buffer) == 0
    assert buffer.capacity == 4

    buffer.append(_arange(1, 3))
    np.testing.assert_array_equal(buffer.snapshot(), _arange(1, 3))


def test_snapshot_is_a_copy() -> None:
    buffer = RingBuffer(4)
    buffer.append(_arange(0, 4))

    snapshot = buffer.snapshot()
    snapshot[:] = -1

    np.testing.assert_array_equal(buffer.snapshot(), _arange(0, 4))


def test_concurrent_reader_always_sees_consecutive_samples() -> None:
    buffer = RingBuffer(1000)
    done = threading.Event()
    errors: list[str] = []

    def writer() -> None:
        for start in range(0, 50_000, 37):
            buffer.append(_arange(start, start + 37))
        done.set()

    def reader() -> None:
        while not done.is_set():
            snapshot = buffer.snapshot()
            if snapshot.size > 1000:
                errors.append(f"snapshot too long: {snapshot.size}")
            if snapshot.size > 1 and not np.all(np.diff(snapshot) == 1):
                errors.append("snapshot not consecutive")
                return

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(buffer) == 1000
