"""
Fixed-capacity circular store for 16 kHz float samples.

The capture processing thread is the only writer; scheduler threads read
snapshots concurrently. A single lock serializes every operation.
"""

import threading

import numpy as np


class RingBuffer:
    """Circular float32 sample buffer that overwrites its oldest samples when full."""

    def __init__(self, capacity: int):
        self._capacity = max(1, int(capacity))
        self._storage = np.zeros(self._capacity, dtype=np.float32)
        self._write_index = 0
        self._count = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def clear(self) -> None:
        """Reset to empty without reallocating the backing store."""
        with self._lock:
            self._write_index = 0
            self._count = 0
            self._storage.fill(0.0)

    def append(self, samples: np.ndarray) -> None:
        """Write samples at the cursor, overwriting the oldest data once full."""
        data = np.asarray(samples, dtype=np.float32).ravel()
        n = data.size
        if n == 0:
            return

        with self._lock:
            capacity = self._capacity
            if n >= capacity:
                # Only the newest `capacity` samples survive; lay them out so the
                # oldest of them sits at the cursor.
                data = data[-capacity:]
                start = (self._write_index + n - capacity) % capacity
                head = capacity - start
                self._storage[start:] = data[:head]
                self._storage[:start] = data[head:]
                self._write_index = start
                self._count = capacity
                return

            end = self._write_index + n
            if end <= capacity:
                self._storage[self._write_index : end] = data
            else:
                first = capacity - self._write_index
                self._storage[self._write_index :] = data[:first]
                self._storage[: n - first] = data[first:]
            self._write_index = end % capacity
            self._count = min(capacity, self._count + n)

    def snapshot(self) -> np.ndarray:
        """Return the held samples oldest-first as a new array."""
        with self._lock:
            count = self._count
            if count == 0:
                return np.zeros(0, dtype=np.float32)
            capacity = self._capacity
            start = (self._write_index - count) % capacity
            if start + count <= capacity:
                return self._storage[start : start + count].copy()
            return np.concatenate(
                (self._storage[start:], self._storage[: count - (capacity - start)])
            )
