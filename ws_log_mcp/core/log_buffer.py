"""Bounded in-memory ring buffer of upstream log lines."""

from __future__ import annotations

import threading
from collections import deque

from ..types import MAX_LOG_LINES


class LogBuffer:
    """Ordered, capacity-bound store of text lines.

    One writer (connection events) and many readers (resource reads, tool
    calls).  Thread-safe: every read and write holds ``_lock`` so a reader
    never sees a half-applied append.  Overflow evicts the oldest lines.
    """

    def __init__(self, capacity: int = MAX_LOG_LINES) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._lines: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._total = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def total_appended(self) -> int:
        with self._lock:
            return self._total

    @property
    def dropped(self) -> int:
        """Lines evicted since startup."""
        with self._lock:
            return self._total - len(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)
            self._total += 1

    def snapshot(self, tail: int | None = None) -> list[str]:
        """Return lines oldest-first; only the last *tail* lines when given."""
        with self._lock:
            if tail is None:
                return list(self._lines)
            if tail <= 0:
                return []
            n = min(tail, len(self._lines))
            return [self._lines[i] for i in range(len(self._lines) - n, len(self._lines))]

    def text(self, tail: int | None = None) -> str:
        return "\n".join(self.snapshot(tail))
