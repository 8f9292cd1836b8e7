"""Bounded, drop-oldest queue of decoded bitmaps."""
from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, Optional

from .config import QUEUE_CAPACITY


class FrameQueue:
    """Shared between the decode worker (producer) and the display pump (consumer)."""

    def __init__(self, capacity: int = QUEUE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: Deque[Any] = deque()
        self._lock = threading.Lock()
        self.dropped = 0

    def push(self, bitmap: Any) -> Optional[Any]:
        """Append a bitmap, evicting the oldest one when full.

        Returns:
            The evicted bitmap, or None
        """
        evicted = None
        with self._lock:
            if len(self._items) >= self.capacity:
                evicted = self._items.popleft()
                self.dropped += 1
            self._items.append(bitmap)
        return evicted

    def pop(self) -> Optional[Any]:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
