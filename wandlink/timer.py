"""Monotonic periodic scheduling for the display pump.

Ticks are coalesced: when a task overruns, the next tick fires right away
and the missed ones are skipped rather than queued.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

Clock = Callable[[], float]


def next_deadline(previous: float, interval: float, now: float) -> float:
    """Deadline following *previous*, clamped to *now* when already late."""
    deadline = previous + interval
    if deadline < now:
        return now
    return deadline


class TimerHandle:
    """A running periodic task. Cancel it to stop the thread."""

    def __init__(self, interval: float, task: Callable[[], None], *,
                 clock: Clock = time.monotonic, name: str = 'Timer'):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._task = task
        self._clock = clock
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.ticks = 0
        self.errors = 0

    def start(self) -> "TimerHandle":
        self._thread.start()
        return self

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._cancelled.is_set()

    def cancel(self, timeout: Optional[float] = 1.0) -> None:
        self._cancelled.set()
        if self._thread is not threading.current_thread() and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        deadline = self._clock()
        while not self._cancelled.is_set():
            delay = deadline - self._clock()
            if delay > 0 and self._cancelled.wait(delay):
                break
            try:
                self._task()
            except Exception as exc:
                self.errors += 1
                print(f"Warning: periodic task failed: {exc}")
            self.ticks += 1
            deadline = next_deadline(deadline, self.interval, self._clock())


class Timer:
    """Creates and tracks periodic tasks."""

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._handles: List[TimerHandle] = []
        self._lock = threading.Lock()

    def every(self, interval: float, task: Callable[[], None], name: str = 'Timer') -> TimerHandle:
        """Run *task* every *interval* seconds, starting immediately."""
        handle = TimerHandle(interval, task, clock=self._clock, name=name)
        with self._lock:
            self._handles.append(handle)
        return handle.start()

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)
        handle.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
