"""Session tuning parameters collected in one place."""
from __future__ import annotations

from dataclasses import dataclass

from .config import (
    JOIN_TIMEOUT, MAX_PAYLOAD_SIZE, OUTBOUND_QUEUE_SIZE, QUEUE_CAPACITY, RENDER_INTERVAL_MS,
)


@dataclass(frozen=True)
class SessionSettings:
    """Defaults used by the session and its role handlers."""

    render_interval_ms: int = RENDER_INTERVAL_MS
    """Display pump period in milliseconds. 16 ms keeps the controller at ~60 fps."""

    queue_capacity: int = QUEUE_CAPACITY
    """Decoded bitmaps buffered on the controller. The oldest one is dropped on overflow."""

    max_payload_bytes: int = MAX_PAYLOAD_SIZE
    """Frames announcing a larger LENGTH are rejected before their payload is read."""

    auto_relisten_on_loss: bool = True
    """Go back to listening after a lost connection so the peer can dial again."""

    outbound_capacity: int = OUTBOUND_QUEUE_SIZE
    """Packets waiting for the writer thread. Emitters block while it is full."""

    join_timeout: float = JOIN_TIMEOUT
    """Seconds to wait for worker threads when tearing a link down."""

    def __post_init__(self) -> None:
        if self.render_interval_ms <= 0:
            raise ValueError("render_interval_ms must be positive")
        if self.queue_capacity < 1:
            raise ValueError("queue_capacity must be at least 1")
        if self.max_payload_bytes < 0:
            raise ValueError("max_payload_bytes must not be negative")
        if self.outbound_capacity < 1:
            raise ValueError("outbound_capacity must be at least 1")

    @property
    def render_interval(self) -> float:
        """Display pump period in seconds."""
        return self.render_interval_ms / 1000.0


DEFAULT_SESSION_SETTINGS = SessionSettings()
"""Instance used when the host does not pass its own settings."""
