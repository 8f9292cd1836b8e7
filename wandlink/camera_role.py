"""Camera side of the stop-and-wait image flow.

The capture thread hands every encoded frame to the role, which keeps only
the freshest one and pokes the session. The session decides, based on its
permit, whether ``send_frame`` may run.
"""
from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

from .config import MAX_PAYLOAD_SIZE
from .protocol import CameraParameters, Packet, PacketType

Emit = Callable[[Packet], bool]


class ImageSource(Protocol):
    def on_frame(self, callback: Callable[[bytes], None]) -> None: ...

    def get_parameters(self) -> CameraParameters: ...


class CameraRole:
    """Turns capture notifications into IMAGE packets, one per permit."""

    def __init__(self, source: ImageSource, notify: Callable[[], None], *,
                 max_payload_size: int = MAX_PAYLOAD_SIZE,
                 on_command: Optional[Callable[[bytes], None]] = None):
        """Initialize camera role.

        Args:
            source: Host capture pipeline producing encoded JPEG frames
            notify: Called from the capture thread after each new frame
            max_payload_size: Frames larger than this are never sent
            on_command: Receives CONTROLLER_CMD payloads from the peer
        """
        self._source = source
        self._notify = notify
        self._max_payload_size = max_payload_size
        self._on_command = on_command
        self._lock = threading.Lock()
        self._latest: Optional[bytes] = None
        self._emit: Optional[Emit] = None
        self.parameters: Optional[CameraParameters] = None
        self.parameters_sent = False
        self.frames_sent = 0
        self.frames_dropped = 0
        self.oversized_frames = 0
        source.on_frame(self._on_frame)

    def _on_frame(self, data: bytes) -> None:
        with self._lock:
            if self._latest is not None:
                self.frames_dropped += 1
            self._latest = bytes(data)
        self._notify()

    def acquire(self) -> Optional[bytes]:
        """Take the freshest frame, or None if nothing new arrived."""
        with self._lock:
            data, self._latest = self._latest, None
        return data

    def attach(self, emit: Emit) -> None:
        """Bind to a new connection."""
        self._emit = emit
        self.parameters_sent = False
        # Frames captured before the peer connected are stale
        with self._lock:
            self._latest = None

    def detach(self) -> None:
        self._emit = None
        self.parameters_sent = False

    def send_parameters(self) -> bool:
        if self._emit is None:
            return False
        self.parameters = self._source.get_parameters()
        if not self._emit(Packet(PacketType.CAMERA_PARAMETERS, self.parameters.pack())):
            return False
        self.parameters_sent = True
        return True

    def send_frame(self) -> bool:
        """Emit one IMAGE packet from the freshest frame.

        Returns:
            True if an IMAGE was handed to the link
        """
        if self._emit is None or not self.parameters_sent:
            return False
        data = self.acquire()
        if data is None:
            return False
        if len(data) > self._max_payload_size:
            self.oversized_frames += 1
            print(f"Warning: encoded frame of {len(data)} bytes exceeds limit {self._max_payload_size}, dropped")
            return False
        if not self._emit(Packet(PacketType.IMAGE, data)):
            return False
        self.frames_sent += 1
        return True

    def handle_command(self, payload: bytes) -> None:
        if self._on_command is not None:
            self._on_command(payload)
