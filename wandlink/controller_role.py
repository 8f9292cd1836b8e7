"""Controller side of the image flow: decode, buffer, render, acknowledge.

IMAGE payloads are decoded in order on a worker thread. A decoded bitmap
goes into the bounded FrameQueue; the display pump takes at most one per
tick. The acknowledgement for an IMAGE is only sent once its decode has
finished (successfully or not), so the camera can never run ahead of what
this side has absorbed.
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Tuple

from .config import QUEUE_CAPACITY, RENDER_INTERVAL_MS
from .errors import PermitViolationError
from .protocol import CameraParameters, Packet, PacketType
from .timer import Timer, TimerHandle

from .frame_queue import FrameQueue

Emit = Callable[[Packet], bool]


class ImageSink(Protocol):
    def preview_size(self) -> Tuple[int, int]: ...

    def set_geometry(self, width: int, height: int) -> None: ...

    def render(self, bitmap: Any, offset_x: int, offset_y: int) -> None: ...


class BitmapDecoder(Protocol):
    def decode(self, data: bytes, size: Optional[Tuple[int, int]] = None) -> Optional[Any]: ...


@dataclass(frozen=True)
class DisplayGeometry:
    width: int
    height: int
    offset_x: int
    offset_y: int

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


def compute_geometry(preview_width: int, preview_height: int,
                     parameters: CameraParameters) -> DisplayGeometry:
    """Fit the camera image inside the preview area, centered, aspect preserved."""
    # Integer math so exact fits do not lose a pixel to float rounding
    if preview_width * parameters.height <= preview_height * parameters.width:
        width = preview_width
        height = preview_width * parameters.height // parameters.width
    else:
        height = preview_height
        width = preview_height * parameters.width // parameters.height
    return DisplayGeometry(
        width=width,
        height=height,
        offset_x=(preview_width - width) // 2,
        offset_y=(preview_height - height) // 2,
    )


@dataclass(frozen=True)
class DecodeCompleted:
    """Posted to the session inbox when one IMAGE has been absorbed."""

    role: "ControllerRole"
    ok: bool


class ControllerRole:
    """Receives camera parameters and images for one connection."""

    def __init__(self, sink: ImageSink, decoder: BitmapDecoder,
                 post: Callable[[DecodeCompleted], None], *,
                 queue_capacity: int = QUEUE_CAPACITY,
                 render_interval: float = RENDER_INTERVAL_MS / 1000.0,
                 timer: Optional[Timer] = None,
                 join_timeout: float = 1.0):
        self._sink = sink
        self._decoder = decoder
        self._post = post
        self._render_interval = render_interval
        self._timer = timer or Timer()
        self._join_timeout = join_timeout
        self._emit: Optional[Emit] = None
        self._pending: "queue.Queue[bytes]" = queue.Queue()
        self._stop_event = threading.Event()
        self._worker = threading.Thread(target=self._decode_loop, name="BitmapDecoder", daemon=True)
        self._pump: Optional[TimerHandle] = None
        self.frames = FrameQueue(queue_capacity)
        self.parameters: Optional[CameraParameters] = None
        self.geometry: Optional[DisplayGeometry] = None
        self.images_accepted = 0
        self.images_rejected = 0
        self.decodes_completed = 0
        self.decode_failures = 0
        self.acks_sent = 0
        self.frames_rendered = 0

    @property
    def in_flight(self) -> int:
        """IMAGE packets accepted whose decode has not finished yet."""
        return self.images_accepted - self.decodes_completed

    def attach(self, emit: Emit) -> None:
        """Start the decode worker and the display pump."""
        self._emit = emit
        self._worker.start()
        self._pump = self._timer.every(self._render_interval, self._tick, name="DisplayPump")

    def detach(self) -> None:
        """Stop both threads. Decodes still running are discarded."""
        self._emit = None
        self._stop_event.set()
        if self._pump is not None:
            self._timer.cancel(self._pump)
            self._pump = None
        if self._worker.is_alive() and self._worker is not threading.current_thread():
            self._worker.join(timeout=self._join_timeout)
        self.frames.clear()

    def on_parameters(self, parameters: CameraParameters) -> DisplayGeometry:
        preview_width, preview_height = self._sink.preview_size()
        self.parameters = parameters
        self.geometry = compute_geometry(preview_width, preview_height, parameters)
        self._sink.set_geometry(self.geometry.width, self.geometry.height)
        return self.geometry

    def on_image(self, payload: bytes) -> None:
        """Queue an IMAGE payload for decoding.

        Raises:
            PermitViolationError: If no CAMERA_PARAMETERS arrived yet
        """
        if self.parameters is None:
            self.images_rejected += 1
            raise PermitViolationError(
                f"IMAGE ({len(payload)} bytes) received before CAMERA_PARAMETERS, dropped"
            )
        self.images_accepted += 1
        self._pending.put(payload)

    def acknowledge(self) -> bool:
        if self._emit is None:
            return False
        if not self._emit(Packet(PacketType.IMAGE_RECEIVED)):
            return False
        self.acks_sent += 1
        return True

    def _decode_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                payload = self._pending.get(timeout=0.1)
            except queue.Empty:
                continue
            size = self.geometry.size if self.geometry is not None else None
            try:
                bitmap = self._decoder.decode(payload, size)
            except Exception as exc:
                print(f"Warning: failed to decode image: {exc}")
                bitmap = None
            if self._stop_event.is_set():
                return
            if bitmap is None:
                self.decode_failures += 1
            else:
                self.frames.push(bitmap)
            self.decodes_completed += 1
            self._post(DecodeCompleted(self, bitmap is not None))

    def _tick(self) -> None:
        bitmap = self.frames.pop()
        if bitmap is None:
            return
        geometry = self.geometry
        offset_x, offset_y = (geometry.offset_x, geometry.offset_y) if geometry else (0, 0)
        self._sink.render(bitmap, offset_x, offset_y)
        self.frames_rendered += 1
