"""Camera capture pipeline used as the session's image source.

A background thread grabs frames from an OpenCV capture device, encodes
them to JPEG and hands the bytes to every registered callback. The
callbacks never block the capture thread for long: the camera role keeps
only the freshest frame and lets the session decide when to send it.
"""
import threading
import time
from typing import Callable, List, Optional

import cv2
import numpy as np

from wandlink.config import DEFAULT_HEIGHT, DEFAULT_JPEG_QUALITY, DEFAULT_WIDTH, MAX_PAYLOAD_SIZE
from wandlink.protocol import CameraParameters

from .jpeg_encoder import JPEGEncoder


class CameraSource:
    """Captures, encodes and publishes frames."""

    def __init__(self, camera_index: int = 0, width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT,
                 quality: int = DEFAULT_JPEG_QUALITY, fps: float = 15.0,
                 max_size: int = MAX_PAYLOAD_SIZE):
        """Initialize camera capture.

        Args:
            camera_index: Camera device index, default 0
            width: Target image width
            height: Target image height
            quality: JPEG quality (1-100)
            fps: Capture rate limit, 0 for as fast as the device delivers
            max_size: Largest encoded frame published
        """
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.fps = fps
        self.max_size = max_size
        self.encoder = JPEGEncoder(quality)
        self.cap: Optional[cv2.VideoCapture] = None
        self._callbacks: List[Callable[[bytes], None]] = []
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._preview_lock = threading.Lock()
        self._preview: Optional[np.ndarray] = None
        self.frames_captured = 0
        self.errors = 0

    def open(self) -> bool:
        """Open camera device.

        Returns:
            True if successful, False otherwise
        """
        self.cap = cv2.VideoCapture(self.camera_index)
        if not self.cap.isOpened():
            print(f"Error: Cannot open camera {self.camera_index}")
            self.cap = None
            return False
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        print(f"Camera opened: {self.cap.get(cv2.CAP_PROP_FRAME_WIDTH):.0f}x"
              f"{self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT):.0f}, sending {self.width}x{self.height}")
        return True

    def get_parameters(self) -> CameraParameters:
        return CameraParameters(self.width, self.height)

    def on_frame(self, callback: Callable[[bytes], None]) -> None:
        self._callbacks.append(callback)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._capture_loop, name="CameraCapture", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

    def close(self) -> None:
        """Stop capturing and release the device."""
        self.stop()
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def preview(self) -> Optional[np.ndarray]:
        """Most recent raw frame, for a local preview window."""
        with self._preview_lock:
            return self._preview

    def publish(self, frame: np.ndarray) -> bool:
        """Encode one BGR frame and hand it to the callbacks."""
        if frame.shape[0] != self.height or frame.shape[1] != self.width:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)
        with self._preview_lock:
            self._preview = frame
        data = self.encoder.encode(frame)
        if data is not None and len(data) > self.max_size:
            data = self.encoder.encode_within(frame, self.max_size)
        if data is None:
            self.errors += 1
            print("Warning: Failed to encode frame")
            return False
        self.frames_captured += 1
        for callback in self._callbacks:
            callback(data)
        return True

    def _capture_loop(self) -> None:
        frame_interval = 1.0 / self.fps if self.fps > 0 else 0.0
        last_frame_time = 0.0
        while not self._stop_event.is_set():
            if frame_interval > 0:
                elapsed = time.monotonic() - last_frame_time
                if elapsed < frame_interval and self._stop_event.wait(frame_interval - elapsed):
                    break
            last_frame_time = time.monotonic()
            if self.cap is None:
                break
            ret, frame = self.cap.read()
            if not ret or frame is None:
                self.errors += 1
                print("Warning: Failed to capture frame")
                self._stop_event.wait(0.1)
                continue
            self.publish(frame)

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
