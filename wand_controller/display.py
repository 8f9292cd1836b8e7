"""OpenCV window used as the controller's image sink.

``render`` is called from the display pump thread; it only composes the
frame into a canvas. ``show`` must be called from the main thread, which is
the only thread OpenCV's HighGUI reliably supports.
"""
import threading
from typing import Optional, Tuple

import cv2
import numpy as np

from wandlink.config import PREVIEW_HEIGHT, PREVIEW_WIDTH, WINDOW_TITLE_CONTROLLER


class WindowSink:
    """Letterboxed preview area backed by an OpenCV window."""

    def __init__(self, width: int = PREVIEW_WIDTH, height: int = PREVIEW_HEIGHT,
                 title: str = WINDOW_TITLE_CONTROLLER):
        self.width = width
        self.height = height
        self.title = title
        self.geometry: Optional[Tuple[int, int]] = None
        self._canvas = np.zeros((height, width, 3), dtype=np.uint8)
        self._lock = threading.Lock()
        self._dirty = True
        self._shown = False
        self.frames_rendered = 0

    def preview_size(self) -> Tuple[int, int]:
        return self.width, self.height

    def set_geometry(self, width: int, height: int) -> None:
        with self._lock:
            self.geometry = (width, height)
            self._canvas[:] = 0
            self._dirty = True
        print(f"Display geometry: {width}x{height} in {self.width}x{self.height} preview")

    def render(self, bitmap: np.ndarray, offset_x: int, offset_y: int) -> None:
        height = min(bitmap.shape[0], self.height - offset_y)
        width = min(bitmap.shape[1], self.width - offset_x)
        if height <= 0 or width <= 0:
            return
        with self._lock:
            self._canvas[offset_y:offset_y + height, offset_x:offset_x + width] = bitmap[:height, :width]
            self._dirty = True
            self.frames_rendered += 1

    def snapshot(self) -> np.ndarray:
        with self._lock:
            return self._canvas.copy()

    def show(self, wait_ms: int = 1) -> int:
        """Refresh the window if needed and poll the keyboard.

        Returns:
            Key code from cv2.waitKeyEx, -1 if no key was pressed
        """
        with self._lock:
            frame = self._canvas.copy() if self._dirty else None
            self._dirty = False
        if frame is not None:
            cv2.imshow(self.title, frame)
            self._shown = True
        return cv2.waitKeyEx(wait_ms)

    def close(self) -> None:
        if self._shown:
            cv2.destroyWindow(self.title)
            self._shown = False
