"""JPEG encoder for camera frames."""
from typing import Optional

import cv2
import numpy as np

from wandlink.config import DEFAULT_JPEG_QUALITY

MIN_QUALITY = 30
MIN_WIDTH = 80
MIN_HEIGHT = 60


class JPEGEncoder:
    """Encodes BGR frames to JPEG bytes."""

    def __init__(self, quality: int = DEFAULT_JPEG_QUALITY):
        """Initialize JPEG encoder.

        Args:
            quality: JPEG quality (1-100)
        """
        self.set_quality(quality)

    def set_quality(self, quality: int) -> None:
        if not 1 <= quality <= 100:
            raise ValueError("JPEG quality must be between 1 and 100")
        self.quality = quality

    def encode(self, image: np.ndarray, quality: Optional[int] = None) -> Optional[bytes]:
        """Encode image to JPEG bytes.

        Returns:
            JPEG bytes or None on failure
        """
        params = [int(cv2.IMWRITE_JPEG_QUALITY), quality or self.quality]
        try:
            ok, encoded = cv2.imencode('.jpg', image, params)
        except cv2.error as e:
            print(f"JPEG encoding error: {e}")
            return None
        if not ok:
            return None
        return encoded.tobytes()

    def encode_within(self, image: np.ndarray, max_size: int) -> Optional[bytes]:
        """Encode so the result fits in max_size bytes.

        Lowers quality in steps of 5 down to MIN_QUALITY, then shrinks the
        image by 10% and starts over. Gives up below MIN_WIDTH x MIN_HEIGHT.
        """
        working = image
        while True:
            quality = self.quality
            while quality >= MIN_QUALITY:
                data = self.encode(working, quality)
                if data is None:
                    return None
                if len(data) <= max_size:
                    return data
                quality -= 5
            h, w = working.shape[:2]
            new_w, new_h = int(w * 0.9), int(h * 0.9)
            if new_w < MIN_WIDTH or new_h < MIN_HEIGHT:
                return None
            working = cv2.resize(working, (new_w, new_h), interpolation=cv2.INTER_AREA)
