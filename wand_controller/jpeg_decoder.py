"""JPEG decoder for received camera frames."""
from typing import Optional, Tuple

import cv2
import numpy as np

from wandlink.errors import DecodeError


class JPEGDecoder:
    """Decodes JPEG bytes to BGR bitmaps scaled for display."""

    def __init__(self, interpolation: int = cv2.INTER_AREA):
        """Initialize JPEG decoder.

        Args:
            interpolation: OpenCV interpolation used when scaling
        """
        self.interpolation = interpolation

    def decode(self, data: bytes, size: Optional[Tuple[int, int]] = None) -> Optional[np.ndarray]:
        """Decode JPEG bytes to an image array.

        Args:
            data: JPEG encoded bytes
            size: Target (width, height), or None to keep the encoded size

        Returns:
            BGR image array

        Raises:
            DecodeError: If the bytes are not a decodable image
        """
        if not data:
            raise DecodeError("Empty image payload")
        buffer = np.frombuffer(data, np.uint8)
        try:
            image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as exc:
            raise DecodeError(f"JPEG decoding error: {exc}") from exc
        if image is None:
            raise DecodeError(f"Not a valid JPEG image ({len(data)} bytes)")

        if size is not None:
            width, height = size
            if width > 0 and height > 0 and (image.shape[1], image.shape[0]) != (width, height):
                image = cv2.resize(image, (width, height), interpolation=self.interpolation)
        return image
