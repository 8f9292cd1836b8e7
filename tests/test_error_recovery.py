"""Test error handling and edge cases in frame parsing."""
import unittest
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wandlink.errors import (
    BadLengthError, FramingError, LinkClosedError, MissingTerminatorError, TruncatedError,
)
from wandlink.protocol import PacketType, decode_frame, encode_frame, read_frame


class RecordingStream:
    """Stream that remembers how many bytes were handed out."""

    def __init__(self, data):
        self.data = data
        self.position = 0
        self.requests = []

    def read(self, size):
        self.requests.append(size)
        chunk = self.data[self.position:self.position + size]
        self.position += len(chunk)
        return chunk


class TestErrorRecovery(unittest.TestCase):
    """Test framing failures."""

    def test_wrong_terminator(self):
        """A 0x05 where 0x04 belongs is fatal, even with a valid length."""
        frame = encode_frame(PacketType.IMAGE, b"Test data")
        bad_frame = frame[:-1] + b"\x05"
        with self.assertRaises(MissingTerminatorError):
            decode_frame(bad_frame)

    def test_length_larger_than_actual_payload(self):
        """LENGTH is authoritative, so the terminator check lands inside the next frame."""
        first = bytearray(encode_frame(PacketType.IMAGE, b"abc"))
        first[4] = 5
        stream = RecordingStream(bytes(first) + encode_frame(PacketType.IMAGE_RECEIVED))
        with self.assertRaises(MissingTerminatorError):
            read_frame(stream)

    def test_clean_close_at_frame_boundary(self):
        """EOF before the first byte of a frame is a close, not a truncation."""
        stream = RecordingStream(encode_frame(PacketType.IMAGE_RECEIVED))
        read_frame(stream)
        with self.assertRaises(LinkClosedError):
            read_frame(stream)

    def test_truncation_points(self):
        """EOF anywhere inside a frame reports truncation."""
        frame = encode_frame(PacketType.IMAGE, b"0123456789")
        for cut in range(1, len(frame)):
            with self.subTest(cut=cut):
                with self.assertRaises(TruncatedError):
                    read_frame(RecordingStream(frame[:cut]))

    def test_never_reads_past_terminator(self):
        """The parser must leave the next frame untouched in the stream."""
        frame = encode_frame(PacketType.IMAGE, b"payload")
        stream = RecordingStream(frame + b"NEXT")
        read_frame(stream)
        self.assertEqual(stream.position, len(frame))

    def test_bad_length_before_payload_read(self):
        """An oversized LENGTH fails after the header without reading payload bytes."""
        header = b"\x00\x7f\xff\xff\xff"
        stream = RecordingStream(header + b"x" * 64)
        with self.assertRaises(BadLengthError):
            read_frame(stream, max_payload_size=1024)
        self.assertEqual(stream.position, len(header))

    def test_trailing_bytes_after_frame(self):
        """decode_frame accepts exactly one frame."""
        frame = encode_frame(PacketType.IMAGE, b"data")
        with self.assertRaises(FramingError):
            decode_frame(frame + b"\x00")

    def test_empty_image_payload(self):
        """A zero-length IMAGE is valid at the framing level."""
        packet = decode_frame(encode_frame(PacketType.IMAGE))
        self.assertEqual(packet.payload, b"")


if __name__ == '__main__':
    unittest.main()
