import struct
import unittest
from unittest import mock

from wandlink.config import FRAME_TERMINATOR, HEADER_SIZE
from wandlink.errors import BadLengthError, PayloadTooLargeError, UnknownTypeError
from wandlink.protocol import (
    CameraParameters, Packet, PacketType, decode_frame, encode_frame, encode_packet,
    get_frame_type_name, read_frame,
)


class ByteStream:
    """In-memory stream handing out at most chunk_size bytes per read."""

    def __init__(self, data: bytes, chunk_size: int = 4096) -> None:
        self.data = data
        self.position = 0
        self.chunk_size = chunk_size

    def read(self, size: int) -> bytes:
        end = min(self.position + size, self.position + self.chunk_size, len(self.data))
        chunk = self.data[self.position:end]
        self.position = end
        return chunk


class FrameLayoutTest(unittest.TestCase):
    def test_header_is_type_then_big_endian_length(self) -> None:
        frame = encode_frame(PacketType.IMAGE, b"abc")
        self.assertEqual(frame[:HEADER_SIZE], b"\x00\x00\x00\x00\x03")
        self.assertEqual(frame[HEADER_SIZE:-1], b"abc")
        self.assertEqual(frame[-1:], FRAME_TERMINATOR)

    def test_image_received_is_six_bytes(self) -> None:
        frame = encode_packet(Packet(PacketType.IMAGE_RECEIVED))
        self.assertEqual(frame, b"\x03\x00\x00\x00\x00\x04")

    def test_camera_parameters_payload(self) -> None:
        params = CameraParameters(640, 480)
        self.assertEqual(params.pack(), struct.pack(">II", 640, 480))
        self.assertEqual(CameraParameters.unpack(params.pack()), params)

    def test_camera_parameters_rejects_bad_payload(self) -> None:
        with self.assertRaises(ValueError):
            CameraParameters.unpack(b"\x00\x01")
        with self.assertRaises(ValueError):
            CameraParameters.unpack(struct.pack(">II", 0, 480))


class EncodeDecodeTest(unittest.TestCase):
    def test_roundtrip_every_type(self) -> None:
        for packet_type in PacketType:
            payload = bytes(range(256)) * 3 if packet_type != PacketType.IMAGE_RECEIVED else b""
            with self.subTest(packet_type=packet_type.name):
                packet = decode_frame(encode_frame(packet_type, payload))
                self.assertEqual(packet, Packet(packet_type, payload))

    def test_terminator_byte_inside_payload(self) -> None:
        payload = b"\x04\x04" + FRAME_TERMINATOR * 10 + b"\x00"
        packet = decode_frame(encode_frame(PacketType.IMAGE, payload))
        self.assertEqual(packet.payload, payload)

    def test_consecutive_frames_from_one_stream(self) -> None:
        stream = ByteStream(
            encode_frame(PacketType.CAMERA_PARAMETERS, CameraParameters(4, 3).pack())
            + encode_frame(PacketType.IMAGE, b"jpeg")
            + encode_frame(PacketType.IMAGE_RECEIVED),
            chunk_size=3,
        )
        types = [read_frame(stream).type for _ in range(3)]
        self.assertEqual(types, [PacketType.CAMERA_PARAMETERS, PacketType.IMAGE, PacketType.IMAGE_RECEIVED])

    def test_length_at_cap_is_accepted(self) -> None:
        payload = b"x" * 100
        packet = decode_frame(encode_frame(PacketType.IMAGE, payload), max_payload_size=100)
        self.assertEqual(packet.length, 100)

    def test_length_above_cap_is_rejected(self) -> None:
        with self.assertRaises(BadLengthError):
            decode_frame(encode_frame(PacketType.IMAGE, b"x" * 101), max_payload_size=100)

    def test_unknown_type_cannot_be_encoded(self) -> None:
        with self.assertRaises(UnknownTypeError):
            encode_frame(0x07, b"data")

    def test_unknown_type_is_rejected_on_read(self) -> None:
        frame = b"\x09\x00\x00\x00\x01x\x04"
        with self.assertRaises(UnknownTypeError):
            decode_frame(frame)

    def test_oversized_payload_cannot_be_encoded(self) -> None:
        huge = mock.MagicMock()
        huge.__len__.return_value = 2**31
        with self.assertRaises(PayloadTooLargeError):
            encode_frame(PacketType.IMAGE, huge)

    def test_frame_type_names(self) -> None:
        self.assertEqual(get_frame_type_name(0), "IMAGE")
        self.assertEqual(get_frame_type_name(3), "IMAGE_RECEIVED")
        self.assertEqual(get_frame_type_name(0x42), "Unknown(0x42)")


if __name__ == "__main__":
    unittest.main()
