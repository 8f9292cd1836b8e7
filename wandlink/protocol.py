"""Communication protocol between the camera and the controller.

Frame format: TYPE|LENGTH|DATA|END
- TYPE: Packet type (1 byte) - 0x00=IMAGE, 0x01=CONTROLLER_CMD,
  0x02=CAMERA_PARAMETERS, 0x03=IMAGE_RECEIVED
- LENGTH: Data length (4 bytes, big-endian)
- DATA: Payload (variable length)
- END: 0x04 (1 byte)

LENGTH is authoritative. END carries no framing information, it only
detects that both sides disagree about where a frame stops. A wrong END
byte is fatal for the link; there is no resynchronisation.
"""
from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Protocol, Union, runtime_checkable

from .config import (
    FRAME_TERMINATOR, HEADER_SIZE, MAX_ENCODABLE_SIZE, MAX_PAYLOAD_SIZE,
    TYPE_IMAGE, TYPE_CONTROLLER_CMD, TYPE_CAMERA_PARAMETERS, TYPE_IMAGE_RECEIVED,
)
from .errors import (
    BadLengthError, FramingError, LinkClosedError, MissingTerminatorError,
    PayloadTooLargeError, TruncatedError, UnknownTypeError,
)

HEADER_FORMAT = '>BI'
PARAMETERS_FORMAT = '>II'
PARAMETERS_SIZE = struct.calcsize(PARAMETERS_FORMAT)


class PacketType(IntEnum):
    IMAGE = TYPE_IMAGE
    CONTROLLER_CMD = TYPE_CONTROLLER_CMD
    CAMERA_PARAMETERS = TYPE_CAMERA_PARAMETERS
    IMAGE_RECEIVED = TYPE_IMAGE_RECEIVED


@dataclass(frozen=True)
class Packet:
    """A complete frame as seen above the framer."""

    type: PacketType
    payload: bytes = b''

    @property
    def length(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class CameraParameters:
    """Capture size announced by the camera right after connecting."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Camera size must be positive, got {self.width}x{self.height}")

    def pack(self) -> bytes:
        return struct.pack(PARAMETERS_FORMAT, self.width, self.height)

    @classmethod
    def unpack(cls, payload: bytes) -> "CameraParameters":
        if len(payload) != PARAMETERS_SIZE:
            raise ValueError(
                f"CAMERA_PARAMETERS payload must be {PARAMETERS_SIZE} bytes, got {len(payload)}"
            )
        width, height = struct.unpack(PARAMETERS_FORMAT, payload)
        return cls(width, height)


@runtime_checkable
class Readable(Protocol):
    def read(self, size: int) -> bytes: ...


def _packet_type(value: int) -> PacketType:
    try:
        return PacketType(value)
    except ValueError:
        raise UnknownTypeError(f"Unknown packet type 0x{value:02X}") from None


def encode_frame(frame_type: Union[PacketType, int], data: bytes = b'') -> bytes:
    """Encode data into a protocol frame.

    Args:
        frame_type: One of the PacketType values
        data: Payload bytes

    Returns:
        Encoded frame bytes

    Raises:
        UnknownTypeError: If frame_type is not a known packet type
        PayloadTooLargeError: If data does not fit in the LENGTH field
    """
    packet_type = _packet_type(frame_type)
    if len(data) > MAX_ENCODABLE_SIZE:
        raise PayloadTooLargeError(
            f"Data size {len(data)} exceeds maximum {MAX_ENCODABLE_SIZE}"
        )
    header = struct.pack(HEADER_FORMAT, packet_type, len(data))
    return header + bytes(data) + FRAME_TERMINATOR


def encode_packet(packet: Packet) -> bytes:
    return encode_frame(packet.type, packet.payload)


def _read_exact(stream: Readable, size: int, *, at_boundary: bool = False) -> bytes:
    """Read exactly size bytes, never more.

    A short read at the very start of a frame is a clean close; anywhere
    else the frame is truncated.
    """
    buf = bytearray()
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            if at_boundary and not buf:
                raise LinkClosedError("Connection closed by peer")
            raise TruncatedError(f"Stream ended after {len(buf)} of {size} bytes")
        buf.extend(chunk)
    return bytes(buf)


def read_frame(stream: Readable, max_payload_size: int = MAX_PAYLOAD_SIZE) -> Packet:
    """Read one frame from a byte stream.

    Args:
        stream: Object with a read(size) method returning b'' at EOF
        max_payload_size: Largest LENGTH accepted

    Returns:
        The decoded Packet

    Raises:
        LinkClosedError: EOF before the first header byte
        TruncatedError: EOF inside the frame
        UnknownTypeError, BadLengthError, MissingTerminatorError
    """
    header = _read_exact(stream, HEADER_SIZE, at_boundary=True)
    type_value, length = struct.unpack(HEADER_FORMAT, header)
    packet_type = _packet_type(type_value)
    # Checked before touching the payload so an oversized frame costs nothing
    if length > max_payload_size:
        raise BadLengthError(f"Frame length {length} exceeds maximum {max_payload_size}")

    payload = _read_exact(stream, length) if length else b''
    end = _read_exact(stream, 1)
    if end != FRAME_TERMINATOR:
        raise MissingTerminatorError(
            f"Expected terminator 0x{FRAME_TERMINATOR[0]:02X}, got 0x{end[0]:02X}"
        )
    return Packet(packet_type, payload)


def decode_frame(frame: bytes, max_payload_size: int = MAX_PAYLOAD_SIZE) -> Packet:
    """Decode a single complete frame held in memory."""
    stream: BinaryIO = io.BytesIO(frame)
    packet = read_frame(stream, max_payload_size)
    leftover = len(frame) - stream.tell()
    if leftover:
        raise FramingError(f"{leftover} trailing bytes after terminator")
    return packet


def get_frame_type_name(frame_type: int) -> str:
    """Get human-readable name for frame type."""
    try:
        return PacketType(frame_type).name
    except ValueError:
        return f"Unknown(0x{frame_type:02X})"
