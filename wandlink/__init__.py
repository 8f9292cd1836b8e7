"""Framed packet link between a camera phone and a controller phone."""

__version__ = '1.0.0'

from .errors import (
    BadLengthError, DecodeError, FramingError, LinkClosedError, LinkError,
    MissingTerminatorError, PayloadTooLargeError, PermitViolationError,
    TruncatedError, UnknownTypeError, UnreachableError,
)
from .protocol import CameraParameters, Packet, PacketType, decode_frame, encode_frame, read_frame
from .settings import DEFAULT_SESSION_SETTINGS, SessionSettings
