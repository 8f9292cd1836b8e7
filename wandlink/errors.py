"""Exception hierarchy for the link, framing and flow-control layers."""


class LinkError(Exception):
    """Base class for failures that terminate a link."""


class LinkClosedError(LinkError):
    """The peer closed the stream at a frame boundary."""


class FramingError(LinkError):
    """The byte stream does not follow the frame layout."""


class UnknownTypeError(FramingError):
    """TYPE byte is not one of the known packet types."""


class BadLengthError(FramingError):
    """LENGTH field exceeds the configured payload cap."""


class MissingTerminatorError(FramingError):
    """The byte after the payload is not the 0x04 terminator."""


class TruncatedError(LinkError):
    """The stream ended in the middle of a frame."""


class UnreachableError(LinkError):
    """An outbound connection could not be established."""


class PayloadTooLargeError(ValueError):
    """Payload does not fit in the 32-bit LENGTH field."""


class DecodeError(Exception):
    """Received image bytes are not a valid bitmap."""


class PermitViolationError(Exception):
    """A packet arrived that the current role is not allowed to accept."""
