"""Configuration constants for the camera/controller link."""

# Protocol settings
TYPE_IMAGE = 0x00
TYPE_CONTROLLER_CMD = 0x01
TYPE_CAMERA_PARAMETERS = 0x02
TYPE_IMAGE_RECEIVED = 0x03
FRAME_TERMINATOR = b'\x04'
HEADER_SIZE = 5  # TYPE(1) + LENGTH(4, big-endian)

# LENGTH is a signed-safe 32-bit field, the receiver caps it much lower.
MAX_ENCODABLE_SIZE = 2**31 - 1
MAX_PAYLOAD_SIZE = 64 * 2**20

# Link settings
OUTBOUND_QUEUE_SIZE = 32  # Packets waiting for the writer thread
READ_CHUNK_SIZE = 64 * 1024
JOIN_TIMEOUT = 2.0

# Transport settings
DEFAULT_TCP_PORT = 8765
DEFAULT_RFCOMM_CHANNEL = 1
BAUD_RATE = 115200
CONNECT_TIMEOUT = 10.0

# Flow control settings
QUEUE_CAPACITY = 2  # Decoded bitmaps buffered on the controller
RENDER_INTERVAL_MS = 16  # Display pump period (~60 fps)

# Image settings
DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 480
DEFAULT_JPEG_QUALITY = 80
PREVIEW_WIDTH = 960
PREVIEW_HEIGHT = 720

# Display settings
WINDOW_TITLE_CAMERA = 'Wand Camera (Press q to quit)'
WINDOW_TITLE_CONTROLLER = 'Wand Controller (Press q to quit)'

# Orientation commands sent back to the camera
CMD_TILT_UP = b'U'
CMD_TILT_DOWN = b'D'
CMD_PAN_LEFT = b'L'
CMD_PAN_RIGHT = b'R'
