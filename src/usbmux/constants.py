"""usbmux wire constants and default endpoints.

Everything here is fixed by the daemon's protocol. User-tunable values
live in :mod:`usbmux.config`.
"""

from pathlib import Path

# =============================================================================
# Endpoints
# =============================================================================

# Local-domain socket used on Linux and macOS
DEFAULT_SOCKET_PATH = Path("/var/run/usbmuxd")

# Loopback TCP endpoint used where local-domain sockets are unavailable
DEFAULT_TCP_HOST = "127.0.0.1"
DEFAULT_TCP_PORT = 27015


# =============================================================================
# Framing
# =============================================================================

# length[4] version[4] type[4] tag[4], all little-endian
HEADER_FORMAT = "<IIII"
HEADER_SIZE = 16

# Message type carried in the header of every property-list frame
PLIST_MESSAGE_TYPE = 8

BINARY_PROTOCOL_VERSION = 0
PLIST_PROTOCOL_VERSION = 1

# Device-add payload: id[4] product[2] serial[256] pad[2] location[4]
SERIAL_BUFFER_SIZE = 256
DEVICE_ADD_FORMAT = f"<IH{SERIAL_BUFFER_SIZE}s2xI"

# Connect payload: id[4] port[2] reserved[2]
CONNECT_FORMAT = "<IH2x"

FIRST_TAG = 1

# Largest single recv; frame bodies are read in chunks of at most this size
RECV_CHUNK_SIZE = 64 * 1024


# =============================================================================
# Property-list metadata
# =============================================================================

CLIENT_VERSION_STRING = "usbmux-python"
PROG_NAME = "usbmux"
