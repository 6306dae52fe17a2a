"""usbmux - client for the usbmux device multiplexing daemon.

Discovers USB-attached devices through the daemon's attach/detach
notifications and opens relayed byte-stream connections to ports on
those devices.
"""

from usbmux.mux import (
    MuxDaemonError,
    MuxError,
    MuxProtocolError,
    MuxRequestError,
    MuxTransportError,
    MuxVersionError,
    USBMux,
)
from usbmux.types import Device, RosterDelta

__version__ = "0.1.0"
__all__ = [
    "__version__",
    "USBMux",
    "Device",
    "RosterDelta",
    "MuxError",
    "MuxTransportError",
    "MuxVersionError",
    "MuxProtocolError",
    "MuxDaemonError",
    "MuxRequestError",
]
