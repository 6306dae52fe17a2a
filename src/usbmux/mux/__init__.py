"""usbmux protocol client.

This package speaks the usbmux protocol to the local daemon that
multiplexes connections to USB-attached devices.

Architecture:
    - StreamTransport: exclusively owned socket with exact send/receive
    - BinaryProtocol / PlistProtocol: the two wire encodings
    - MuxConnection: per-socket session state machine
    - DeviceRegistry: roster of attached devices
    - USBMux: facade negotiating the protocol and opening relays

Usage:
    >>> from usbmux.mux import USBMux
    >>> with USBMux() as mux:
    ...     mux.process(timeout=0.5)
    ...     for device in mux.devices.values():
    ...         print(device)
"""

from usbmux.mux.client import USBMux, negotiate_protocol
from usbmux.mux.connection import ConnectionMode, MuxConnection, swap_port
from usbmux.mux.errors import (
    MuxDaemonError,
    MuxError,
    MuxProtocolError,
    MuxRequestError,
    MuxTransportError,
    MuxVersionError,
)
from usbmux.mux.protocol import (
    BinaryProtocol,
    MessageKind,
    Packet,
    PlistProtocol,
    WireProtocol,
)
from usbmux.mux.registry import DeviceRegistry
from usbmux.mux.transport import StreamTransport, open_transport

__all__ = [
    # Facade
    "USBMux",
    "negotiate_protocol",
    # Connection
    "MuxConnection",
    "ConnectionMode",
    "swap_port",
    "DeviceRegistry",
    # Protocol
    "WireProtocol",
    "BinaryProtocol",
    "PlistProtocol",
    "MessageKind",
    "Packet",
    # Transport
    "StreamTransport",
    "open_transport",
    # Errors
    "MuxError",
    "MuxTransportError",
    "MuxVersionError",
    "MuxProtocolError",
    "MuxDaemonError",
    "MuxRequestError",
]
