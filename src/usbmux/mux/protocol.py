"""usbmux wire protocols.

Both protocol versions share one 16-byte little-endian frame header:

    length[4] version[4] type[4] tag[4] payload[length - 16]

where ``length`` counts the header itself. They differ in how the
payload is encoded:

- Version 0 (binary): ``type`` is the numeric message type and the
  payload is a fixed C struct per type.
- Version 1 (plist): ``type`` is always 8 and the payload is an XML
  property list whose ``MessageType`` key names the message.

Messages are described by one abstract :class:`MessageKind`; each
protocol maps it to and from its own wire representation. Payloads use
the daemon's property-list vocabulary in both versions:

    Connect   {"DeviceID": int, "PortNumber": int}
    Listen    {}
    Result    {"Number": int}
    Attached  {"DeviceID": int,
               "Properties": {"LocationID": int, "SerialNumber": str,
                              "ProductID": int}}
    Detached  {"DeviceID": int}

``PortNumber`` is written exactly as given. The caller is responsible for
supplying it in network byte order (see MuxConnection.connect).
"""

from __future__ import annotations

import logging
import plistlib
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from usbmux.constants import (
    BINARY_PROTOCOL_VERSION,
    CLIENT_VERSION_STRING,
    CONNECT_FORMAT,
    DEVICE_ADD_FORMAT,
    HEADER_FORMAT,
    HEADER_SIZE,
    PLIST_MESSAGE_TYPE,
    PLIST_PROTOCOL_VERSION,
    PROG_NAME,
)
from usbmux.mux.errors import MuxProtocolError, MuxRequestError, MuxVersionError

if TYPE_CHECKING:
    from usbmux.mux.transport import StreamTransport

__all__ = [
    "MessageKind",
    "Packet",
    "WireProtocol",
    "BinaryProtocol",
    "PlistProtocol",
    "pack_frame",
    "unpack_header",
]

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    """Protocol-neutral message kinds.

    Requests: CONNECT, LISTEN. Replies: RESULT. Events: DEVICE_ADD,
    DEVICE_REMOVE.
    """

    RESULT = "result"
    CONNECT = "connect"
    LISTEN = "listen"
    DEVICE_ADD = "device_add"
    DEVICE_REMOVE = "device_remove"


REQUEST_KINDS = frozenset({MessageKind.CONNECT, MessageKind.LISTEN})


@dataclass(frozen=True, slots=True)
class Packet:
    """A decoded frame.

    Attributes:
        kind: Message kind.
        tag: Tag correlating a reply with its request.
        payload: Decoded payload fields.
    """

    kind: MessageKind
    tag: int
    payload: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Framing
# =============================================================================


def pack_frame(version: int, msg_type: int, tag: int, payload: bytes) -> bytes:
    """Prefix ``payload`` with the 16-byte frame header."""
    header = struct.pack(HEADER_FORMAT, HEADER_SIZE + len(payload), version, msg_type, tag)
    return header + payload


def unpack_header(data: bytes) -> tuple[int, int, int, int]:
    """Parse the frame header.

    Returns:
        (length, version, msg_type, tag)

    Raises:
        MuxProtocolError: If ``data`` is shorter than the header or than
            the length it declares.
    """
    if len(data) < HEADER_SIZE:
        raise MuxProtocolError(f"Incomplete header: have {len(data)}, need {HEADER_SIZE}")

    length, version, msg_type, tag = struct.unpack_from(HEADER_FORMAT, data)

    if length < HEADER_SIZE:
        raise MuxProtocolError(f"Invalid frame length {length}")
    if len(data) < length:
        raise MuxProtocolError(f"Incomplete frame: have {len(data)}, need {length}")

    return length, version, msg_type, tag


# =============================================================================
# Protocol interface
# =============================================================================


class WireProtocol(ABC):
    """Encoder/decoder for one protocol version.

    Implementations are stateless; a single instance may be shared by any
    number of connections.
    """

    version: int
    name: str

    def encode(self, kind: MessageKind, tag: int, payload: dict[str, Any] | None = None) -> bytes:
        """Encode an outbound request as a complete frame.

        Raises:
            MuxRequestError: If ``kind`` cannot be sent by a client.
        """
        msg_type, body = self._encode_payload(kind, payload or {})
        return pack_frame(self.version, msg_type, tag, body)

    def decode(self, data: bytes) -> Packet:
        """Decode a complete frame.

        Raises:
            MuxVersionError: If the frame carries another protocol version.
            MuxProtocolError: If the frame or its payload is malformed.
        """
        length, version, msg_type, tag = unpack_header(data)
        if version != self.version:
            raise MuxVersionError(self.version, version)

        kind, payload = self._decode_payload(msg_type, data[HEADER_SIZE:length])
        return Packet(kind=kind, tag=tag, payload=payload)

    def read_packet(self, transport: StreamTransport) -> Packet:
        """Read exactly one frame from ``transport`` and decode it."""
        prefix = transport.receive(4)
        (length,) = struct.unpack("<I", prefix)
        if length < HEADER_SIZE:
            raise MuxProtocolError(f"Invalid frame length {length}")

        packet = self.decode(prefix + transport.receive(length - 4))
        logger.debug(f"Received {packet.kind.value} tag={packet.tag} length={length}")
        return packet

    @abstractmethod
    def _encode_payload(self, kind: MessageKind, payload: dict[str, Any]) -> tuple[int, bytes]:
        """Return (header message type, payload bytes) for a request."""

    @abstractmethod
    def _decode_payload(self, msg_type: int, body: bytes) -> tuple[MessageKind, dict[str, Any]]:
        """Return (kind, payload fields) for a frame body."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(version={self.version})"


# =============================================================================
# Version 0: binary structs
# =============================================================================

_BINARY_TYPES: dict[MessageKind, int] = {
    MessageKind.RESULT: 1,
    MessageKind.CONNECT: 2,
    MessageKind.LISTEN: 3,
    MessageKind.DEVICE_ADD: 4,
    MessageKind.DEVICE_REMOVE: 5,
}
_BINARY_KINDS = {value: kind for kind, value in _BINARY_TYPES.items()}


class BinaryProtocol(WireProtocol):
    """Protocol version 0: numeric message types and packed payloads."""

    version = BINARY_PROTOCOL_VERSION
    name = "binary"

    def _encode_payload(self, kind: MessageKind, payload: dict[str, Any]) -> tuple[int, bytes]:
        if kind == MessageKind.CONNECT:
            try:
                body = struct.pack(CONNECT_FORMAT, payload["DeviceID"], payload["PortNumber"])
            except (KeyError, struct.error) as e:
                raise MuxRequestError(f"Invalid Connect payload: {e}") from e
        elif kind == MessageKind.LISTEN:
            body = b""
        else:
            raise MuxRequestError(f"Invalid outgoing request type {kind.value}")

        return _BINARY_TYPES[kind], body

    def _decode_payload(self, msg_type: int, body: bytes) -> tuple[MessageKind, dict[str, Any]]:
        kind = _BINARY_KINDS.get(msg_type)
        if kind is None:
            raise MuxProtocolError(f"Invalid incoming message type {msg_type}")

        try:
            if kind == MessageKind.RESULT:
                (number,) = struct.unpack_from("<I", body)
                return kind, {"Number": number}

            if kind == MessageKind.DEVICE_ADD:
                device_id, product_id, serial, location_id = struct.unpack_from(
                    DEVICE_ADD_FORMAT, body
                )
                return kind, {
                    "DeviceID": device_id,
                    "Properties": {
                        "LocationID": location_id,
                        "SerialNumber": serial.split(b"\0", 1)[0].decode("utf-8", "replace"),
                        "ProductID": product_id,
                    },
                }

            if kind == MessageKind.DEVICE_REMOVE:
                (device_id,) = struct.unpack_from("<I", body)
                return kind, {"DeviceID": device_id}

            if kind == MessageKind.CONNECT:
                device_id, port = struct.unpack_from(CONNECT_FORMAT, body)
                return kind, {"DeviceID": device_id, "PortNumber": port}

        except struct.error as e:
            raise MuxProtocolError(f"Truncated {kind.value} payload ({len(body)} bytes)") from e

        return kind, {}


# =============================================================================
# Version 1: XML property lists
# =============================================================================

_PLIST_TYPES: dict[MessageKind, str] = {
    MessageKind.RESULT: "Result",
    MessageKind.CONNECT: "Connect",
    MessageKind.LISTEN: "Listen",
    MessageKind.DEVICE_ADD: "Attached",
    MessageKind.DEVICE_REMOVE: "Detached",
}
_PLIST_KINDS = {value: kind for kind, value in _PLIST_TYPES.items()}


class PlistProtocol(WireProtocol):
    """Protocol version 1: property-list payloads in a type-8 frame.

    Args:
        client_version_string: Value of ClientVersionString in requests.
        prog_name: Value of ProgName in requests.
    """

    version = PLIST_PROTOCOL_VERSION
    name = "plist"

    def __init__(
        self,
        client_version_string: str = CLIENT_VERSION_STRING,
        prog_name: str = PROG_NAME,
    ) -> None:
        self.client_version_string = client_version_string
        self.prog_name = prog_name

    def _encode_payload(self, kind: MessageKind, payload: dict[str, Any]) -> tuple[int, bytes]:
        if kind not in REQUEST_KINDS:
            raise MuxRequestError(f"Invalid outgoing request type {kind.value}")

        message = dict(payload)
        message["ClientVersionString"] = self.client_version_string
        message["MessageType"] = _PLIST_TYPES[kind]
        message["ProgName"] = self.prog_name

        try:
            body = plistlib.dumps(message, fmt=plistlib.FMT_XML)
        except (TypeError, OverflowError) as e:
            raise MuxRequestError(f"Cannot serialize {kind.value} payload: {e}") from e

        return PLIST_MESSAGE_TYPE, body + b"\n"

    def _decode_payload(self, msg_type: int, body: bytes) -> tuple[MessageKind, dict[str, Any]]:
        if msg_type != PLIST_MESSAGE_TYPE:
            raise MuxProtocolError(f"Received non-plist type {msg_type}")

        try:
            message = plistlib.loads(body)
        except Exception as e:
            raise MuxProtocolError(f"Invalid plist payload: {e}") from e

        if not isinstance(message, dict):
            raise MuxProtocolError("Plist payload is not a dictionary")

        message_type = message.get("MessageType")
        kind = _PLIST_KINDS.get(message_type) if isinstance(message_type, str) else None
        if kind is None:
            raise MuxProtocolError(f"Invalid incoming message type {message_type!r}")

        try:
            if kind == MessageKind.RESULT:
                number = message["Number"]
                if not isinstance(number, int) or isinstance(number, bool):
                    raise MuxProtocolError(f"Result Number is not an integer: {number!r}")
                return kind, {"Number": number}

            if kind == MessageKind.DEVICE_ADD:
                properties = message["Properties"]
                return kind, {
                    "DeviceID": message["DeviceID"],
                    "Properties": {
                        "LocationID": properties["LocationID"],
                        "SerialNumber": properties["SerialNumber"],
                        "ProductID": properties["ProductID"],
                    },
                }

            if kind == MessageKind.DEVICE_REMOVE:
                return kind, {"DeviceID": message["DeviceID"]}

            if kind == MessageKind.CONNECT:
                return kind, {
                    "DeviceID": message["DeviceID"],
                    "PortNumber": message["PortNumber"],
                }

        except (KeyError, TypeError) as e:
            raise MuxProtocolError(f"Missing field {e} in {message_type} message") from e

        return kind, {}
