"""MuxConnection - one session with the usbmux daemon.

A connection owns one transport and speaks one wire protocol. It starts
``idle`` and moves once, either to ``listening`` (via :meth:`listen`) to
receive attach/detach events, or to ``connected`` (via :meth:`connect`)
after which the socket carries raw relay bytes and no more control
packets may be exchanged.

Every control exchange takes the next tag, sends one request and reads
exactly one reply, which must be a Result carrying the same tag.
"""

from __future__ import annotations

import logging
import select
import socket
from enum import Enum
from typing import Any

from usbmux.config import Endpoint, UsbmuxSettings
from usbmux.constants import FIRST_TAG
from usbmux.mux.errors import (
    MuxDaemonError,
    MuxProtocolError,
    MuxRequestError,
    MuxTransportError,
)
from usbmux.mux.protocol import MessageKind, Packet, WireProtocol
from usbmux.mux.registry import DeviceRegistry
from usbmux.mux.transport import StreamTransport, open_transport
from usbmux.types.device import Device, RosterDelta

__all__ = ["ConnectionMode", "MuxConnection", "swap_port"]

logger = logging.getLogger(__name__)


class ConnectionMode(str, Enum):
    """Session state of a MuxConnection."""

    IDLE = "idle"
    LISTENING = "listening"
    CONNECTED = "connected"


def swap_port(port: int) -> int:
    """Byte-swap a 16-bit port number.

    The daemon reads PortNumber in network byte order while the rest of
    the packet is little-endian.
    """
    return ((port << 8) & 0xFF00) | (port >> 8)


class MuxConnection:
    """State machine over one daemon socket.

    Attributes:
        protocol: Wire protocol used for every packet on this connection.
        registry: Roster updated by :meth:`process`.
        mode: Current session state.

    Example:
        >>> with MuxConnection(BinaryProtocol()) as conn:
        ...     conn.listen()
        ...     delta = conn.process(timeout=1.0)
    """

    def __init__(
        self,
        protocol: WireProtocol,
        endpoint: Endpoint | None = None,
        registry: DeviceRegistry | None = None,
        transport: StreamTransport | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        """Open a connection to the daemon.

        Args:
            protocol: Wire protocol to speak.
            endpoint: Daemon endpoint (default from UsbmuxSettings).
            registry: Roster to update (a fresh one by default).
            transport: Already-connected transport to use instead of
                opening ``endpoint``.
            connect_timeout: Timeout for establishing the socket.

        Raises:
            MuxTransportError: If the daemon cannot be reached.
        """
        if transport is None:
            if endpoint is None:
                endpoint = UsbmuxSettings().get_endpoint()
            transport = open_transport(endpoint, timeout=connect_timeout)

        self.protocol = protocol
        self.registry = registry if registry is not None else DeviceRegistry()
        self.mode = ConnectionMode.IDLE
        self._transport = transport
        self._next_tag = FIRST_TAG

    def __enter__(self) -> MuxConnection:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def next_tag(self) -> int:
        """Tag the next control request will carry."""
        return self._next_tag

    @property
    def closed(self) -> bool:
        return self._transport.closed

    @property
    def sock(self) -> socket.socket:
        """The underlying socket."""
        return self._transport.sock

    def close(self) -> None:
        """Close the underlying transport. Safe to call multiple times."""
        self._transport.close()

    # =========================================================================
    # Operations
    # =========================================================================

    def listen(self) -> None:
        """Subscribe to attach/detach events.

        Raises:
            MuxRequestError: If the connection is not idle.
            MuxDaemonError: If the daemon rejects the request.
        """
        self._require_idle("listen")

        code = self._exchange(MessageKind.LISTEN)
        if code != 0:
            raise MuxDaemonError("Listen", code)

        self.mode = ConnectionMode.LISTENING
        logger.info(f"Listening for devices ({self.protocol.name} protocol)")

    def process(self, timeout: float | None = None) -> RosterDelta:
        """Wait for and apply at most one event.

        Args:
            timeout: Seconds to wait for the socket to become readable.
                None waits indefinitely; 0 polls.

        Returns:
            The roster change made by the event, empty if none arrived.

        Raises:
            MuxRequestError: If the connection is relaying data.
            MuxTransportError: If the socket fails while waiting. The
                transport is closed.
            MuxProtocolError: If the packet is not an attach/detach event.
        """
        if self.mode == ConnectionMode.CONNECTED:
            raise MuxRequestError("Socket is connected, cannot process listener events")

        fd = self._transport.fileno()
        try:
            readable, _, exceptional = select.select([fd], [], [fd], timeout)
        except (OSError, ValueError) as e:
            self.close()
            raise MuxTransportError(f"Wait on listener socket failed: {e}") from e

        if exceptional:
            self.close()
            raise MuxTransportError("Exception in listener socket")
        if not readable:
            return RosterDelta()

        return self._process_packet(self.protocol.read_packet(self._transport))

    def connect(self, device: Device | int, port: int) -> socket.socket:
        """Open a relay to ``port`` on ``device``.

        On success the connection switches to data mode and the raw socket
        is returned; the caller owns it from then on.

        Args:
            device: Target device or its daemon-assigned id.
            port: TCP port on the device, in host byte order.

        Returns:
            Connected socket carrying raw relay bytes.

        Raises:
            MuxRequestError: If the connection is not idle or port is
                out of range.
            MuxDaemonError: If the daemon refuses the connection.
        """
        self._require_idle("connect")
        if not 0 <= port <= 0xFFFF:
            raise MuxRequestError(f"Port out of range: {port}")

        device_id = device.id if isinstance(device, Device) else int(device)
        payload = {"DeviceID": device_id, "PortNumber": swap_port(port)}

        code = self._exchange(MessageKind.CONNECT, payload)
        if code != 0:
            raise MuxDaemonError("Connect", code)

        self.mode = ConnectionMode.CONNECTED
        logger.info(f"Relay open to device {device_id} port {port}")
        return self._transport.sock

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_idle(self, operation: str) -> None:
        if self.mode == ConnectionMode.CONNECTED:
            raise MuxRequestError("Mux is connected, cannot issue control packets")
        if self.mode != ConnectionMode.IDLE:
            raise MuxRequestError(f"Cannot {operation} while {self.mode.value}")

    def _send_packet(self, kind: MessageKind, tag: int, payload: dict[str, Any]) -> None:
        if self.mode == ConnectionMode.CONNECTED:
            raise MuxRequestError("Mux is connected, cannot issue control packets")
        data = self.protocol.encode(kind, tag, payload)
        logger.debug(f"Sending {kind.value} tag={tag} length={len(data)}")
        self._transport.send(data)

    def _get_reply(self) -> Packet:
        packet = self.protocol.read_packet(self._transport)
        if packet.kind != MessageKind.RESULT:
            raise MuxProtocolError(f"Invalid packet type received: {packet.kind.value}")
        return packet

    def _exchange(self, kind: MessageKind, payload: dict[str, Any] | None = None) -> int:
        """Send one request and return the result code of its reply."""
        tag = self._next_tag
        self._next_tag += 1

        self._send_packet(kind, tag, payload or {})
        reply = self._get_reply()
        if reply.tag != tag:
            raise MuxProtocolError(
                f"Reply tag mismatch: expected {tag}, got {reply.tag}",
                expected=tag,
                actual=reply.tag,
            )

        return int(reply.payload["Number"])

    def _process_packet(self, packet: Packet) -> RosterDelta:
        if packet.kind == MessageKind.DEVICE_ADD:
            properties = packet.payload["Properties"]
            device = Device(
                id=packet.payload["DeviceID"],
                product_id=properties["ProductID"],
                serial=properties["SerialNumber"],
                location_id=properties["LocationID"],
            )
            return self.registry.record_attached(device)

        if packet.kind == MessageKind.DEVICE_REMOVE:
            return self.registry.record_detached(packet.payload["DeviceID"])

        if packet.kind == MessageKind.RESULT:
            raise MuxProtocolError(f"Unexpected result: {packet.payload.get('Number')}")

        raise MuxProtocolError(f"Invalid packet type received: {packet.kind.value}")
