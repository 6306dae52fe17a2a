"""USBMux - client facade for the usbmux daemon.

On construction the facade negotiates the protocol version: it tries a
Listen request in the binary protocol (version 0) and, if the daemon
answers in another version, retries once with the property-list
protocol (version 1). The listening connection it ends up with keeps
the device roster current through :meth:`USBMux.process`; relays are
opened on fresh connections speaking the negotiated protocol.

Usage:
    with USBMux() as mux:
        mux.process(timeout=1.0)
        for device in mux.devices.values():
            sock = mux.connect(device, 62078)
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Mapping
from pathlib import Path

from usbmux.config import Endpoint, UsbmuxSettings
from usbmux.mux.connection import MuxConnection
from usbmux.mux.errors import MuxVersionError
from usbmux.mux.protocol import BinaryProtocol, PlistProtocol, WireProtocol
from usbmux.mux.registry import DeviceRegistry
from usbmux.types.device import Device, RosterDelta

__all__ = ["USBMux", "negotiate_protocol"]

logger = logging.getLogger(__name__)


def _listen_with(
    protocol: WireProtocol,
    endpoint: Endpoint,
    registry: DeviceRegistry,
    connect_timeout: float | None,
) -> MuxConnection:
    """Open a connection and listen on it, closing it on any failure."""
    connection = MuxConnection(
        protocol,
        endpoint=endpoint,
        registry=registry,
        connect_timeout=connect_timeout,
    )
    try:
        connection.listen()
    except Exception:
        connection.close()
        raise
    return connection


def negotiate_protocol(
    endpoint: Endpoint,
    settings: UsbmuxSettings,
    registry: DeviceRegistry | None = None,
) -> tuple[WireProtocol, MuxConnection]:
    """Find the protocol the daemon speaks and open a listening connection.

    Tries the binary protocol first. Only a version mismatch triggers the
    single retry with the property-list protocol; every other failure,
    and any failure of the retry, propagates.

    Args:
        endpoint: Daemon endpoint.
        settings: Settings supplying plist metadata and connect timeout.
        registry: Roster the listening connection will update.

    Returns:
        (negotiated protocol, listening connection)
    """
    registry = registry if registry is not None else DeviceRegistry()

    try:
        protocol: WireProtocol = BinaryProtocol()
        connection = _listen_with(protocol, endpoint, registry, settings.connect_timeout)
    except MuxVersionError as e:
        logger.info(f"Binary protocol rejected ({e}); retrying with plist protocol")
        protocol = PlistProtocol(
            client_version_string=settings.client_version_string,
            prog_name=settings.prog_name,
        )
        connection = _listen_with(protocol, endpoint, registry, settings.connect_timeout)

    logger.info(f"Negotiated usbmux protocol version {protocol.version} ({protocol.name})")
    return protocol, connection


class USBMux:
    """Client for the usbmux daemon.

    Attributes:
        endpoint: Daemon endpoint used for every connection.
        protocol: Negotiated wire protocol.
        listener: Listening connection feeding the roster.
    """

    def __init__(
        self,
        endpoint: Endpoint | str | None = None,
        settings: UsbmuxSettings | None = None,
    ) -> None:
        """Connect to the daemon and start listening for devices.

        Args:
            endpoint: Socket path or (host, port) overriding settings.
            settings: Client settings (loaded from environment by default).

        Raises:
            MuxError: If the daemon cannot be reached or refuses to listen.
        """
        self.settings = settings or UsbmuxSettings()
        if endpoint is None:
            endpoint = self.settings.get_endpoint()
        elif isinstance(endpoint, str):
            endpoint = Path(endpoint)
        self.endpoint: Endpoint = endpoint

        self._registry = DeviceRegistry()
        self.protocol, self.listener = negotiate_protocol(
            self.endpoint, self.settings, self._registry
        )

    def __enter__(self) -> USBMux:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def version(self) -> int:
        """Negotiated protocol version (0 binary, 1 plist)."""
        return self.protocol.version

    @property
    def devices(self) -> Mapping[int, Device]:
        """Read-only view of attached devices keyed by device id."""
        return self._registry.devices

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def process(self, timeout: float | None = None) -> RosterDelta:
        """Wait up to ``timeout`` seconds for one attach/detach event."""
        return self.listener.process(timeout)

    def connect(self, device: Device | int, port: int) -> socket.socket:
        """Open a relay to ``port`` on ``device`` over a new connection.

        Returns:
            Connected socket, owned by the caller.

        Raises:
            MuxDaemonError: If the daemon refuses the connection.
        """
        connection = MuxConnection(
            self.protocol,
            endpoint=self.endpoint,
            connect_timeout=self.settings.connect_timeout,
        )
        try:
            return connection.connect(device, port)
        except Exception:
            connection.close()
            raise

    def close(self) -> None:
        """Close the listening connection."""
        self.listener.close()
