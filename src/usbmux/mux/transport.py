"""StreamTransport - exclusive owner of one daemon socket.

Wraps a connected stream socket with all-or-nothing send and receive:
``send`` keeps writing until every byte is out and ``receive`` keeps
reading until exactly the requested count has arrived. A zero-length
write or read means the peer went away: the socket is closed and a
:class:`MuxTransportError` raised, as for any use after :meth:`close`.

Usage:
    transport = open_transport(Path("/var/run/usbmuxd"))
    try:
        transport.send(frame)
        header = transport.receive(16)
    finally:
        transport.close()
"""

from __future__ import annotations

import logging
import socket
from pathlib import Path

from usbmux.config import Endpoint
from usbmux.constants import RECV_CHUNK_SIZE
from usbmux.mux.errors import MuxTransportError

__all__ = ["StreamTransport", "open_transport"]

logger = logging.getLogger(__name__)


class StreamTransport:
    """Reliable byte-stream over an exclusively owned socket.

    Attributes:
        sock: The underlying socket. Handed to the caller once a relay
            has been established.
    """

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._closed = False

    def __enter__(self) -> StreamTransport:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def fileno(self) -> int:
        """Return the socket's file descriptor (for readiness waits)."""
        self._ensure_open()
        return self.sock.fileno()

    def send(self, data: bytes) -> None:
        """Send all of ``data``, looping over partial writes.

        Raises:
            MuxTransportError: If the socket is closed or the peer stops
                accepting bytes. The transport is closed.
        """
        self._ensure_open()
        view = memoryview(data)
        total_sent = 0

        while total_sent < len(view):
            try:
                sent = self.sock.send(view[total_sent:])
            except OSError as e:
                self.close()
                raise MuxTransportError(f"Send failed: {e}") from e

            if sent == 0:
                self.close()
                raise MuxTransportError("Socket connection broken")
            total_sent += sent

    def receive(self, size: int) -> bytes:
        """Receive exactly ``size`` bytes, looping over partial reads.

        Raises:
            MuxTransportError: If the socket is closed or the peer closes
                the connection before ``size`` bytes arrive. The
                transport is closed.
        """
        self._ensure_open()
        buf = bytearray()

        while len(buf) < size:
            try:
                chunk = self.sock.recv(min(size - len(buf), RECV_CHUNK_SIZE))
            except OSError as e:
                self.close()
                raise MuxTransportError(f"Receive failed: {e}") from e

            if not chunk:
                self.close()
                raise MuxTransportError("Socket connection broken")
            buf.extend(chunk)

        return bytes(buf)

    def close(self) -> None:
        """Release the socket.

        Safe to call multiple times. Every later send/receive fails.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")

    def _ensure_open(self) -> None:
        if self._closed:
            raise MuxTransportError("Transport is closed")


def open_transport(endpoint: Endpoint, timeout: float | None = None) -> StreamTransport:
    """Connect to the daemon and wrap the socket in a StreamTransport.

    Args:
        endpoint: Local-domain socket path, or a (host, port) pair for the
            loopback TCP endpoint.
        timeout: Timeout for establishing the connection only. The
            returned socket is always blocking.

    Returns:
        Connected transport.

    Raises:
        MuxTransportError: If the daemon cannot be reached.
    """
    if isinstance(endpoint, tuple):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        address: str | tuple[str, int] = endpoint
    else:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        address = str(Path(endpoint))

    try:
        sock.settimeout(timeout)
        sock.connect(address)
        sock.settimeout(None)
    except TimeoutError as e:
        sock.close()
        raise MuxTransportError(f"Connection to {address} timed out") from e
    except OSError as e:
        sock.close()
        raise MuxTransportError(f"Connection to {address} failed: {e}") from e

    logger.debug(f"Connected to usbmuxd at {address}")
    return StreamTransport(sock)
