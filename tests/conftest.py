"""Pytest configuration and shared fixtures for usbmux tests.

This module provides reusable fixtures for testing:
- env_setup: (autouse) Clears USBMUX_* environment variables
- frames: Builders for daemon-side frames in either protocol version
- socket_pair: Connected client/peer sockets for in-process exchanges
- temp_socket_path: Short local-domain socket path
- fake_daemon: Scripted usbmuxd stand-in listening on temp_socket_path

Usage:
    def test_something(socket_pair, frames):
        client, peer = socket_pair
        peer.sendall(frames.result(tag=1, code=0))
"""

from __future__ import annotations

import os
import plistlib
import socket
import struct
import threading
import uuid
from collections.abc import Generator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

# =============================================================================
# Frame builders (daemon side)
# =============================================================================


def build_frame(version: int, msg_type: int, tag: int, body: bytes = b"") -> bytes:
    """Build a raw frame with an arbitrary header."""
    return struct.pack("<IIII", 16 + len(body), version, msg_type, tag) + body


def build_plist(tag: int, message: dict[str, Any], version: int = 1, msg_type: int = 8) -> bytes:
    """Build a property-list frame."""
    return build_frame(version, msg_type, tag, plistlib.dumps(message) + b"\n")


def build_result(tag: int, code: int = 0, version: int = 0) -> bytes:
    """Build a Result reply in the given protocol version."""
    if version == 0:
        return build_frame(0, 1, tag, struct.pack("<I", code))
    return build_plist(tag, {"MessageType": "Result", "Number": code}, version=version)


def build_attached(
    device_id: int,
    serial: str,
    product_id: int,
    location_id: int,
    version: int = 0,
    tag: int = 0,
) -> bytes:
    """Build an Attached event in the given protocol version."""
    if version == 0:
        body = struct.pack("<IH256s2xI", device_id, product_id, serial.encode(), location_id)
        return build_frame(0, 4, tag, body)
    message = {
        "MessageType": "Attached",
        "DeviceID": device_id,
        "Properties": {
            "LocationID": location_id,
            "SerialNumber": serial,
            "ProductID": product_id,
        },
    }
    return build_plist(tag, message, version=version)


def build_detached(device_id: int, version: int = 0, tag: int = 0) -> bytes:
    """Build a Detached event in the given protocol version."""
    if version == 0:
        return build_frame(0, 5, tag, struct.pack("<I", device_id))
    return build_plist(tag, {"MessageType": "Detached", "DeviceID": device_id}, version=version)


def recv_frame(sock: socket.socket) -> tuple[int, int, int, bytes]:
    """Read one frame from ``sock``; returns (version, msg_type, tag, body)."""
    header = _recv_exact(sock, 16)
    length, version, msg_type, tag = struct.unpack("<IIII", header)
    return version, msg_type, tag, _recv_exact(sock, length - 16)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise ConnectionError("peer closed")
        buf.extend(chunk)
    return bytes(buf)


# =============================================================================
# Fake daemon
# =============================================================================


class FakeMuxDaemon:
    """Scripted usbmuxd stand-in.

    Each accepted connection gets one request. A request in a version
    other than ``version`` is answered with a Result in ``version`` (which
    the client sees as a version mismatch). A Listen is answered with
    ``listen_result`` followed by every frame in ``events``; a Connect is
    answered with ``connect_result`` and then echoes relay bytes.

    Attributes:
        requests: Decoded requests as dicts with keys version, type, tag
            and payload, in arrival order.
    """

    def __init__(self, socket_path: Path, version: int = 0) -> None:
        self.socket_path = socket_path
        self.version = version
        self.listen_result = 0
        self.connect_result = 0
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.requests: list[dict[str, Any]] = []
        self._stop = threading.Event()
        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._server.bind(str(socket_path))
        self._server.listen(8)
        self._server.settimeout(0.1)
        self._accept_thread = threading.Thread(target=self._accept_loop, daemon=True)

    def add_attached(self, device_id: int, serial: str, product_id: int, location_id: int) -> None:
        self.events.append(
            (
                "Attached",
                {
                    "device_id": device_id,
                    "serial": serial,
                    "product_id": product_id,
                    "location_id": location_id,
                },
            )
        )

    def add_detached(self, device_id: int) -> None:
        self.events.append(("Detached", {"device_id": device_id}))

    def start(self) -> None:
        self._accept_thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._accept_thread.join(timeout=2)
        self._server.close()

    def _accept_loop(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except TimeoutError:
                continue
            except OSError:
                break
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        conn.settimeout(0.2)
        with conn:
            try:
                request = self._read_request(conn)
            except (OSError, ConnectionError):
                return
            self.requests.append(request)
            tag = request["tag"]

            if request["version"] != self.version:
                conn.sendall(build_result(tag, 0, version=self.version))
                return

            if request["type"] == "Listen":
                conn.sendall(build_result(tag, self.listen_result, version=self.version))
                if self.listen_result == 0:
                    for name, fields in self.events:
                        conn.sendall(self._event_frame(name, fields))
                    self._pump(conn, echo=False)

            elif request["type"] == "Connect":
                conn.sendall(build_result(tag, self.connect_result, version=self.version))
                if self.connect_result == 0:
                    self._pump(conn, echo=True)

    def _read_request(self, conn: socket.socket) -> dict[str, Any]:
        while True:
            try:
                version, msg_type, tag, body = recv_frame(conn)
                break
            except TimeoutError:
                if self._stop.is_set():
                    raise
        if msg_type == 8:
            payload = plistlib.loads(body)
            kind = payload["MessageType"]
        elif msg_type == 2:
            device_id, port = struct.unpack("<IH2x", body)
            payload = {"DeviceID": device_id, "PortNumber": port}
            kind = "Connect"
        else:
            payload = {}
            kind = {3: "Listen"}.get(msg_type, str(msg_type))
        return {"version": version, "type": kind, "tag": tag, "payload": payload}

    def _event_frame(self, name: str, fields: dict[str, Any]) -> bytes:
        if name == "Attached":
            return build_attached(version=self.version, **fields)
        return build_detached(version=self.version, **fields)

    def _pump(self, conn: socket.socket, echo: bool) -> None:
        """Keep the connection open until the client closes it."""
        while not self._stop.is_set():
            try:
                data = conn.recv(4096)
            except TimeoutError:
                continue
            except OSError:
                return
            if not data:
                return
            if echo:
                conn.sendall(data)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def env_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove USBMUX_* variables so settings fall back to defaults."""
    for key in list(os.environ):
        if key.upper().startswith("USBMUX_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def frames() -> SimpleNamespace:
    """Daemon-side frame builders."""
    return SimpleNamespace(
        frame=build_frame,
        plist=build_plist,
        result=build_result,
        attached=build_attached,
        detached=build_detached,
        recv=recv_frame,
    )


@pytest.fixture
def socket_pair() -> Generator[tuple[socket.socket, socket.socket], None, None]:
    """Connected (client, peer) stream sockets."""
    client, peer = socket.socketpair()
    peer.settimeout(5.0)
    yield client, peer
    client.close()
    peer.close()


@pytest.fixture
def temp_socket_path() -> Generator[Path, None, None]:
    """Short socket path to stay under the local-domain path limit."""
    socket_path = Path(f"/tmp/usbmux_{uuid.uuid4().hex[:8]}.sock")
    yield socket_path
    if socket_path.exists():
        socket_path.unlink()


@pytest.fixture
def fake_daemon(temp_socket_path: Path) -> Generator[FakeMuxDaemon, None, None]:
    """Running binary-protocol fake daemon; set .version before connecting."""
    daemon = FakeMuxDaemon(temp_socket_path)
    daemon.start()
    yield daemon
    daemon.stop()
