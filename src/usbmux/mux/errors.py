"""Exception hierarchy for the usbmux client.

Every failure surfaces as a subclass of :class:`MuxError`:

- MuxTransportError: the socket broke or was closed
- MuxVersionError: the daemon answered in another protocol version
- MuxProtocolError: a packet could not be decoded or was unexpected
- MuxDaemonError: the daemon answered a request with a non-zero code
- MuxRequestError: the caller asked for something the session cannot do
"""

from __future__ import annotations

__all__ = [
    "MuxError",
    "MuxTransportError",
    "MuxVersionError",
    "MuxProtocolError",
    "MuxDaemonError",
    "MuxRequestError",
]


class MuxError(Exception):
    """Base exception for usbmux client errors."""


class MuxTransportError(MuxError):
    """Raised when the daemon socket is broken, closed or unreachable."""


class MuxVersionError(MuxError):
    """Raised when a frame carries an unexpected protocol version."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Version mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class MuxProtocolError(MuxError):
    """Raised when a packet is malformed or arrives out of turn."""

    def __init__(
        self, message: str, expected: int | None = None, actual: int | None = None
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class MuxDaemonError(MuxError):
    """Raised when the daemon rejects a request with a non-zero result code."""

    def __init__(self, operation: str, code: int) -> None:
        super().__init__(f"{operation} failed: error {code}")
        self.operation = operation
        self.code = code


class MuxRequestError(MuxError):
    """Raised when a control request is invalid in the current state."""
