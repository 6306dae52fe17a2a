"""Configuration settings for the usbmux client.

Settings are loaded from environment variables with the USBMUX_ prefix
(or a local .env file). Every field has a default matching the stock
daemon installation, so an empty environment is valid.
"""

import socket
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from usbmux.constants import (
    CLIENT_VERSION_STRING,
    DEFAULT_SOCKET_PATH,
    DEFAULT_TCP_HOST,
    DEFAULT_TCP_PORT,
    PROG_NAME,
)

# Type alias for endpoint selection
TransportKind = Literal["auto", "unix", "tcp"]

# A local-domain socket path or a (host, port) pair
Endpoint = Path | tuple[str, int]


def platform_has_unix_sockets() -> bool:
    """Return True when the daemon is expected on a local-domain socket."""
    return hasattr(socket, "AF_UNIX") and not sys.platform.startswith("win")


class UsbmuxSettings(BaseSettings):
    """Configuration settings for the usbmux client.

    Attributes:
        socket_path: Local-domain socket the daemon listens on
        tcp_host: Loopback host used when local-domain sockets are unavailable
        tcp_port: Loopback port used when local-domain sockets are unavailable
        transport: Endpoint selection ('auto', 'unix' or 'tcp')
        connect_timeout: Timeout for establishing a socket (None blocks)
        client_version_string: ClientVersionString sent in plist requests
        prog_name: ProgName sent in plist requests
        log_level: Logging level for the command-line monitor
    """

    model_config = SettingsConfigDict(
        env_prefix="USBMUX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow extra env vars without error
    )

    socket_path: Path = Field(
        default=DEFAULT_SOCKET_PATH,
        description="Local-domain socket path of the daemon",
    )
    tcp_host: str = Field(default=DEFAULT_TCP_HOST, description="Loopback host")
    tcp_port: int = Field(
        default=DEFAULT_TCP_PORT,
        ge=1,
        le=65535,
        description="Loopback TCP port",
    )
    transport: TransportKind = Field(
        default="auto",
        description="Endpoint selection ('auto', 'unix' or 'tcp')",
    )
    connect_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Socket connect timeout in seconds",
    )

    client_version_string: str = Field(
        default=CLIENT_VERSION_STRING,
        description="ClientVersionString sent in plist requests",
    )
    prog_name: str = Field(
        default=PROG_NAME,
        description="ProgName sent in plist requests",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    def get_endpoint(self) -> Endpoint:
        """Resolve the daemon endpoint from the transport selection."""
        if self.transport == "tcp":
            return (self.tcp_host, self.tcp_port)
        if self.transport == "unix" or platform_has_unix_sockets():
            return self.socket_path.expanduser()
        return (self.tcp_host, self.tcp_port)
