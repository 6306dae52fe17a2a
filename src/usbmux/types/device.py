"""Device roster types.

- Device: an attached device as announced by the daemon
- RosterDelta: ids added to or removed from the roster by one event
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["Device", "RosterDelta"]


@dataclass(frozen=True, slots=True)
class Device:
    """A USB device currently attached to the daemon.

    Attributes:
        id: Daemon-assigned identifier, unique within a session
        product_id: USB product id
        serial: Device serial number (UDID)
        location_id: USB location id
    """

    id: int
    product_id: int
    serial: str
    location_id: int

    def __str__(self) -> str:
        return (
            f"<Device: ID {self.id} ProdID 0x{self.product_id:04x} "
            f"Serial '{self.serial}' Location 0x{self.location_id:x}>"
        )


@dataclass(frozen=True, slots=True)
class RosterDelta:
    """Change applied to the roster by a single processed event.

    An empty delta means nothing was read, or the event did not change
    the roster (for example a detach for an unknown device).
    """

    added: tuple[int, ...] = ()
    removed: tuple[int, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.added or self.removed)
