"""DeviceRegistry - in-memory roster of attached devices.

The roster is keyed by daemon-assigned device id. It is written only by
the listening connection while it processes attach/detach events;
callers get a read-only mapping through :attr:`DeviceRegistry.devices`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from usbmux.types.device import Device, RosterDelta

__all__ = ["DeviceRegistry"]

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Set of currently attached devices, keyed by device id."""

    def __init__(self) -> None:
        self._devices: dict[int, Device] = {}
        self._view = MappingProxyType(self._devices)

    @property
    def devices(self) -> Mapping[int, Device]:
        """Live read-only view of the roster."""
        return self._view

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices.values()))

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def get(self, device_id: int) -> Device | None:
        """Return the attached device with ``device_id``, if any."""
        return self._devices.get(device_id)

    def find_by_serial(self, serial: str) -> Device | None:
        """Return the first attached device with ``serial``, if any."""
        for device in self._devices.values():
            if device.serial == serial:
                return device
        return None

    # -------------------------------------------------------------------------
    # Event application (called by MuxConnection.process only)
    # -------------------------------------------------------------------------

    def record_attached(self, device: Device) -> RosterDelta:
        """Insert ``device``, replacing any stale entry with the same id."""
        if device.id in self._devices:
            logger.warning(f"Device {device.id} attached twice; replacing previous entry")
        self._devices[device.id] = device
        logger.info(f"Device attached: {device}")
        return RosterDelta(added=(device.id,))

    def record_detached(self, device_id: int) -> RosterDelta:
        """Remove the device with ``device_id``. Unknown ids are ignored."""
        device = self._devices.pop(device_id, None)
        if device is None:
            logger.warning(f"Detach for unknown device {device_id}")
            return RosterDelta()
        logger.info(f"Device detached: {device}")
        return RosterDelta(removed=(device_id,))

    def __repr__(self) -> str:
        return f"DeviceRegistry({list(self._devices.values())!r})"
