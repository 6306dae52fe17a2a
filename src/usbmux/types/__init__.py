"""Value types shared across the usbmux package."""

from usbmux.types.device import Device, RosterDelta

__all__ = ["Device", "RosterDelta"]
