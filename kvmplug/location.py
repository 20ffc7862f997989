"""Placement of devices on QEMU PCI buses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .models import PciEndpoint

log = logging.getLogger(__name__)

_MAX_DEVICES_ON_BUS = 32


@dataclass(frozen=True)
class DeviceLocation:
    """Bus and address of a device; None lets QEMU choose."""

    bus: str | None = None
    addr: str | None = None


class DeviceLocator(Protocol):
    """Maps a PCIe endpoint to a device location."""

    def calculate(self, endpoint: PciEndpoint | None) -> DeviceLocation: ...


@dataclass(frozen=True)
class DefaultDeviceLocator:
    """Leaves placement to QEMU."""

    def calculate(self, endpoint: PciEndpoint | None) -> DeviceLocation:
        return DeviceLocation()


@dataclass(frozen=True)
class BusDeviceLocator:
    """Places physical functions on a sequence of buses, 32 slots each."""

    buses: tuple[str, ...]

    def calculate(self, endpoint: PciEndpoint | None) -> DeviceLocation:
        if endpoint is None:
            raise ValueError("pci endpoint is required to calculate device location")
        function = endpoint.physical_function
        if function < 0:
            raise ValueError("physical function cannot be negative")
        for bus in self.buses:
            if function < _MAX_DEVICES_ON_BUS:
                return DeviceLocation(bus=bus, addr=hex(function))
            function -= _MAX_DEVICES_ON_BUS
        raise ValueError(f"no corresponding bus found for physical function: {function}")


def new_device_locator(buses) -> DefaultDeviceLocator | BusDeviceLocator:
    """Choose a locator for the given buses; raises ValueError on empty or repeated names."""
    buses = tuple(buses or ())
    if not buses:
        log.info("Device location for virtio-blk and Nvme devices will be assigned by QEMU")
        return DefaultDeviceLocator()
    seen: set[str] = set()
    for bus in buses:
        if not bus:
            raise ValueError(f"Empty bus name cannot be used in {list(buses)}")
        if bus in seen:
            raise ValueError(f"Duplicated bus {bus}")
        seen.add(bus)
    log.info("Device location will be calculated based on requested PcieEndpoint on %s", buses)
    return BusDeviceLocator(buses)