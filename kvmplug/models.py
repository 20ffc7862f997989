"""Resource messages handled by the device plugging server."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

_SUBSYSTEM_COLLECTION = "nvmeSubsystems"


def _subsystem_id(name: str) -> str:
    parts = name.split("/")
    if len(parts) >= 2 and parts[0] == _SUBSYSTEM_COLLECTION and parts[1]:
        return parts[1]
    return ""


@dataclass
class PciEndpoint:
    """Location of a function on a PCIe port."""

    physical_function: int = 0
    virtual_function: int = 0
    port_id: int = 0


@dataclass
class VirtioBlk:
    """A virtio-blk device backed by a volume."""

    name: str = ""
    pcie_id: PciEndpoint | None = None
    volume_name_ref: str = ""
    max_io_qps: int = 0


class NvmeTransportType(enum.Enum):
    """Transport an Nvme controller is exposed over."""

    UNSPECIFIED = 0
    FC = 1
    PCIE = 2
    RDMA = 3
    TCP = 4
    LOOP = 5


@dataclass
class NvmeControllerSpec:
    """Requested shape of an Nvme controller."""

    trtype: NvmeTransportType = NvmeTransportType.UNSPECIFIED
    pcie_id: PciEndpoint | None = None
    nvme_controller_id: int | None = None


@dataclass
class NvmeController:
    """An Nvme controller belonging to a subsystem."""

    name: str = ""
    spec: NvmeControllerSpec = field(default_factory=NvmeControllerSpec)
    active: bool = False

    @property
    def subsystem_id(self) -> str:
        """Id of the subsystem named in the controller name, or an empty string."""
        return _subsystem_id(self.name)


@dataclass
class NvmeSubsystemSpec:
    """Requested shape of an Nvme subsystem."""

    nqn: str = ""
    hostnqn: str = ""


@dataclass
class NvmeSubsystem:
    """An Nvme subsystem."""

    name: str = ""
    spec: NvmeSubsystemSpec = field(default_factory=NvmeSubsystemSpec)

    @property
    def subsystem_id(self) -> str:
        """Id taken from the subsystem name, or an empty string."""
        return _subsystem_id(self.name)