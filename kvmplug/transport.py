"""Nvme listener parameters for the vfio-user transport."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .core import controller_dir_path
from .models import NvmeController, NvmeSubsystem


@dataclass
class ListenAddress:
    """Listener address of an Nvme subsystem."""

    trtype: str = ""
    traddr: str = ""
    trsvcid: str = ""
    adrfam: str = ""


@dataclass
class ListenerParams:
    """Parameters for adding a listener to an Nvme subsystem."""

    nqn: str = ""
    listen_address: ListenAddress = field(default_factory=ListenAddress)


@dataclass(frozen=True)
class NvmeVfiouserTransport:
    """Exposes Nvme controllers through vfio-user sockets in a directory."""

    ctrlr_dir: str

    def __post_init__(self) -> None:
        if not self.ctrlr_dir:
            raise ValueError("ctrlrDir cannot be empty")
        if not os.path.exists(self.ctrlr_dir):
            raise ValueError(f"{self.ctrlr_dir} path cannot be evaluated")
        if not os.path.isdir(self.ctrlr_dir):
            raise ValueError(f"{self.ctrlr_dir} is not a directory")

    def params(self, ctrlr: NvmeController, subsys: NvmeSubsystem) -> ListenerParams:
        """Listener parameters for a controller; raises ValueError for unsupported setups."""
        pcie_id = ctrlr.spec.pcie_id
        if pcie_id is None:
            raise ValueError("pcie endpoint is required for vfiouser")
        if pcie_id.port_id != 0:
            raise ValueError("only port 0 is supported for vfiouser")
        if pcie_id.virtual_function != 0:
            raise ValueError("virtual functions are not supported for vfiouser")
        if subsys.spec.hostnqn:
            raise ValueError("hostnqn for subsystem is not supported for vfiouser")
        return ListenerParams(
            nqn=subsys.spec.nqn,
            listen_address=ListenAddress(
                trtype="vfiouser",
                traddr=controller_dir_path(self.ctrlr_dir, ctrlr.subsystem_id),
            ),
        )