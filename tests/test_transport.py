import os

import pytest

from kvmplug.models import (
    NvmeController,
    NvmeControllerSpec,
    NvmeSubsystem,
    NvmeSubsystemSpec,
    NvmeTransportType,
    PciEndpoint,
)
from kvmplug.transport import ListenAddress, ListenerParams, NvmeVfiouserTransport

NQN = "nqn.2014-08.org.nvmexpress:uuid:1630a3a6-5bac-4563-a1a6-d2b0257c282a"
HOSTNQN = "nqn.2014-08.org.nvmexpress:uuid:feb98abe-d51f-40c8-b348-2753f3571d3c"


def test_valid_controller_dir():
    assert NvmeVfiouserTransport(".") == NvmeVfiouserTransport(ctrlr_dir=".")
    assert NvmeVfiouserTransport(".").ctrlr_dir == "."


@pytest.mark.parametrize("path", ["", "this/is/some/non/existing/path", "/dev/null"])
def test_invalid_controller_dir(path):
    with pytest.raises(ValueError):
        NvmeVfiouserTransport(path)


def make_params(tmp_path, pf, vf, port, hostnqn):
    transport = NvmeVfiouserTransport(str(tmp_path))
    ctrlr = NvmeController(
        name="nvmeSubsystems/subsys0/nvmeControllers/nvme-1",
        spec=NvmeControllerSpec(
            trtype=NvmeTransportType.PCIE,
            pcie_id=PciEndpoint(physical_function=pf, virtual_function=vf, port_id=port),
        ),
    )
    subsys = NvmeSubsystem(spec=NvmeSubsystemSpec(nqn=NQN, hostnqn=hostnqn))
    return transport.params(ctrlr, subsys)


@pytest.mark.parametrize(
    "pf,vf,port,hostnqn",
    [(0, 1, 0, ""), (0, 0, 2, ""), (0, 0, 0, HOSTNQN)],
)
def test_params_rejected(tmp_path, pf, vf, port, hostnqn):
    with pytest.raises(ValueError):
        make_params(tmp_path, pf, vf, port, hostnqn)


def test_successful_params(tmp_path):
    assert make_params(tmp_path, 3, 0, 0, "") == ListenerParams(
        nqn=NQN,
        listen_address=ListenAddress(
            trtype="vfiouser", traddr=os.path.join(str(tmp_path), "subsys0")
        ),
    )