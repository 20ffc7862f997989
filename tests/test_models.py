from dataclasses import replace

from kvmplug.models import (
    NvmeController,
    NvmeControllerSpec,
    NvmeSubsystem,
    NvmeTransportType,
    PciEndpoint,
    VirtioBlk,
)


def test_controller_subsystem_id_from_name():
    ctrlr = NvmeController(name="nvmeSubsystems/subsys0/nvmeControllers/nvme-1")
    assert ctrlr.subsystem_id == "subsys0"


def test_subsystem_id_from_subsystem_name():
    assert NvmeSubsystem(name="nvmeSubsystems/subsystem0").subsystem_id == "subsystem0"


def test_subsystem_id_empty_for_foreign_names():
    assert NvmeSubsystem(name="").subsystem_id == ""
    assert NvmeController(name="volumes/x").subsystem_id == ""


def test_replace_keeps_original():
    blk = VirtioBlk(pcie_id=PciEndpoint(physical_function=42), volume_name_ref="Malloc42")
    named = replace(blk, name="volumes/virtio-blk-42")
    assert blk.name == ""
    assert named.pcie_id == PciEndpoint(physical_function=42)


def test_spec_defaults():
    spec = NvmeControllerSpec()
    assert spec.trtype is NvmeTransportType.UNSPECIFIED
    assert spec.pcie_id is None