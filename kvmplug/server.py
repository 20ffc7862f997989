"""Server that mirrors storage frontend device changes into a running QEMU instance."""

from __future__ import annotations

import contextlib
import logging
import os
import posixpath
from typing import Any

from .core import (
    ERR_ADD_CHARDEV_FAILED,
    ERR_ADD_DEVICE_FAILED,
    ERR_DEVICE_ENDPOINT,
    ERR_DEVICE_NOT_DELETED,
    ERR_DEVICE_PARTIALLY_DELETED,
    ERR_FAILED_TO_CREATE_NVME_DIR,
    ERR_INVALID_SUBSYSTEM,
    ERR_MONITOR_CREATION,
    ERR_NO_PCIE_ENDPOINT,
    StatusError,
    controller_dir_path,
    get_protocol,
    to_qemu_id,
)
from .location import new_device_locator
from .models import NvmeController, NvmeSubsystem, NvmeTransportType, VirtioBlk
from .qmp import Monitor, QmpError, open_monitor

log = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 2.0
_DEFAULT_POLL_STEP = 0.005


def _status(template: StatusError) -> StatusError:
    return StatusError(template.code, template.message)


def _deletion_error(*failures: bool) -> StatusError | None:
    if all(failures):
        return _status(ERR_DEVICE_NOT_DELETED)
    if any(failures):
        return _status(ERR_DEVICE_PARTIALLY_DELETED)
    return None


class Server:
    """Wraps a storage frontend and plugs or unplugs its devices in QEMU over QMP.

    The frontend provides create_virtio_blk, delete_virtio_blk,
    create_nvme_controller and delete_nvme_controller taking the same
    arguments as the methods here, and an ``nvme_controllers`` mapping
    from controller name to controller.
    """

    def __init__(self, frontend: Any, qmp_address: str, ctrlr_dir: str, buses=None) -> None:
        if frontend is None:
            raise ValueError("Frontend Server cannot be None")
        if not qmp_address:
            raise ValueError("qmpAddress cannot be empty")
        if not ctrlr_dir:
            raise ValueError("ctrlrDir cannot be empty")
        self.frontend = frontend
        self.qmp_address = qmp_address
        self.ctrlr_dir = ctrlr_dir
        self.protocol = get_protocol(qmp_address)
        self.timeout = _DEFAULT_TIMEOUT
        self.poll_device_presence_step = _DEFAULT_POLL_STEP
        self.locator = new_device_locator(buses)

    def _open_monitor(self) -> Monitor:
        try:
            return open_monitor(
                self.qmp_address, self.protocol, self.timeout, self.poll_device_presence_step
            )
        except QmpError as exc:
            log.error("Couldn't create QEMU monitor: %s", exc)
            raise _status(ERR_MONITOR_CREATION) from exc

    def _discard_virtio_blk(self, name: str) -> None:
        with contextlib.suppress(Exception):
            self.frontend.delete_virtio_blk(name)

    def _discard_nvme_controller(self, name: str, dir_name: str) -> None:
        with contextlib.suppress(Exception):
            self.frontend.delete_nvme_controller(name)
        with contextlib.suppress(OSError):
            self._delete_controller_dir(dir_name)

    def create_virtio_blk(self, virtio_blk_id: str, virtio_blk: VirtioBlk) -> VirtioBlk:
        """Create a virtio-blk device in the frontend and attach it to QEMU."""
        if virtio_blk.pcie_id is None:
            log.error("Pci endpoint should be specified")
            raise _status(ERR_NO_PCIE_ENDPOINT)
        try:
            location = self.locator.calculate(virtio_blk.pcie_id)
        except ValueError as exc:
            log.error("Failed to calculate device location: %s", exc)
            raise _status(ERR_DEVICE_ENDPOINT) from exc

        out = self.frontend.create_virtio_blk(virtio_blk_id, virtio_blk)

        try:
            monitor = self._open_monitor()
        except StatusError:
            self._discard_virtio_blk(out.name)
            raise

        with monitor:
            sock_path = os.path.join(self.ctrlr_dir, posixpath.basename(out.name))
            chardev_id = to_qemu_id(out.name)
            try:
                monitor.add_chardev(chardev_id, sock_path)
            except QmpError as exc:
                log.error("Couldn't add chardev: %s", exc)
                self._discard_virtio_blk(out.name)
                raise _status(ERR_ADD_CHARDEV_FAILED) from exc

            device_id = to_qemu_id(out.name)
            try:
                monitor.add_virtio_blk_device(device_id, chardev_id, location)
            except QmpError as exc:
                log.error("Couldn't add device: %s", exc)
                with contextlib.suppress(QmpError):
                    monitor.delete_chardev(device_id)
                self._discard_virtio_blk(out.name)
                raise _status(ERR_ADD_DEVICE_FAILED) from exc
        return out

    def delete_virtio_blk(self, name: str) -> None:
        """Detach a virtio-blk device from QEMU and delete it in the frontend."""
        with self._open_monitor() as monitor:
            device_id = to_qemu_id(name)
            device_failed = False
            try:
                monitor.delete_virtio_blk_device(device_id)
            except QmpError as exc:
                log.error("Couldn't delete virtio-blk: %s", exc)
                device_failed = True

            chardev_failed = False
            try:
                monitor.delete_chardev(to_qemu_id(name))
            except QmpError as exc:
                log.error(
                    "Couldn't delete chardev for virtio-blk: %s. Device is partially deleted",
                    exc,
                )
                chardev_failed = True

            spdk_failed = False
            try:
                self.frontend.delete_virtio_blk(name)
            except Exception as exc:
                log.error("Error running underlying cmd on storage frontend: %s", exc)
                spdk_failed = True

        error = _deletion_error(device_failed, chardev_failed, spdk_failed)
        if error is not None:
            raise error

    def create_nvme_controller(
        self, parent: str, controller_id: str, controller: NvmeController | None
    ) -> NvmeController:
        """Create an Nvme controller; PCIe controllers are also attached to QEMU."""
        if controller is None or controller.spec.trtype is not NvmeTransportType.PCIE:
            return self.frontend.create_nvme_controller(parent, controller_id, controller)

        if not parent:
            raise _status(ERR_INVALID_SUBSYSTEM)
        if controller.spec.pcie_id is None:
            log.error("Pci endpoint should be specified")
            raise _status(ERR_NO_PCIE_ENDPOINT)
        try:
            location = self.locator.calculate(controller.spec.pcie_id)
        except ValueError as exc:
            log.error("Failed to calculate device location: %s", exc)
            raise _status(ERR_DEVICE_ENDPOINT) from exc

        # The request may lack a name, so the directory is named after the subsystem.
        dir_name = NvmeSubsystem(name=parent).subsystem_id
        if not dir_name:
            log.error("Failed to get subsystem id from: %s", parent)
            raise _status(ERR_INVALID_SUBSYSTEM)

        try:
            self._create_controller_dir(dir_name)
        except OSError as exc:
            log.error("%s", exc)
            raise _status(ERR_FAILED_TO_CREATE_NVME_DIR) from exc

        try:
            out = self.frontend.create_nvme_controller(parent, controller_id, controller)
        except Exception:
            with contextlib.suppress(OSError):
                self._delete_controller_dir(dir_name)
            raise

        try:
            monitor = self._open_monitor()
        except StatusError:
            self._discard_nvme_controller(out.name, dir_name)
            raise

        with monitor:
            try:
                monitor.add_nvme_controller_device(
                    to_qemu_id(out.name),
                    controller_dir_path(self.ctrlr_dir, dir_name),
                    location,
                )
            except QmpError as exc:
                log.error("Couldn't add Nvme controller: %s", exc)
                self._discard_nvme_controller(out.name, dir_name)
                raise _status(ERR_ADD_DEVICE_FAILED) from exc
        return out

    def delete_nvme_controller(self, name: str) -> None:
        """Delete an Nvme controller; PCIe controllers are also detached from QEMU."""
        controller = self.frontend.nvme_controllers.get(name)
        if controller is None or controller.spec.trtype is not NvmeTransportType.PCIE:
            self.frontend.delete_nvme_controller(name)
            return

        with self._open_monitor() as monitor:
            dir_name = controller.subsystem_id
            if not dir_name:
                log.error("Failed to detect controller directory name for %s", name)
                raise _status(ERR_INVALID_SUBSYSTEM)

            device_failed = False
            try:
                monitor.delete_nvme_controller_device(to_qemu_id(name))
            except QmpError as exc:
                log.error("Couldn't delete Nvme controller: %s", exc)
                device_failed = True

            spdk_failed = False
            try:
                self.frontend.delete_nvme_controller(name)
            except Exception as exc:
                log.error("Error running underlying cmd on storage frontend: %s", exc)
                spdk_failed = True

            dir_failed = False
            try:
                self._delete_controller_dir(dir_name)
            except OSError as exc:
                log.error("Failed to delete Nvme controller directory: %s", exc)
                dir_failed = True

        error = _deletion_error(device_failed, spdk_failed, dir_failed)
        if error is not None:
            raise error

    def _create_controller_dir(self, dir_name: str) -> None:
        if not dir_name:
            raise OSError("dirName cannot be empty")
        path = controller_dir_path(self.ctrlr_dir, dir_name)
        log.info("Creating dir for Nvme controller: %s", path)
        try:
            os.mkdir(path, 0o600)
        except OSError as exc:
            raise OSError(f"cannot create controller directory {path}") from exc

    def _delete_controller_dir(self, dir_name: str) -> None:
        path = controller_dir_path(self.ctrlr_dir, dir_name)
        log.info("Deleting dir for Nvme controller: %s", path)
        if not os.path.lexists(path):
            log.info("%s directory does not exist.", path)
            return
        try:
            if os.path.isdir(path) and not os.path.islink(path):
                os.rmdir(path)
            else:
                os.remove(path)
        except OSError as exc:
            raise OSError(f"cannot delete controller directory {path}") from exc