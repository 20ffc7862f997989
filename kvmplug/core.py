"""Shared status codes, errors and helpers for plugging devices into QEMU."""

from __future__ import annotations

import enum
import os
import posixpath

TCP_PROTOCOL = "tcp"
UNIX_SOCKET_PROTOCOL = "unix"


class Code(enum.IntEnum):
    """RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class StatusError(Exception):
    """An error carrying an RPC status code and message."""

    def __init__(self, code: Code, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StatusError):
            return NotImplemented
        return (self.code, self.message) == (other.code, other.message)

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def __repr__(self) -> str:
        return f"StatusError({self.code.name}, {self.message!r})"


ERR_ADD_CHARDEV_FAILED = StatusError(Code.FAILED_PRECONDITION, "couldn't add chardev")
ERR_MONITOR_CREATION = StatusError(Code.INTERNAL, "failed to create QEMU monitor")
ERR_ADD_DEVICE_FAILED = StatusError(Code.FAILED_PRECONDITION, "couldn't add device")
ERR_DEVICE_NOT_DELETED = StatusError(Code.FAILED_PRECONDITION, "device is not deleted")
ERR_NO_CONTROLLER = StatusError(Code.NOT_FOUND, "no controller found")
ERR_INVALID_SUBSYSTEM = StatusError(Code.INVALID_ARGUMENT, "invalid subsystem")
ERR_DEVICE_PARTIALLY_DELETED = StatusError(Code.INTERNAL, "device is partially deleted")
ERR_FAILED_TO_CREATE_NVME_DIR = StatusError(
    Code.FAILED_PRECONDITION, "cannot create directory for Nvme controller"
)
ERR_DEVICE_ENDPOINT = StatusError(
    Code.INVALID_ARGUMENT,
    "values in endpoint cannot be used to calculate device location",
)
ERR_NO_PCIE_ENDPOINT = StatusError(Code.INVALID_ARGUMENT, "no pcie endpoint provided")


def is_unix_socket_path(qmp_address: str) -> bool:
    """True when the address names an existing filesystem entry that is not a directory."""
    return os.path.exists(qmp_address) and not os.path.isdir(qmp_address)


def is_tcp_address(qmp_address: str) -> bool:
    """True when the address splits into host and port."""
    index = qmp_address.rfind(":")
    if index < 0:
        return False
    host, port = qmp_address[:index], qmp_address[index + 1 :]
    if "[" in port or "]" in port:
        return False
    if host.startswith("["):
        if not host.endswith("]"):
            return False
        inner = host[1:-1]
        return "[" not in inner and "]" not in inner
    return not any(ch in host for ch in ":[]")


def get_protocol(qmp_address: str) -> str:
    """Choose the socket protocol for a QMP address."""
    if is_unix_socket_path(qmp_address):
        return UNIX_SOCKET_PROTOCOL
    if is_tcp_address(qmp_address):
        return TCP_PROTOCOL
    raise ValueError(f"unknown protocol for {qmp_address}")


def to_qemu_id(name: str) -> str:
    """QEMU ids cannot start with a digit, so the resource id gets a prefix."""
    return "opi-" + posixpath.basename(name.rstrip("/") or name)


def controller_dir_path(ctrlr_dir: str, ctrlr_id: str) -> str:
    """Directory of one controller below the controllers directory."""
    return os.path.join(ctrlr_dir, ctrlr_id)