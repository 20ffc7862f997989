import os

import pytest

from kvmplug.core import (
    ERR_NO_PCIE_ENDPOINT,
    Code,
    StatusError,
    controller_dir_path,
    get_protocol,
    is_tcp_address,
    is_unix_socket_path,
    to_qemu_id,
)


def test_to_qemu_id_uses_last_path_element():
    assert to_qemu_id("volumes/virtio-blk-42") == "opi-virtio-blk-42"


def test_to_qemu_id_plain_name():
    assert to_qemu_id("nvme-43") == "opi-nvme-43"


def test_protocol_unix_for_existing_file(tmp_path):
    sock = tmp_path / "qmp.sock"
    sock.write_text("")
    assert get_protocol(str(sock)) == "unix"
    assert is_unix_socket_path(str(sock))


def test_directory_is_not_unix_socket(tmp_path):
    assert not is_unix_socket_path(str(tmp_path))


def test_protocol_tcp():
    assert get_protocol("localhost:4444") == "tcp"


@pytest.mark.parametrize(
    "address,expected",
    [("localhost:4444", True), ("[::1]:80", True), ("a:b:c", False), ("nocolon", False)],
)
def test_is_tcp_address(address, expected):
    assert is_tcp_address(address) is expected


def test_unknown_protocol_raises(tmp_path):
    with pytest.raises(ValueError):
        get_protocol(str(tmp_path / "missing"))


def test_controller_dir_path(tmp_path):
    assert controller_dir_path(str(tmp_path), "subsys0") == os.path.join(str(tmp_path), "subsys0")


def test_status_error_fields_and_equality():
    err = StatusError(Code.INVALID_ARGUMENT, "no pcie endpoint provided")
    assert err == ERR_NO_PCIE_ENDPOINT
    assert err.code is Code.INVALID_ARGUMENT
    assert str(err) == "no pcie endpoint provided"