"""A small QMP client and the device operations built on it."""

from __future__ import annotations

import collections
import json
import logging
import os
import socket
import time

from .core import TCP_PROTOCOL, UNIX_SOCKET_PROTOCOL
from .location import DeviceLocation

log = logging.getLogger(__name__)


class QmpError(Exception):
    """A QMP command failed or the monitor could not be reached."""


def _compact(obj) -> str:
    return json.dumps(obj, separators=(",", ":"))


class QmpClient:
    """Line-based QMP connection over a unix or TCP socket."""

    def __init__(self, protocol: str, address: str, timeout: float) -> None:
        if protocol not in (TCP_PROTOCOL, UNIX_SOCKET_PROTOCOL):
            raise QmpError(f"unsupported protocol {protocol}")
        self.protocol = protocol
        self.address = address
        self.timeout = timeout
        self._sock: socket.socket | None = None
        self._buffer = bytearray()
        self._events: collections.deque[dict] = collections.deque()

    def __enter__(self) -> "QmpClient":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()

    def connect(self) -> None:
        """Open the socket, read the greeting and negotiate capabilities."""
        try:
            if self.protocol == UNIX_SOCKET_PROTOCOL:
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                sock.settimeout(self.timeout)
                try:
                    sock.connect(self.address)
                except OSError:
                    sock.close()
                    raise
            else:
                host, _, port = self.address.rpartition(":")
                sock = socket.create_connection((host.strip("[]"), int(port)), self.timeout)
        except (OSError, ValueError) as exc:
            raise QmpError(f"failed to connect to {self.address}: {exc}") from exc
        self._sock = sock
        try:
            _, greeting = self._read_message(time.monotonic() + self.timeout)
            if "QMP" not in greeting:
                raise QmpError("unexpected QMP greeting")
            self.execute("qmp_capabilities")
        except BaseException:
            self.disconnect()
            raise

    def disconnect(self) -> None:
        """Close the connection."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _read_message(self, deadline: float) -> tuple[bytes, dict]:
        if self._sock is None:
            raise QmpError("monitor is not connected")
        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                raw = bytes(self._buffer[:newline]).strip()
                del self._buffer[: newline + 1]
                if not raw:
                    continue
                try:
                    return raw, json.loads(raw)
                except ValueError as exc:
                    raise QmpError(f"malformed QMP message: {raw!r}") from exc
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("timed out waiting for QMP message")
            self._sock.settimeout(remaining)
            try:
                chunk = self._sock.recv(4096)
            except TimeoutError:
                raise
            except OSError as exc:
                raise QmpError(f"QMP read failed: {exc}") from exc
            if not chunk:
                raise QmpError("QMP connection closed")
            self._buffer.extend(chunk)

    def run(self, command) -> bytes:
        """Send a raw command and return the raw reply, queueing any events."""
        if self._sock is None:
            raise QmpError("monitor is not connected")
        data = command.encode() if isinstance(command, str) else bytes(command)
        if not data.endswith(b"\n"):
            data += b"\n"
        try:
            self._sock.sendall(data)
        except OSError as exc:
            raise QmpError(f"QMP write failed: {exc}") from exc
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                raw, message = self._read_message(deadline)
            except TimeoutError as exc:
                raise QmpError("timed out waiting for QMP reply") from exc
            if "event" in message:
                self._events.append(message)
                continue
            return raw

    def execute(self, name: str, arguments: dict | None = None):
        """Run a named command and return its result; QMP errors raise QmpError."""
        command: dict = {"execute": name}
        if arguments is not None:
            command["arguments"] = arguments
        reply = json.loads(self.run(_compact(command)))
        if "error" in reply:
            error = reply["error"]
            raise QmpError(f"{error.get('class', 'Error')}: {error.get('desc', '')}")
        return reply.get("return")

    def next_event(self, timeout: float) -> dict | None:
        """Return the next event, or None when none arrives within the timeout."""
        if self._events:
            return self._events.popleft()
        deadline = time.monotonic() + timeout
        while True:
            try:
                _, message = self._read_message(deadline)
            except TimeoutError:
                return None
            if "event" in message:
                return message


class Monitor:
    """Device operations on a connected QMP client."""

    def __init__(
        self,
        client: QmpClient,
        wait_event_timeout: float,
        poll_device_presence_timeout: float,
        poll_device_presence_step: float,
    ) -> None:
        self.client = client
        self.wait_event_timeout = wait_event_timeout
        self.poll_device_presence_timeout = poll_device_presence_timeout
        self.poll_device_presence_step = poll_device_presence_step

    def __enter__(self) -> "Monitor":
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()

    def disconnect(self) -> None:
        """Close the monitor connection."""
        self.client.disconnect()

    def add_chardev(self, chardev_id: str, sock_path: str) -> None:
        """Add a unix socket chardev in client mode."""
        backend = {
            "type": "socket",
            "data": {
                "addr": {"type": "unix", "data": {"path": sock_path}},
                "server": False,
            },
        }
        self.client.execute("chardev-add", {"id": chardev_id, "backend": backend})

    def delete_chardev(self, chardev_id: str) -> None:
        """Remove a chardev."""
        self.client.execute("chardev-remove", {"id": chardev_id})

    def add_virtio_blk_device(
        self, device_id: str, chardev_id: str, location: DeviceLocation
    ) -> None:
        """Add a vhost-user-blk device and wait until it shows up on the PCI bus."""
        self._add_device(
            {
                "driver": "vhost-user-blk-pci",
                "id": device_id,
                "bus": location.bus,
                "addr": location.addr,
                "chardev": chardev_id,
            }
        )
        self._wait_for_device_presence(device_id, True)

    def add_nvme_controller_device(
        self, device_id: str, ctrlr_dir: str, location: DeviceLocation
    ) -> None:
        """Add a vfio-user device and wait until it shows up on the PCI bus."""
        self._add_device(
            {
                "driver": "vfio-user-pci",
                "id": device_id,
                "bus": location.bus,
                "addr": location.addr,
                "socket": os.path.join(ctrlr_dir, "cntrl"),
            }
        )
        self._wait_for_device_presence(device_id, True)

    def delete_virtio_blk_device(self, device_id: str) -> None:
        """Delete a device and wait for its DEVICE_DELETED event."""
        try:
            self.client.execute("device_del", {"id": device_id})
        except QmpError as exc:
            raise QmpError(f"couldn't delete device: {exc}") from exc
        self._wait_for_event("DEVICE_DELETED", "device", device_id)

    def delete_nvme_controller_device(self, device_id: str) -> None:
        """Delete a device and wait until it leaves the PCI bus."""
        self.client.execute("device_del", {"id": device_id})
        self._wait_for_device_presence(device_id, False)

    def pci_device_exists(self, device_id: str) -> bool:
        """Whether a device with this qdev id is on any PCI bus."""
        buses = self.client.execute("query-pci") or []
        return any(_find_device(bus.get("devices") or [], device_id) for bus in buses)

    def _add_device(self, arguments: dict) -> None:
        arguments = {k: v for k, v in arguments.items() if v is not None}
        command = _compact({"execute": "device_add", "arguments": arguments})
        log.info("QMP command to send: %s", command)
        response = self.client.run(command).decode(errors="replace")
        log.info("QMP response: %s", response)
        if "error" in response:
            raise QmpError(f"qemu cmd run error: {command}")

    def _wait_for_event(self, event: str, key: str, value: str) -> None:
        deadline = time.monotonic() + self.wait_event_timeout
        while True:
            remaining = deadline - time.monotonic()
            message = self.client.next_event(remaining) if remaining > 0 else None
            if message is None:
                log.info("Event timeout: %s, key: %s value: %s", event, key, value)
                raise QmpError(f"qemu event not found: {event}")
            log.info("qemu event: %s", message)
            if message.get("event") == event and (message.get("data") or {}).get(key) == value:
                return

    def _wait_for_device_presence(self, device_id: str, should_exist: bool) -> None:
        deadline = time.monotonic() + self.poll_device_presence_timeout
        while True:
            time.sleep(self.poll_device_presence_step)
            if time.monotonic() >= deadline:
                raise QmpError(
                    f"timeout waiting for PCI device {device_id} presence {should_exist}"
                )
            try:
                if self.pci_device_exists(device_id) == should_exist:
                    return
            except QmpError as exc:
                log.info("failed to check pci device existence: %s", exc)


def _find_device(devices: list, device_id: str) -> bool:
    for device in devices:
        if device.get("qdev_id") == device_id:
            return True
        bridge = device.get("pci_bridge")
        if bridge and _find_device(bridge.get("devices") or [], device_id):
            return True
    return False


def open_monitor(
    qmp_address: str, protocol: str, timeout: float, poll_device_presence_step: float
) -> Monitor:
    """Connect to QEMU and return a monitor; raises QmpError on failure."""
    client = QmpClient(protocol, qmp_address, timeout)
    client.connect()
    return Monitor(client, timeout, timeout, poll_device_presence_step)


def communicate(address: str = "localhost:4444", timeout: float = 2.0) -> list[bytes]:
    """Send a few query commands over TCP and return the raw replies."""
    commands = [
        '{ "execute": "qmp_capabilities" }',
        '{ "execute": "query-commands" }',
        '{ "execute": "query-pci" }',
    ]
    replies = []
    with QmpClient(TCP_PROTOCOL, address, timeout) as client:
        for command in commands:
            log.info("snd %s", command)
            raw = client.run(command)
            log.info("got %s", raw.decode(errors="replace"))
            replies.append(raw)
    return replies