# kvmplug

`kvmplug` plugs storage devices into a running QEMU instance and unplugs
them again. It talks to QEMU through its QMP monitor socket, which can be a
Unix socket path or a `host:port` TCP address. It adds two kinds of device:

- **virtio-blk** devices backed by a vhost-user socket (`vhost-user-blk-pci`),
- **NVMe controllers** backed by a vfio-user socket directory (`vfio-user-pci`).

After a device is added, `kvmplug` polls `query-pci` until the device shows
up in the PCI tree, bridges included. When a virtio-blk device is deleted,
it waits for QEMU's `DEVICE_DELETED` event. When an NVMe controller is
deleted, it waits for the device to leave the PCI tree.

## Installation

```
pip install kvmplug
```

It needs nothing beyond the standard library.

## Modules

- `kvmplug.core` holds the status codes (`Code`), the `StatusError`
  exception and some helpers: `get_protocol`, `is_unix_socket_path`,
  `is_tcp_address`, `to_qemu_id` and `controller_dir_path`.
- `kvmplug.models` holds dataclasses for the resources: `PciEndpoint`,
  `VirtioBlk`, `NvmeTransportType`, `NvmeControllerSpec`, `NvmeController`,
  `NvmeSubsystemSpec` and `NvmeSubsystem`.
- `kvmplug.location` decides where a device goes on the PCI buses.
- `kvmplug.qmp` contains a small QMP client (`QmpClient`) and the device
  operations built on it (`Monitor`).
- `kvmplug.transport` builds NVMe listener parameters for vfio-user.
- `kvmplug.server` contains `Server`, which keeps QEMU in step with a
  storage backend.

## Addresses and ids

`get_protocol(address)` returns `"unix"` when the address names an existing
file system entry that is not a directory. It returns `"tcp"` when the
address splits into host and port. Any other address raises `ValueError`.

`to_qemu_id(name)` takes the last part of a resource name and puts `opi-`
in front of it, because a QEMU id cannot start with a digit. For example,
`to_qemu_id("volumes/virtio-blk-42")` returns `"opi-virtio-blk-42"`.

## Device placement

`kvmplug.location.new_device_locator(buses)` chooses where a device goes:

- With no buses, a `DefaultDeviceLocator` leaves the bus and address to
  QEMU.
- With a list of bus names, a `BusDeviceLocator` puts physical function
  `pf` on bus `pf // 32` at address `pf % 32`. The address is written in
  hex, for example `"0xa"`. `calculate` raises `ValueError` for a missing
  endpoint, a negative function, or a function past the last bus.

Empty or repeated bus names raise `ValueError`.

```python
from kvmplug.location import new_device_locator
from kvmplug.models import PciEndpoint

locator = new_device_locator(["pci.opi.0", "pci.opi.1"])
location = locator.calculate(PciEndpoint(physical_function=42))
# location.bus == "pci.opi.1", location.addr == "0xa"
```

## Talking to QEMU directly

`kvmplug.qmp.open_monitor(qmp_address, protocol, timeout,
poll_device_presence_step)` connects to QMP, reads the greeting and
negotiates capabilities. It returns a `Monitor`, which can be used as a
context manager. A `Monitor` has these methods:

- `add_chardev`
- `delete_chardev`
- `add_virtio_blk_device`
- `add_nvme_controller_device`
- `delete_virtio_blk_device`
- `delete_nvme_controller_device`
- `pci_device_exists`
- `disconnect`

Failures raise `QmpError`.

```python
from kvmplug.core import get_protocol
from kvmplug.location import DeviceLocation
from kvmplug.qmp import open_monitor

address = "/var/run/qemu/qmp.sock"
with open_monitor(address, get_protocol(address), 2.0, 0.005) as monitor:
    monitor.add_chardev("opi-blk0", "/var/tmp/vhost.0")
    monitor.add_virtio_blk_device("opi-blk0", "opi-blk0", DeviceLocation())
```

For lower-level access, `QmpClient` offers these methods:

- `run(command)` sends raw JSON and returns the raw reply bytes.
- `execute(name, arguments)` returns the command's `return` value, and
  raises `QmpError` when QEMU replies with an error.
- `next_event(timeout)` returns the next event, or `None` if none arrives
  before the timeout.

Events that arrive while the client waits for a reply are queued for
`next_event`.

`kvmplug.qmp.communicate(address="localhost:4444", timeout=2.0)` is a short
diagnostic that works over TCP. It connects and sends `qmp_capabilities`,
`query-commands` and `query-pci`. It logs each reply and returns the raw
replies as a list.

## NVMe over vfio-user

`kvmplug.transport.NvmeVfiouserTransport(ctrlr_dir)` requires `ctrlr_dir`
to be an existing directory; otherwise it raises `ValueError`.

Its `params(ctrlr, subsys)` method returns a `ListenerParams` holding:

- the subsystem's NQN,
- the transport type `vfiouser`,
- an address in the subsystem's directory under `ctrlr_dir`.

`params` raises `ValueError` in any of these cases:

- the controller has no PCIe endpoint,
- the port is not 0,
- the virtual function is not 0,
- the subsystem has a host NQN.

Subsystem names have the form `nvmeSubsystems/<id>`. Controller names
start with the same prefix. The `<id>` part is what `subsystem_id`
returns.

## The server

`kvmplug.server.Server(frontend, qmp_address, ctrlr_dir, buses=None)`
wraps a storage backend object that you supply. That object must provide
these methods:

- `create_virtio_blk(virtio_blk_id, virtio_blk)`, returning the created
  `VirtioBlk` with its name set,
- `delete_virtio_blk(name)`,
- `create_nvme_controller(parent, controller_id, controller)`, returning
  the created `NvmeController`,
- `delete_nvme_controller(name)`,

and an `nvme_controllers` mapping from controller name to controller.

`Server` offers the same four methods. Each one calls the backend and
updates QEMU to match:

- `create_virtio_blk` adds a chardev for the vhost-user socket
  `<ctrlr_dir>/<last part of the name>`, then adds the device.
- `create_nvme_controller` handles PCIe controllers only. It creates
  `<ctrlr_dir>/<subsystem id>` and adds a vfio-user device whose socket is
  in that directory. Controllers with any other transport go straight to
  the backend.
- `delete_virtio_blk` removes the device and its chardev from QEMU, then
  deletes it in the backend.
- `delete_nvme_controller` removes the device from QEMU, deletes it in the
  backend, and removes the controller directory. This happens only for a
  known PCIe controller; any other controller goes straight to the backend.

If a step of a create fails, the steps already done are undone and a
`StatusError` is raised. Errors raised by the backend itself pass through
unchanged.

Deletes are best effort:

- If every step fails, they raise `StatusError` with code
  `FAILED_PRECONDITION` and the message "device is not deleted".
- If only some steps fail, they raise one with code `INTERNAL` and the
  message "device is partially deleted".

The QMP timeout is in `server.timeout` (2 seconds by default). The
presence poll interval is in `server.poll_device_presence_step`
(5 milliseconds by default).

## Errors

Failures that a caller should handle are raised as
`kvmplug.core.StatusError`. Each carries a `code`, which is a
`kvmplug.core.Code` member such as `INVALID_ARGUMENT` or `NOT_FOUND`, and a
`message`.

## What this package does not do

- It has no storage backend of its own. The object that `Server` wraps must
  come from you.
- It does not expose `Server` over the network as an RPC service.
- It has no command-line program.
- It does not start or configure QEMU. It only talks to a QEMU instance
  that is already running.

## Running the tests

```
pip install -e .[test]
pytest
```