"""Hot-plug virtio-blk and NVMe controller devices into QEMU over QMP."""

__version__ = "0.1.0"

__all__ = ["core", "models", "location", "qmp", "transport", "server"]