[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kvmplug"
version = "0.1.0"
description = "Hot-plug virtio-blk and NVMe controller devices into a running QEMU instance over QMP"
requires-python = ">=3.10"
keywords = ["qemu", "kvm", "qmp", "virtio-blk", "nvme", "vfio-user", "hotplug"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kvmplug"]

[tool.pytest.ini_options]
addopts = "-ra"
