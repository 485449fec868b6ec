"""Target device and partition identifiers."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import InvalidDevice

__all__ = [
    "BOOT_INDEX",
    "SWAP_INDEX",
    "DATA_INDEX",
    "Device",
    "PartitionSet",
]

BOOT_INDEX = 1
SWAP_INDEX = 2
DATA_INDEX = 3

_DEVICE_PATH_PATTERN = re.compile(r"/dev/[A-Za-z0-9_/-]+")


@dataclass(frozen=True)
class Device:
    """A whole block device targeted by one provisioning run.

    ``partition_infix`` is derived from the kernel name when the device is
    created: names ending in a digit (``nvme0n1``, ``mmcblk0``) separate the
    partition number with ``p`` while others (``sda``) append it directly.
    """

    path: str
    size_bytes: int = 0
    partition_infix: str = field(init=False)

    def __post_init__(self) -> None:
        if not _DEVICE_PATH_PATTERN.fullmatch(self.path):
            raise InvalidDevice(f"Unsafe device path: {self.path!r}")
        infix = "p" if self.name[-1:].isdigit() else ""
        object.__setattr__(self, "partition_infix", infix)

    @property
    def name(self) -> str:
        """Return the kernel name of the device (``nvme0n1`` for ``/dev/nvme0n1``)."""

        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def is_nvme(self) -> bool:
        return self.name.startswith("nvme")

    def partition_path(self, index: int) -> str:
        """Return the device node path of partition number ``index``."""

        if index < 1:
            raise ValueError(f"partition index must be positive, got {index}")
        return f"{self.path}{self.partition_infix}{index}"

    def sysfs_dir(self, sys_block: Path = Path("/sys/block")) -> Path:
        return sys_block / self.name

    def with_size(self, size_bytes: int) -> "Device":
        return dataclasses.replace(self, size_bytes=size_bytes)


@dataclass(frozen=True)
class PartitionSet:
    """Paths of the boot, swap and data partitions of a device.

    The set is computed before the partition table is written so the writer and
    the recognition poller agree on the target paths.  ``confirmed`` only
    becomes ``True`` once every node has been observed as a block device.
    """

    boot: str
    swap: str
    data: str
    confirmed: bool = False

    @classmethod
    def for_device(cls, device: Device) -> "PartitionSet":
        return cls(
            boot=device.partition_path(BOOT_INDEX),
            swap=device.partition_path(SWAP_INDEX),
            data=device.partition_path(DATA_INDEX),
        )

    @property
    def paths(self) -> tuple[str, str, str]:
        return (self.boot, self.swap, self.data)

    def confirm(self) -> "PartitionSet":
        return dataclasses.replace(self, confirmed=True)
