"""Partition layout planning."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import InsufficientDiskSpace

MI_BYTE = 1024 ** 2
GI_BYTE = 1024 ** 3

# Devices below this size are rejected before any destructive action.
MIN_DISK_BYTES = 30 * GI_BYTE

MIN_SWAP_MIB = 4096

# Partition 1 always starts at 1 MiB for alignment.  The ESP is 512 MiB, the
# BIOS boot partition only needs room for GRUB's core image.
BOOT_START_MIB = 1
UEFI_BOOT_END_MIB = 513
BIOS_BOOT_END_MIB = 3


class BootMode(str, Enum):
    """Firmware boot mode the layout is planned for."""

    UEFI = "uefi"
    BIOS = "bios"


@dataclass(frozen=True)
class PartitionBounds:
    """Boundaries of one partition in MiB.

    ``end_mib`` of ``None`` means the partition extends to the end of the disk.
    ``fs_type`` is the filesystem hint passed to ``parted mkpart``.
    """

    label: str
    fs_type: str
    start_mib: int
    end_mib: Optional[int] = None
    flag: Optional[str] = None

    @property
    def parted_start(self) -> str:
        return f"{self.start_mib}MiB"

    @property
    def parted_end(self) -> str:
        return "100%" if self.end_mib is None else f"{self.end_mib}MiB"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "fs_type": self.fs_type,
            "start": self.parted_start,
            "end": self.parted_end,
            "flag": self.flag,
        }


@dataclass(frozen=True)
class ProvisioningPlan:
    """Immutable layout computed from device size, RAM and boot mode."""

    boot_mode: BootMode
    device_size_bytes: int
    ram_mib: int
    swap_mib: int
    boot: PartitionBounds
    swap: PartitionBounds
    data: PartitionBounds

    @property
    def partitions(self) -> tuple[PartitionBounds, PartitionBounds, PartitionBounds]:
        return (self.boot, self.swap, self.data)

    @property
    def data_size_mib(self) -> int:
        return self.device_size_bytes // MI_BYTE - self.data.start_mib

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boot_mode": self.boot_mode.value,
            "device_size_bytes": self.device_size_bytes,
            "ram_mib": self.ram_mib,
            "swap_mib": self.swap_mib,
            "partitions": [bounds.to_dict() for bounds in self.partitions],
        }


def swap_size_mib(ram_mib: int) -> int:
    """Return the swap size for ``ram_mib`` of memory: 1.5x RAM, at least 4 GiB.

    Half a MiB always rounds up.
    """

    return max((ram_mib * 3 + 1) // 2, MIN_SWAP_MIB)


def _boot_end_mib(boot_mode: BootMode) -> int:
    return UEFI_BOOT_END_MIB if boot_mode is BootMode.UEFI else BIOS_BOOT_END_MIB


def validate_capacity(size_bytes: int, ram_mib: int, boot_mode: BootMode) -> None:
    """Raise :class:`InsufficientDiskSpace` when the layout cannot fit.

    The device must be at least 30 GiB and leave a non-empty data region after
    the boot and swap partitions.
    """

    if size_bytes < MIN_DISK_BYTES:
        raise InsufficientDiskSpace(
            "Disk is too small. Minimum "
            f"{MIN_DISK_BYTES // GI_BYTE}GB required, found {size_bytes // GI_BYTE}GB"
        )
    data_start = _boot_end_mib(boot_mode) + swap_size_mib(ram_mib)
    if size_bytes // MI_BYTE - data_start <= 0:
        raise InsufficientDiskSpace(
            f"No room left for the data partition: swap and boot need {data_start}MiB "
            f"but the disk only has {size_bytes // MI_BYTE}MiB"
        )


def plan_partitions(size_bytes: int, ram_mib: int, boot_mode: BootMode) -> ProvisioningPlan:
    """Return the boot/swap/data layout for a device of ``size_bytes``."""

    swap_mib = swap_size_mib(ram_mib)
    boot_end = _boot_end_mib(boot_mode)
    if boot_mode is BootMode.UEFI:
        boot = PartitionBounds("EFI", "fat32", BOOT_START_MIB, boot_end, flag="esp")
    else:
        boot = PartitionBounds("bios", "ext4", BOOT_START_MIB, boot_end, flag="bios_grub")
    swap = PartitionBounds("swap", "linux-swap", boot_end, boot_end + swap_mib)
    data = PartitionBounds("lvm", "ext4", boot_end + swap_mib)
    return ProvisioningPlan(
        boot_mode=boot_mode,
        device_size_bytes=size_bytes,
        ram_mib=ram_mib,
        swap_mib=swap_mib,
        boot=boot,
        swap=swap,
        data=data,
    )


def plan_for_device(size_bytes: int, ram_mib: int, boot_mode: BootMode) -> ProvisioningPlan:
    """Validate capacity, then plan the layout."""

    validate_capacity(size_bytes, ram_mib, boot_mode)
    return plan_partitions(size_bytes, ram_mib, boot_mode)
