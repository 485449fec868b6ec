"""Disk, memory and firmware inventory utilities."""

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List


@dataclass
class Disk:
    """Representation of a block device."""

    name: str
    model: str = ""
    size: int = 0
    rotational: bool = False
    serial: str = ""
    nvme: bool = False
    removable: bool = False

    @property
    def path(self) -> str:
        return f"/dev/{self.name}"


def _read_text(path: Path) -> str:
    try:
        return path.read_text().strip()
    except FileNotFoundError:
        return ""


def enumerate_disks(sys_block: Path = Path("/sys/block")) -> List[Disk]:
    """Enumerate candidate target disks.

    Args:
        sys_block: Path to ``/sys/block`` (overridable for tests).

    Returns:
        A list of :class:`Disk` objects for non-virtual devices, sorted by
        name.  Removable devices are included and flagged since laptops are
        often provisioned from, or onto, USB media.
    """
    disks: List[Disk] = []
    for entry in sorted(sys_block.iterdir()):
        name = entry.name
        if name.startswith(("loop", "ram", "dm", "sr", "md", "zram")):
            continue
        model = _read_text(entry / "device" / "model")
        rotational = _read_text(entry / "queue" / "rotational") == "1"
        serial = _read_text(entry / "device" / "serial")
        disks.append(
            Disk(
                name=name,
                model=model,
                size=device_size_bytes(name, sys_block),
                rotational=rotational,
                serial=serial,
                nvme=name.startswith("nvme"),
                removable=_read_text(entry / "removable") == "1",
            )
        )
    return disks


def device_size_bytes(name: str, sys_block: Path = Path("/sys/block")) -> int:
    """Return the size of ``name`` (``sda`` or ``/dev/sda``) in bytes, or 0."""

    kernel_name = name.rstrip("/").rsplit("/", 1)[-1]
    size_str = _read_text(sys_block / kernel_name / "size")
    try:
        # sysfs always reports 512-byte sectors regardless of the logical block size.
        return int(size_str) * 512
    except ValueError:
        return 0


def detect_ram_mib(meminfo: Path = Path("/proc/meminfo")) -> int:
    """Return total system memory in MiB, or 0 when it cannot be read."""

    for line in _read_text(meminfo).splitlines():
        if not line.startswith("MemTotal:"):
            continue
        fields = line.split()
        try:
            return int(fields[1]) // 1024
        except (IndexError, ValueError):
            return 0
    return 0


def firmware_supports_uefi(efivars: Path = Path("/sys/firmware/efi/efivars")) -> bool:
    """Return ``True`` when the running system was booted through UEFI."""

    return efivars.is_dir()


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def format_disk(disk: Disk) -> str:
    size_gib = disk.size / 1024 ** 3
    details = [f"{size_gib:.1f}GiB"]
    if disk.model:
        details.append(disk.model)
    if disk.nvme:
        details.append("nvme")
    elif disk.rotational:
        details.append("hdd")
    else:
        details.append("ssd")
    if disk.removable:
        details.append("removable")
    return f"{disk.path} ({', '.join(details)})"
