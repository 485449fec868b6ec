"""Tests for the inventory module."""

from pathlib import Path

from pre_arch import inventory
from pre_arch.inventory import Disk, enumerate_disks


def create_disk(root: Path, name: str, *, removable: str = "0", rotational: str = "0", size: str = "0", model: str = "", serial: str = "") -> None:
    disk = root / name
    (disk / "device").mkdir(parents=True)
    (disk / "queue").mkdir()
    (disk / "removable").write_text(removable)
    (disk / "queue" / "rotational").write_text(rotational)
    (disk / "size").write_text(size)
    (disk / "device" / "model").write_text(model)
    (disk / "device" / "serial").write_text(serial)


def test_enumerate_disks(tmp_path: Path) -> None:
    create_disk(
        tmp_path,
        "sda",
        removable="0",
        rotational="1",
        size="2097152",
        model="TestDisk",
        serial="ABC123",
    )
    create_disk(tmp_path, "sdb", removable="1")
    create_disk(tmp_path, "nvme0n1", size="1000215216")
    (tmp_path / "loop0").mkdir()
    (tmp_path / "dm-0").mkdir()

    disks = enumerate_disks(tmp_path)
    assert [d.name for d in disks] == ["nvme0n1", "sda", "sdb"]
    nvme, sda, sdb = disks
    assert nvme.nvme is True
    assert nvme.path == "/dev/nvme0n1"
    assert sda.model == "TestDisk"
    assert sda.serial == "ABC123"
    assert sda.size == 2097152 * 512
    assert sda.rotational is True
    assert sdb.removable is True


def test_device_size_accepts_paths(tmp_path: Path) -> None:
    create_disk(tmp_path, "sda", size="100")
    assert inventory.device_size_bytes("/dev/sda", tmp_path) == 51200
    assert inventory.device_size_bytes("sda", tmp_path) == 51200
    assert inventory.device_size_bytes("sdz", tmp_path) == 0


def test_detect_ram_mib(tmp_path: Path) -> None:
    meminfo = tmp_path / "meminfo"
    meminfo.write_text("MemTotal:       16314044 kB\nMemFree:         1024 kB\n")
    assert inventory.detect_ram_mib(meminfo) == 15931
    assert inventory.detect_ram_mib(tmp_path / "missing") == 0


def test_firmware_supports_uefi(tmp_path: Path) -> None:
    assert not inventory.firmware_supports_uefi(tmp_path / "efivars")
    (tmp_path / "efivars").mkdir()
    assert inventory.firmware_supports_uefi(tmp_path / "efivars")


def test_regular_file_is_not_block_device(tmp_path: Path) -> None:
    path = tmp_path / "disk.img"
    path.write_text("")
    assert not inventory.is_block_device(str(path))
    assert not inventory.is_block_device(str(tmp_path / "absent"))


def test_format_disk() -> None:
    disk = Disk(name="nvme0n1", model="Samsung", size=512 * 1024 ** 3, nvme=True)
    assert inventory.format_disk(disk) == "/dev/nvme0n1 (512.0GiB, Samsung, nvme)"
    usb = Disk(name="sdb", size=0, removable=True)
    assert inventory.format_disk(usb) == "/dev/sdb (0.0GiB, ssd, removable)"
