"""Filesystem creation and target mounting."""

from __future__ import annotations

from pathlib import Path
from typing import List

from .commands import check_command, run_command
from .context import ProvisionContext
from .devices import PartitionSet
from .errors import DeviceNodeMissing
from .logging_utils import log_event, report
from .lvm import VolumeStack
from .planner import BootMode

__all__ = ["format_volumes", "mount_volumes", "unmount_target"]

STAGE = "filesystems"


def _require_node(ctx: ProvisionContext, path: str, role: str) -> None:
    if ctx.execute and not ctx.host.is_block_device(path):
        raise DeviceNodeMissing(
            f"{role} {path} does not exist or was not recognized by the kernel"
        )


def format_volumes(
    ctx: ProvisionContext,
    partitions: PartitionSet,
    stack: VolumeStack,
    boot_mode: BootMode,
) -> List[str]:
    """Create filesystems on the ESP, swap partition and logical volumes.

    The BIOS boot partition holds no filesystem and is left untouched.
    """

    start = len(ctx.scheduled)
    report("Formatting partitions...")
    if boot_mode is BootMode.UEFI:
        _require_node(ctx, partitions.boot, "EFI partition")
        check_command(
            ctx,
            ["mkfs.fat", "-F32", partitions.boot],
            stage=STAGE,
            message="Failed to format EFI partition",
        )
    _require_node(ctx, partitions.swap, "Swap partition")
    check_command(
        ctx,
        ["mkswap", partitions.swap],
        stage=STAGE,
        message="Failed to create swap",
    )

    report("Formatting logical volumes...")
    for path, role in ((stack.root_path, "root"), (stack.home_path, "home")):
        _require_node(ctx, path, f"{role.capitalize()} volume")
        check_command(
            ctx,
            ["mkfs.ext4", "-F", path],
            stage=STAGE,
            message=f"Failed to format {role} volume",
        )
    return ctx.scheduled[start:]


def mount_volumes(
    ctx: ProvisionContext,
    partitions: PartitionSet,
    stack: VolumeStack,
    boot_mode: BootMode,
) -> List[str]:
    """Mount root, home and the ESP below ``ctx.mount_root`` and enable swap."""

    start = len(ctx.scheduled)
    root = Path(ctx.mount_root)
    home = root / "home"
    report(f"Mounting the partitions under {root}...")
    check_command(
        ctx,
        ["mount", stack.root_path, str(root)],
        stage=STAGE,
        message="Failed to mount root volume",
    )
    check_command(
        ctx,
        ["mkdir", "-p", str(home)],
        stage=STAGE,
        message="Failed to create home directory",
    )
    check_command(
        ctx,
        ["mount", stack.home_path, str(home)],
        stage=STAGE,
        message="Failed to mount home volume",
    )
    if boot_mode is BootMode.UEFI:
        efi = root / "boot" / "efi"
        check_command(
            ctx,
            ["mkdir", "-p", str(efi)],
            stage=STAGE,
            message="Failed to create EFI directory",
        )
        check_command(
            ctx,
            ["mount", partitions.boot, str(efi)],
            stage=STAGE,
            message="Failed to mount EFI partition",
        )
    check_command(
        ctx,
        ["swapon", partitions.swap],
        stage=STAGE,
        message="Failed to enable swap",
    )
    log_event("pre_arch.filesystems.mounted", root=root, execute=ctx.execute)
    return ctx.scheduled[start:]


def unmount_target(ctx: ProvisionContext) -> None:
    run_command(ctx, ["umount", "-R", str(ctx.mount_root)], stage=STAGE)
