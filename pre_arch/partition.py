"""Disk partitioning utilities."""

from __future__ import annotations

from typing import Sequence

from .commands import check_command, run_command
from .context import ProvisionContext
from .devices import DATA_INDEX, PartitionSet
from .logging_utils import log_event, report
from .planner import ProvisioningPlan

__all__ = ["write_partition_table", "recreate_data_partition"]

STAGE = "partition"


def write_partition_table(ctx: ProvisionContext, plan: ProvisioningPlan) -> PartitionSet:
    """Write a GPT with boot, swap and data partitions according to ``plan``.

    The layout is:
    * Partition 1: EFI system partition (``esp`` flag) or BIOS boot partition
      (``bios_grub`` flag).
    * Partition 2: swap.
    * Partition 3: LVM data partition using the remaining space.

    Every ``parted`` call is checked and a failure aborts the run with
    :class:`~pre_arch.errors.ToolInvocationError`.

    Returns:
        The speculative :class:`PartitionSet`; it is confirmed only once the
        kernel has created every node.
    """

    device = ctx.device.path
    partitions = PartitionSet.for_device(ctx.device)
    report(f"Partitioning {device} for {plan.boot_mode.value.upper()} boot...")

    for path in partitions.paths:
        run_command(ctx, ["umount", "-f", path], stage=STAGE)

    check_command(
        ctx,
        ["parted", "-s", device, "mklabel", "gpt"],
        stage=STAGE,
        message="Failed to create partition table",
    )
    for index, bounds in enumerate(plan.partitions, start=1):
        check_command(
            ctx,
            [
                "parted",
                "-s",
                device,
                "mkpart",
                bounds.label,
                bounds.fs_type,
                bounds.parted_start,
                bounds.parted_end,
            ],
            stage=STAGE,
            message=f"Failed to create {bounds.label} partition",
        )
        if bounds.flag:
            check_command(
                ctx,
                ["parted", "-s", device, "set", str(index), bounds.flag, "on"],
                stage=STAGE,
                message=f"Failed to set {bounds.flag} flag",
            )

    ctx.plan = plan
    ctx.partitions = partitions
    log_event(
        "pre_arch.partition.written",
        device=device,
        plan=plan.to_dict(),
        partitions=list(partitions.paths),
        execute=ctx.execute,
    )
    return partitions


def recreate_data_partition(
    ctx: ProvisionContext,
    plan: ProvisioningPlan,
    *,
    volume_groups: Sequence[str] = (),
) -> bool:
    """Delete and recreate the data partition at the same boundaries.

    Used as an emergency measure when stale metadata keeps ``pvcreate`` from
    succeeding.  Only the named ``volume_groups`` are deactivated first.  Every
    step is tolerant; the return value reports whether the partition was
    recreated.
    """

    device = ctx.device.path
    data = plan.data
    report(f"Deleting partition {DATA_INDEX} of {device}...")
    for path in PartitionSet.for_device(ctx.device).paths:
        run_command(ctx, ["umount", "-f", path], stage=STAGE)
    for vg_name in volume_groups:
        run_command(ctx, ["vgchange", "-an", vg_name], stage=STAGE)
    run_command(
        ctx,
        ["parted", "-s", device, "rm", str(DATA_INDEX)],
        stage=STAGE,
        warn=f"Failed to delete partition {DATA_INDEX}",
    )
    run_command(ctx, ["partprobe", device], stage=STAGE)
    ctx.settle()

    report("Recreating LVM partition...")
    result = run_command(
        ctx,
        [
            "parted",
            "-s",
            device,
            "mkpart",
            data.label,
            data.fs_type,
            data.parted_start,
            data.parted_end,
        ],
        stage=STAGE,
        warn="Failed to recreate LVM partition",
    )
    run_command(ctx, ["sync"], stage=STAGE)
    log_event(
        "pre_arch.partition.data_recreated",
        device=device,
        start=data.parted_start,
        end=data.parted_end,
        succeeded=result.returncode == 0,
    )
    return result.returncode == 0
