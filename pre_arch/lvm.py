"""LVM physical volume, volume group and logical volume creation."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import List, Optional, Type

from . import prompts
from .commands import check_command, run_command
from .context import ProvisionContext
from .devices import PartitionSet
from .errors import (
    LogicalVolumeCreationFailed,
    PhysicalVolumeCreationFailed,
    RecoveryExhausted,
    VolumeGroupCreationFailed,
)
from .ladder import RecoveryAttempt, Tier, climb
from .logging_utils import WARNING, log_event, report
from .partition import recreate_data_partition
from .planner import GI_BYTE
from .recognition import await_partitions

__all__ = [
    "VG_NAME",
    "ROOT_LV",
    "HOME_LV",
    "ROOT_SIZE_GIB",
    "VolumeAllocation",
    "VolumeStack",
    "allocate_volumes",
    "create_physical_volume",
    "create_volume_group",
    "create_logical_volumes",
    "build_volume_stack",
]

STAGE = "lvm"

VG_NAME = "vg_system"
ROOT_LV = "lv_root"
HOME_LV = "lv_home"
ROOT_SIZE_GIB = 120

# Leading region zeroed on the data partition before retrying pvcreate.
PV_WIPE_MIB = 10


@dataclass(frozen=True)
class VolumeAllocation:
    """Extent split of the volume group between root and home."""

    extent_size_bytes: int
    total_extents: int
    root_extents: int
    home_extents: int

    @property
    def root_bytes(self) -> int:
        return self.root_extents * self.extent_size_bytes

    @property
    def home_bytes(self) -> int:
        return self.home_extents * self.extent_size_bytes


@dataclass(frozen=True)
class VolumeStack:
    """Names of the LVM objects layered on the data partition."""

    physical_volume: str
    volume_group: str = VG_NAME
    root_lv: str = ROOT_LV
    home_lv: str = HOME_LV

    @classmethod
    def for_partition(cls, partitions: PartitionSet) -> "VolumeStack":
        return cls(physical_volume=partitions.data)

    @property
    def root_path(self) -> str:
        return f"/dev/{self.volume_group}/{self.root_lv}"

    @property
    def home_path(self) -> str:
        return f"/dev/{self.volume_group}/{self.home_lv}"


def allocate_volumes(total_extents: int, extent_size_bytes: int) -> VolumeAllocation:
    """Split ``total_extents`` into a 120 GiB root and a home taking the rest.

    Raises:
        ValueError: if the group cannot hold the root volume.
    """

    if extent_size_bytes <= 0:
        raise ValueError(f"extent size must be positive, got {extent_size_bytes}")
    root_extents = math.ceil(ROOT_SIZE_GIB * GI_BYTE / extent_size_bytes)
    if total_extents < root_extents:
        raise ValueError(
            f"volume group holds {total_extents} extents, "
            f"{root_extents} are needed for a {ROOT_SIZE_GIB}GiB root volume"
        )
    return VolumeAllocation(
        extent_size_bytes=extent_size_bytes,
        total_extents=total_extents,
        root_extents=root_extents,
        home_extents=total_extents - root_extents,
    )


def _pvcreate(ctx: ProvisionContext, part: str) -> bool:
    result = run_command(ctx, ["pvcreate", "-ff", "-y", part], stage=STAGE)
    return result.returncode == 0


def _wipe_then_pvcreate(ctx: ProvisionContext, part: str) -> bool:
    report("Cleaning partition more thoroughly...")
    run_command(
        ctx,
        ["dd", "if=/dev/zero", f"of={part}", "bs=1M", f"count={PV_WIPE_MIB}"],
        stage=STAGE,
        warn="Failed to zero beginning of partition",
    )
    run_command(ctx, ["wipefs", "-a", part], stage=STAGE, warn="Failed to wipe signatures")
    return _pvcreate(ctx, part)


def _recreate_then_pvcreate(ctx: ProvisionContext, part: str) -> bool:
    if ctx.plan is None:
        return False
    recreate_data_partition(ctx, ctx.plan, volume_groups=[VG_NAME])
    run_command(ctx, ["udevadm", "settle"], stage=STAGE)
    await_partitions(ctx, prompt_on_degraded=False)
    return _pvcreate(ctx, part)


def _manual_then_pvcreate(ctx: ProvisionContext, part: str) -> bool:
    report("Running wipefs to clean partition...")
    run_command(ctx, ["wipefs", "-a", part], stage=STAGE)
    return _pvcreate(ctx, part)


def physical_volume_tiers(ctx: ProvisionContext, part: str) -> List[Tier]:
    return [
        Tier("pvcreate", lambda: _pvcreate(ctx, part)),
        Tier("wipe and retry", lambda: _wipe_then_pvcreate(ctx, part)),
        Tier(
            "emergency partition recreation",
            lambda: _recreate_then_pvcreate(ctx, part),
            confirm_key=prompts.PV_EMERGENCY,
            confirm_question=(
                "Attempt emergency partition recreation? This deletes and "
                "recreates the data partition"
            ),
            applicable=lambda: ctx.plan is not None,
        ),
        Tier(
            "manual wipe",
            lambda: _manual_then_pvcreate(ctx, part),
            confirm_key=prompts.PV_MANUAL,
            confirm_question=f"Run 'wipefs -a {part}' and 'pvcreate -ff {part}' now?",
        ),
    ]


def _handle_exhausted(
    ctx: ProvisionContext,
    attempt: RecoveryAttempt,
    *,
    key: str,
    question: str,
    error: Type[RecoveryExhausted],
    message: str,
) -> None:
    report(f"{message}. Manual intervention required.", level=WARNING, history=attempt.history)
    if ctx.operator.confirm(key, question):
        report("Continuing after operator override", level=WARNING)
        return
    raise error(message, operation=attempt.operation, history=attempt.history)


def create_physical_volume(ctx: ProvisionContext, part: str) -> RecoveryAttempt:
    """Initialise ``part`` as an LVM physical volume, escalating on failure."""

    report(f"Creating physical volume on {part}...")
    attempt = climb(
        "physical volume creation",
        physical_volume_tiers(ctx, part),
        confirm=ctx.operator.confirm,
        sleep=ctx.settle,
    )
    if not attempt.succeeded:
        report(
            f"You may need to reboot and wipe the start of {ctx.device.path} "
            f"('dd if=/dev/zero of={ctx.device.path} bs=1M count=100') before retrying."
        )
        _handle_exhausted(
            ctx,
            attempt,
            key=prompts.CONTINUE_AFTER_PV_FAILURE,
            question="Continue anyway (may fail)?",
            error=PhysicalVolumeCreationFailed,
            message=f"Failed to create physical volume on {part}",
        )
    return attempt


def _vgcreate(ctx: ProvisionContext, part: str) -> bool:
    result = run_command(ctx, ["vgcreate", VG_NAME, part], stage=STAGE)
    return result.returncode == 0


def _cleanup_then_vgcreate(ctx: ProvisionContext, part: str) -> bool:
    report("Removing existing volume group and physical volume...")
    run_command(ctx, ["vgremove", "-f", VG_NAME], stage=STAGE)
    run_command(ctx, ["pvremove", "-ff", "-y", part], stage=STAGE)
    run_command(ctx, ["wipefs", "-a", part], stage=STAGE)
    run_command(ctx, ["pvcreate", "-ff", "-y", part], stage=STAGE)
    return _vgcreate(ctx, part)


def create_volume_group(ctx: ProvisionContext, part: str) -> RecoveryAttempt:
    """Create ``vg_system`` on ``part``, offering a cleanup retry on failure."""

    report(f"Creating volume group {VG_NAME}...")
    attempt = climb(
        "volume group creation",
        [
            Tier("vgcreate", lambda: _vgcreate(ctx, part)),
            Tier(
                "cleanup and retry",
                lambda: _cleanup_then_vgcreate(ctx, part),
                confirm_key=prompts.VG_CLEANUP,
                confirm_question=(
                    f"Remove {VG_NAME}, wipe {part} and recreate the volume group now?"
                ),
            ),
        ],
        confirm=ctx.operator.confirm,
        sleep=ctx.settle,
    )
    if not attempt.succeeded:
        _handle_exhausted(
            ctx,
            attempt,
            key=prompts.CONTINUE_AFTER_VG_FAILURE,
            question="Continue anyway (may fail)?",
            error=VolumeGroupCreationFailed,
            message=f"Failed to create volume group {VG_NAME}",
        )
    return attempt


def _query_group(ctx: ProvisionContext) -> Optional[tuple[int, int]]:
    """Return ``(extent_size_bytes, free_extents)`` of the volume group."""

    result = ctx.host.run(
        [
            "vgs",
            "--units",
            "b",
            "--nosuffix",
            "--reportformat",
            "json",
            "-o",
            "vg_extent_size,vg_free_count",
            VG_NAME,
        ]
    )
    if result.returncode != 0:
        return None
    try:
        data = json.loads(result.stdout or "{}")
        entry = data["report"][0]["vg"][0]
        return int(float(entry["vg_extent_size"])), int(entry["vg_free_count"])
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError):
        return None


def create_logical_volumes(ctx: ProvisionContext) -> Optional[VolumeAllocation]:
    """Create the root and home logical volumes.

    When commands really run, the group's free extents are checked first so a
    group too small for the root volume fails before anything is created.
    """

    allocation: Optional[VolumeAllocation] = None
    if ctx.execute:
        group = _query_group(ctx)
        if group is None:
            report(f"Could not query {VG_NAME} capacity", level=WARNING)
        else:
            extent_size, free_extents = group
            try:
                allocation = allocate_volumes(free_extents, extent_size)
            except ValueError as exc:
                raise LogicalVolumeCreationFailed(
                    f"Volume group {VG_NAME} is too small: {exc}"
                ) from exc

    report("Creating logical volumes...")
    check_command(
        ctx,
        ["lvcreate", "-y", "-L", f"{ROOT_SIZE_GIB}G", "-n", ROOT_LV, VG_NAME],
        stage=STAGE,
        message="Failed to create root logical volume",
        error=LogicalVolumeCreationFailed,
    )
    check_command(
        ctx,
        ["lvcreate", "-y", "-l", "100%FREE", "-n", HOME_LV, VG_NAME],
        stage=STAGE,
        message="Failed to create home logical volume",
        error=LogicalVolumeCreationFailed,
    )
    return allocation


def build_volume_stack(ctx: ProvisionContext) -> VolumeStack:
    """Layer physical volume, volume group and logical volumes on the data partition."""

    partitions = ctx.partitions or PartitionSet.for_device(ctx.device)
    stack = VolumeStack.for_partition(partitions)
    pv = create_physical_volume(ctx, stack.physical_volume)
    vg = create_volume_group(ctx, stack.physical_volume)
    allocation = create_logical_volumes(ctx)
    log_event(
        "pre_arch.lvm.finished",
        device=ctx.device.path,
        physical_volume=stack.physical_volume,
        volume_group=stack.volume_group,
        pv_history=pv.history,
        vg_history=vg.history,
        root_extents=allocation.root_extents if allocation else None,
        home_extents=allocation.home_extents if allocation else None,
    )
    return stack
