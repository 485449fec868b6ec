"""Tests for the LVM volume stack builder."""

import json
import subprocess

import pytest

from pre_arch import lvm, prompts
from pre_arch.errors import (
    LogicalVolumeCreationFailed,
    PhysicalVolumeCreationFailed,
    VolumeGroupCreationFailed,
)
from pre_arch.planner import BootMode, plan_partitions
from pre_arch.devices import PartitionSet

GIB = 1024 ** 3
EXTENT = 4 * 1024 ** 2
PART = "/dev/nvme0n1p3"


def _vgs_output(free_extents: int, extent_size: int = EXTENT) -> subprocess.CompletedProcess:
    payload = {
        "report": [
            {"vg": [{"vg_extent_size": str(extent_size), "vg_free_count": str(free_extents)}]}
        ]
    }
    return subprocess.CompletedProcess(["vgs"], 0, stdout=json.dumps(payload), stderr="")


def test_allocation_root_is_exactly_120_gib() -> None:
    allocation = lvm.allocate_volumes(60000, EXTENT)
    assert allocation.root_bytes == 120 * GIB
    assert allocation.root_extents + allocation.home_extents == 60000


@pytest.mark.parametrize("extent_size", [1024 ** 2, 4 * 1024 ** 2, 32 * 1024 ** 2])
@pytest.mark.parametrize("total_gib", [120, 200, 900])
def test_allocation_covers_whole_group(extent_size: int, total_gib: int) -> None:
    total = total_gib * GIB // extent_size
    allocation = lvm.allocate_volumes(total, extent_size)
    assert allocation.root_extents + allocation.home_extents == total
    assert allocation.root_bytes >= 120 * GIB
    assert allocation.root_bytes - 120 * GIB < extent_size


def test_allocation_rejects_small_group() -> None:
    with pytest.raises(ValueError):
        lvm.allocate_volumes(100, EXTENT)


def test_pv_retry_then_single_vgcreate(make_ctx, runner) -> None:
    runner.responses[("pvcreate",)] = [1, 0]
    runner.responses[("vgs",)] = _vgs_output(60000)
    ctx = make_ctx(runner=runner)
    ctx.partitions = PartitionSet.for_device(ctx.device)

    stack = lvm.build_volume_stack(ctx)

    assert stack.physical_volume == PART
    assert runner.calls("pvcreate") == [("pvcreate", "-ff", "-y", PART)] * 2
    assert ("wipefs", "-a", PART) in runner.commands
    assert runner.calls("dd") == [
        ("dd", "if=/dev/zero", f"of={PART}", "bs=1M", "count=10")
    ]
    assert runner.calls("vgcreate") == [("vgcreate", "vg_system", PART)]
    assert runner.calls("lvcreate") == [
        ("lvcreate", "-y", "-L", "120G", "-n", "lv_root", "vg_system"),
        ("lvcreate", "-y", "-l", "100%FREE", "-n", "lv_home", "vg_system"),
    ]
    assert ctx.operator.asked == []


def test_pv_ladder_exhausted_and_declined(make_ctx, runner) -> None:
    runner.responses[("pvcreate",)] = 1
    ctx = make_ctx(runner=runner)

    with pytest.raises(PhysicalVolumeCreationFailed) as excinfo:
        lvm.create_physical_volume(ctx, PART)

    # no plan was recorded, so the emergency recreation does not apply
    assert ctx.operator.asked == [prompts.PV_MANUAL, prompts.CONTINUE_AFTER_PV_FAILURE]
    assert dict(excinfo.value.history) == {
        "pvcreate": "failed",
        "wipe and retry": "failed",
        "emergency partition recreation": "not-applicable",
        "manual wipe": "declined",
    }
    assert len(runner.calls("pvcreate")) == 2


def test_pv_emergency_recreation(make_ctx, runner) -> None:
    runner.responses[("pvcreate",)] = [1, 1, 0]
    ctx = make_ctx(
        runner=runner,
        answers={prompts.PV_EMERGENCY: True},
        block_devices={"/dev/nvme0n1p1", "/dev/nvme0n1p2", PART},
    )
    ctx.plan = plan_partitions(256 * GIB, 8192, BootMode.UEFI)

    attempt = lvm.create_physical_volume(ctx, PART)

    assert attempt.succeeded
    assert attempt.tier_name == "emergency partition recreation"
    assert runner.calls("vgchange") == [("vgchange", "-an", "vg_system")]
    assert ("parted", "-s", "/dev/nvme0n1", "rm", "3") in runner.commands
    assert (
        "parted",
        "-s",
        "/dev/nvme0n1",
        "mkpart",
        "lvm",
        "ext4",
        f"{513 + 12288}MiB",
        "100%",
    ) in runner.commands
    assert ctx.partitions.confirmed


def test_pv_failure_continue_override(make_ctx, runner) -> None:
    runner.responses[("pvcreate",)] = 1
    ctx = make_ctx(runner=runner, answers={prompts.CONTINUE_AFTER_PV_FAILURE: True})
    attempt = lvm.create_physical_volume(ctx, PART)
    assert attempt.exhausted


def test_vg_cleanup_tier(make_ctx, runner) -> None:
    runner.responses[("vgcreate",)] = [1, 0]
    ctx = make_ctx(runner=runner, answers={prompts.VG_CLEANUP: True})

    attempt = lvm.create_volume_group(ctx, PART)

    assert attempt.succeeded
    cleanup = runner.commands[1:]
    assert cleanup == [
        ("vgremove", "-f", "vg_system"),
        ("pvremove", "-ff", "-y", PART),
        ("wipefs", "-a", PART),
        ("pvcreate", "-ff", "-y", PART),
        ("vgcreate", "vg_system", PART),
    ]


def test_vg_failure_declined(make_ctx, runner) -> None:
    runner.responses[("vgcreate",)] = 1
    ctx = make_ctx(runner=runner)
    with pytest.raises(VolumeGroupCreationFailed):
        lvm.create_volume_group(ctx, PART)
    assert ctx.operator.asked == [prompts.VG_CLEANUP, prompts.CONTINUE_AFTER_VG_FAILURE]


def test_small_group_refused_before_lvcreate(make_ctx, runner) -> None:
    runner.responses[("vgs",)] = _vgs_output(1000)
    ctx = make_ctx(runner=runner)
    with pytest.raises(LogicalVolumeCreationFailed, match="too small"):
        lvm.create_logical_volumes(ctx)
    assert runner.calls("lvcreate") == []


def test_lvcreate_failure_is_fatal(make_ctx, runner) -> None:
    runner.responses[("lvcreate", "-y", "-l")] = 5
    ctx = make_ctx(runner=runner)
    with pytest.raises(LogicalVolumeCreationFailed) as excinfo:
        lvm.create_logical_volumes(ctx)
    assert excinfo.value.returncode == 5
    assert "home" in str(excinfo.value)


def test_dry_run_skips_capacity_query(make_ctx, runner) -> None:
    ctx = make_ctx(runner=runner, execute=False)
    ctx.partitions = PartitionSet.for_device(ctx.device)
    stack = lvm.build_volume_stack(ctx)
    assert runner.commands == []
    assert stack.root_path == "/dev/vg_system/lv_root"
    assert ctx.scheduled == [
        f"pvcreate -ff -y {PART}",
        f"vgcreate vg_system {PART}",
        "lvcreate -y -L 120G -n lv_root vg_system",
        "lvcreate -y -l 100%FREE -n lv_home vg_system",
    ]
