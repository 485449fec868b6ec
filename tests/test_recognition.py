"""Tests for the kernel recognition poller."""

from pathlib import Path

import pytest

from pre_arch import prompts
from pre_arch.errors import RecognitionTimeout
from pre_arch.recognition import RecognitionState, await_partitions

NVME_PARTS = {"/dev/nvme0n1p1", "/dev/nvme0n1p2", "/dev/nvme0n1p3"}


class AppearsAfter:
    """Block-device probe that reports the nodes once ``count`` commands ran."""

    def __init__(self, runner, count: int) -> None:
        self.runner = runner
        self.count = count

    def __call__(self, path: str) -> bool:
        return len(self.runner.commands) >= self.count and path in NVME_PARTS


def test_stops_after_udev_trigger(make_ctx, runner) -> None:
    # partprobe, then udevadm trigger + settle
    ctx = make_ctx(runner=runner, block_devices=AppearsAfter(runner, 3))

    result = await_partitions(ctx)

    assert result.state is RecognitionState.CONFIRMED
    assert result.attempt.tier_name == "udev trigger"
    assert runner.commands == [
        ("partprobe", "/dev/nvme0n1"),
        ("udevadm", "trigger", "--subsystem-match=block"),
        ("udevadm", "settle"),
    ]
    assert ctx.partitions.confirmed
    assert ctx.host.writes == []
    assert ctx.host.sleeps == [2.0, 2.0]


def test_confirms_after_partprobe(make_ctx, runner) -> None:
    ctx = make_ctx(runner=runner, block_devices=NVME_PARTS)
    result = await_partitions(ctx)
    assert result.confirmed
    assert runner.commands == [("partprobe", "/dev/nvme0n1")]


def test_missing_nodes_exhaust_each_tier_once(make_ctx, runner) -> None:
    delete = Path("/sys/block/nvme0n1/device/delete")
    ctx = make_ctx(
        runner=runner,
        existing_paths=[delete],
        answers={prompts.BUS_RESCAN: True, prompts.CONTINUE_DEGRADED: True},
    )

    result = await_partitions(ctx)

    assert result.state is RecognitionState.DEGRADED
    assert result.missing == sorted(NVME_PARTS)
    assert [name for name, _ in result.attempt.history] == [
        "partprobe",
        "udev trigger",
        "sysfs rescan",
        "hdparm re-read",
        "blockdev re-read",
        "bus rescan",
    ]
    assert result.attempt.attempts == 6
    assert len(runner.calls("partprobe")) == 1
    assert len(runner.calls("udevadm", "trigger")) == 1
    assert len(runner.calls("hdparm")) == 1
    assert len(runner.calls("blockdev")) == 1
    assert ctx.host.writes == [
        (Path("/sys/block/nvme0n1/device/rescan"), "1"),
        (delete, "1"),
        (Path("/sys/bus/pci/rescan"), "1"),
    ]
    assert ctx.operator.asked == [prompts.BUS_RESCAN, prompts.CONTINUE_DEGRADED]
    assert not ctx.partitions.confirmed


def test_degraded_declined_raises(make_ctx) -> None:
    ctx = make_ctx(device="/dev/sda", tools=())
    with pytest.raises(RecognitionTimeout):
        await_partitions(ctx)
    # sda has no bus remove control; only the continue question is asked
    assert ctx.operator.asked == [prompts.CONTINUE_DEGRADED]


def test_degraded_without_prompt(make_ctx) -> None:
    ctx = make_ctx(device="/dev/sda")
    result = await_partitions(ctx, prompt_on_degraded=False)
    assert result.state is RecognitionState.DEGRADED
    assert ctx.operator.asked == []


def test_hdparm_skipped_when_missing(make_ctx, runner) -> None:
    ctx = make_ctx(device="/dev/sda", runner=runner, tools=())
    result = await_partitions(ctx, prompt_on_degraded=False)
    assert runner.calls("hdparm") == []
    assert result.attempt.outcomes()["hdparm re-read"] == "not-applicable"


def test_blockdev_failure_falls_back_to_fdisk(make_ctx, runner) -> None:
    runner.responses[("blockdev", "--rereadpt")] = 1
    ctx = make_ctx(device="/dev/sda", runner=runner)
    await_partitions(ctx, prompt_on_degraded=False)
    assert runner.calls("fdisk") == [("fdisk", "/dev/sda")]
    assert runner.inputs[("fdisk", "/dev/sda")] == "w\n"


def test_dry_run_reports_confirmed(make_ctx, runner) -> None:
    ctx = make_ctx(runner=runner, execute=False)
    result = await_partitions(ctx)
    assert result.confirmed
    assert runner.commands == []
    assert ctx.scheduled == ["partprobe /dev/nvme0n1"]
    assert ctx.host.sleeps == []
