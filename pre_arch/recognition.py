"""Wait for the kernel to expose freshly written partitions.

After a partition table is rewritten the kernel does not always create the
new device nodes straight away, especially while udev is still processing
events from the previous layout.  The poller escalates through increasingly
disruptive re-read strategies, checking the partition nodes after each one.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import prompts
from .commands import run_command, write_control
from .context import ProvisionContext
from .devices import PartitionSet
from .errors import RecognitionTimeout
from .ladder import RecoveryAttempt, Tier, climb
from .logging_utils import WARNING, log_event, report

__all__ = [
    "RecognitionState",
    "RecognitionResult",
    "recognition_tiers",
    "missing_nodes",
    "await_partitions",
]

STAGE = "recognition"
OPERATION = "partition recognition"

BUS_REMOVE_SETTLE_SECONDS = 2.0
BUS_RESCAN_SETTLE_SECONDS = 5.0
PCI_RESCAN = Path("/sys/bus/pci/rescan")


class RecognitionState(str, enum.Enum):
    UNCONFIRMED = "unconfirmed"
    PROBING = "probing"
    CONFIRMED = "confirmed"
    DEGRADED = "degraded"


@dataclass
class RecognitionResult:
    state: RecognitionState
    partitions: PartitionSet
    missing: List[str] = field(default_factory=list)
    attempt: Optional[RecoveryAttempt] = None

    @property
    def confirmed(self) -> bool:
        return self.state is RecognitionState.CONFIRMED


def missing_nodes(ctx: ProvisionContext, partitions: PartitionSet) -> List[str]:
    return [path for path in partitions.paths if not ctx.host.is_block_device(path)]


def _succeeded(result) -> bool:
    return result.returncode == 0


def _partprobe(ctx: ProvisionContext) -> bool:
    return _succeeded(run_command(ctx, ["partprobe", ctx.device.path], stage=STAGE))


def _udev_trigger(ctx: ProvisionContext) -> bool:
    trigger = run_command(
        ctx, ["udevadm", "trigger", "--subsystem-match=block"], stage=STAGE
    )
    settle = run_command(ctx, ["udevadm", "settle"], stage=STAGE)
    return _succeeded(trigger) and _succeeded(settle)


def _sysfs_rescan(ctx: ProvisionContext) -> bool:
    control = ctx.device.sysfs_dir(ctx.host.sys_block) / "device" / "rescan"
    return write_control(ctx, control, "1", stage=STAGE)


def _hdparm_reread(ctx: ProvisionContext) -> bool:
    return _succeeded(run_command(ctx, ["hdparm", "-z", ctx.device.path], stage=STAGE))


def _blockdev_reread(ctx: ProvisionContext) -> bool:
    result = run_command(ctx, ["blockdev", "--rereadpt", ctx.device.path], stage=STAGE)
    if _succeeded(result):
        return True
    report("blockdev re-read failed; trying fdisk", level=WARNING)
    # A write-only fdisk session issues BLKRRPART as it exits.
    fallback = run_command(ctx, ["fdisk", ctx.device.path], stage=STAGE, input_text="w\n")
    return _succeeded(fallback)


def _bus_control(ctx: ProvisionContext, name: str) -> Path:
    return ctx.device.sysfs_dir(ctx.host.sys_block) / "device" / name


def _detachable(ctx: ProvisionContext) -> bool:
    return ctx.device.is_nvme and ctx.host.path_exists(_bus_control(ctx, "delete"))


def _bus_rescan(ctx: ProvisionContext) -> bool:
    report(f"Removing {ctx.device.path} from its bus and rescanning...", level=WARNING)
    if not write_control(ctx, _bus_control(ctx, "delete"), "1", stage=STAGE):
        return False
    ctx.settle(BUS_REMOVE_SETTLE_SECONDS)
    return write_control(ctx, PCI_RESCAN, "1", stage=STAGE)


def recognition_tiers(ctx: ProvisionContext) -> List[Tier]:
    """Return the re-read strategies in escalation order."""

    settle = ctx.settle_seconds
    return [
        Tier("partprobe", lambda: _partprobe(ctx), settle_seconds=settle),
        Tier("udev trigger", lambda: _udev_trigger(ctx), settle_seconds=settle),
        Tier("sysfs rescan", lambda: _sysfs_rescan(ctx), settle_seconds=settle),
        Tier(
            "hdparm re-read",
            lambda: _hdparm_reread(ctx),
            applicable=lambda: ctx.host.which("hdparm") is not None,
            settle_seconds=settle,
        ),
        Tier("blockdev re-read", lambda: _blockdev_reread(ctx), settle_seconds=settle),
        Tier(
            "bus rescan",
            lambda: _bus_rescan(ctx),
            confirm_key=prompts.BUS_RESCAN,
            confirm_question=(
                f"Partitions on {ctx.device.path} are still missing. Remove the "
                "device from its bus and rescan? This is a last-resort operation"
            ),
            applicable=lambda: _detachable(ctx),
            settle_seconds=BUS_RESCAN_SETTLE_SECONDS,
        ),
    ]


def _print_remediation(ctx: ProvisionContext, missing: List[str]) -> None:
    report(
        "Partitions were not recognized: " + ", ".join(missing),
        level=WARNING,
        missing=missing,
    )
    report("You may need to manually intervene:")
    report(f"1. Run 'partprobe {ctx.device.path}' and wait a few seconds")
    report(f"2. Check 'lsblk {ctx.device.path}' to confirm the partitions exist")
    report("3. If they are still missing, reboot and restart the installation")


def await_partitions(
    ctx: ProvisionContext,
    partitions: Optional[PartitionSet] = None,
    *,
    prompt_on_degraded: bool = True,
) -> RecognitionResult:
    """Escalate through the re-read tiers until every partition node exists.

    On success ``ctx.partitions`` is replaced by the confirmed set.  When every
    tier is used up the operator is shown remediation steps and asked whether
    to continue regardless; declining raises :class:`RecognitionTimeout`.
    With ``prompt_on_degraded`` false the degraded result is returned without
    asking.
    """

    if partitions is None:
        partitions = ctx.partitions or PartitionSet.for_device(ctx.device)
    report(f"Waiting for the kernel to recognize partitions on {ctx.device.path}...")
    log_event(
        "pre_arch.recognition.start",
        device=ctx.device.path,
        partitions=list(partitions.paths),
        state=RecognitionState.PROBING.value,
        execute=ctx.execute,
    )

    tiers = recognition_tiers(ctx)
    if not ctx.execute:
        # Nothing was written, so there is nothing to wait for.
        attempt = climb(
            OPERATION,
            tiers[:1],
            confirm=ctx.operator.confirm,
            sleep=ctx.settle,
            check=lambda: True,
        )
        confirmed = partitions.confirm()
        ctx.partitions = confirmed
        log_event(
            "pre_arch.recognition.finished",
            device=ctx.device.path,
            state=RecognitionState.CONFIRMED.value,
            execute=False,
        )
        return RecognitionResult(RecognitionState.CONFIRMED, confirmed, attempt=attempt)

    attempt = climb(
        OPERATION,
        tiers,
        confirm=ctx.operator.confirm,
        sleep=ctx.settle,
        check=lambda: not missing_nodes(ctx, partitions),
    )
    if attempt.succeeded:
        confirmed = partitions.confirm()
        ctx.partitions = confirmed
        report("All partitions recognized")
        log_event(
            "pre_arch.recognition.finished",
            device=ctx.device.path,
            state=RecognitionState.CONFIRMED.value,
            tier=attempt.tier_name,
            history=attempt.history,
        )
        return RecognitionResult(RecognitionState.CONFIRMED, confirmed, attempt=attempt)

    missing = missing_nodes(ctx, partitions)
    ctx.partitions = partitions
    log_event(
        "pre_arch.recognition.finished",
        device=ctx.device.path,
        state=RecognitionState.DEGRADED.value,
        missing=missing,
        history=attempt.history,
    )
    result = RecognitionResult(
        RecognitionState.DEGRADED, partitions, missing=missing, attempt=attempt
    )
    if not prompt_on_degraded:
        return result

    _print_remediation(ctx, missing)
    if ctx.operator.confirm(
        prompts.CONTINUE_DEGRADED,
        "Continue anyway? (Only if you've manually verified partitions exist)",
    ):
        report("Continuing without confirmed partitions", level=WARNING)
        return result
    raise RecognitionTimeout(
        f"Kernel did not recognize partitions on {ctx.device.path}: {', '.join(missing)}"
    )
