"""Run the provisioning stages in order against one device."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import inventory, prompts
from .context import HostEnvironment, ProvisionContext
from .devices import Device, PartitionSet
from .errors import InvalidDevice, ProvisioningError
from .filesystems import format_volumes, mount_volumes, unmount_target
from .logging_utils import WARNING, log_event, report
from .lvm import VolumeStack, build_volume_stack
from .partition import write_partition_table
from .planner import BootMode, ProvisioningPlan
from .recognition import RecognitionResult, await_partitions
from .storage_cleanup import sanitize_device

__all__ = [
    "ProvisionResult",
    "prepare_device",
    "resolve_boot_mode",
    "run_provisioning",
]


@dataclass
class ProvisionResult:
    """Identifiers produced by a completed run."""

    device: str
    plan: ProvisioningPlan
    partitions: PartitionSet
    recognition: RecognitionResult
    volumes: VolumeStack
    mount_root: Path
    commands: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "device": self.device,
            "plan": self.plan.to_dict(),
            "partitions": list(self.partitions.paths),
            "recognition": self.recognition.state.value,
            "root": self.volumes.root_path,
            "home": self.volumes.home_path,
            "mount_root": str(self.mount_root),
        }


def prepare_device(path: str, host: HostEnvironment) -> Device:
    """Validate ``path`` and return a :class:`Device` carrying its size."""

    device = Device(path)
    if not host.is_block_device(device.path):
        raise InvalidDevice(f"{device.path} is not a valid block device")
    size = inventory.device_size_bytes(device.name, host.sys_block)
    return device.with_size(size)


def resolve_boot_mode(
    requested: BootMode,
    operator: prompts.Operator,
    efivars: Path = Path("/sys/firmware/efi/efivars"),
) -> BootMode:
    """Check the requested boot mode against the firmware.

    Requesting UEFI on a system that was not booted through UEFI needs an
    explicit operator override; declining falls back to BIOS.
    """

    if requested is BootMode.UEFI and not inventory.firmware_supports_uefi(efivars):
        report(
            "UEFI selected but the system does not appear to be booted in UEFI mode",
            level=WARNING,
        )
        if not operator.confirm(prompts.UEFI_OVERRIDE, "Continue with UEFI anyway?"):
            report("Switching to BIOS mode", level=WARNING)
            return BootMode.BIOS
    return requested


def run_provisioning(
    ctx: ProvisionContext,
    plan: ProvisioningPlan,
    *,
    sanitize: Optional[bool] = None,
) -> ProvisionResult:
    """Sanitize, partition, confirm, build LVM, format and mount.

    ``sanitize`` of ``None`` asks the operator; ``False`` skips the sanitizer.
    """

    start = len(ctx.scheduled)
    device = ctx.device.path
    log_event(
        "pre_arch.provision.start",
        device=device,
        plan=plan.to_dict(),
        execute=ctx.execute,
    )

    if sanitize is None:
        sanitize = ctx.operator.confirm(
            prompts.SANITIZE,
            f"Perform aggressive cleanup of {device} before partitioning?",
        )
    if sanitize:
        sanitize_device(ctx)
    else:
        report("Skipping disk cleanup; stale metadata may interfere", level=WARNING)

    partitions = write_partition_table(ctx, plan)
    recognition = await_partitions(ctx, partitions)
    volumes = build_volume_stack(ctx)
    partitions = ctx.partitions or partitions
    format_volumes(ctx, partitions, volumes, plan.boot_mode)
    try:
        mount_volumes(ctx, partitions, volumes, plan.boot_mode)
    except ProvisioningError:
        # Nothing stays mounted under the target after a failed mount.
        unmount_target(ctx)
        raise

    result = ProvisionResult(
        device=device,
        plan=plan,
        partitions=partitions,
        recognition=recognition,
        volumes=volumes,
        mount_root=Path(ctx.mount_root),
        commands=ctx.scheduled[start:],
    )
    report(f"Disk provisioning of {device} completed; target mounted at {ctx.mount_root}")
    log_event("pre_arch.provision.finished", execute=ctx.execute, **result.to_dict())
    return result
