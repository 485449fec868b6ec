"""Utilities for wiping existing storage before provisioning a device."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List, Sequence

from .commands import run_command
from .context import ProvisionContext
from .logging_utils import log_event, report

__all__ = [
    "WIPE_REGION_MIB",
    "DeviceTree",
    "sanitize_device",
]

STAGE = "sanitize"

# Covers the MBR, the primary GPT header and entries at the start of the disk,
# and the backup GPT at the end.
WIPE_REGION_MIB = 10

SYNC_SETTLE_SECONDS = 3.0
FINAL_SETTLE_SECONDS = 5.0


@dataclass
class DeviceTree:
    """Partitions of a device and the volumes stacked on them."""

    partitions: List[str] = field(default_factory=list)
    logical_volumes: List[str] = field(default_factory=list)
    crypt_mappings: List[str] = field(default_factory=list)


def _run_json_query(ctx: ProvisionContext, cmd: Sequence[str]) -> dict[str, object]:
    """Run a read-only query; return ``{}`` on any failure."""

    result = ctx.host.run(list(cmd))
    if result.returncode != 0:
        return {}
    try:
        parsed = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _walk(entry: dict[str, object], tree: DeviceTree, *, root: str) -> None:
    name = str(entry.get("name") or "")
    node_type = entry.get("type")
    if name and name != root:
        if node_type == "part":
            tree.partitions.append(name)
        elif node_type == "lvm":
            tree.logical_volumes.append(name)
        elif node_type == "crypt":
            tree.crypt_mappings.append(name.rsplit("/", 1)[-1])
    for child in entry.get("children") or []:
        if isinstance(child, dict):
            _walk(child, tree, root=root)


def _describe_device(ctx: ProvisionContext) -> DeviceTree:
    device = ctx.device.path
    data = _run_json_query(
        ctx, ["lsblk", "--json", "--paths", "--output", "NAME,TYPE", device]
    )
    tree = DeviceTree()
    for entry in data.get("blockdevices") or []:
        if isinstance(entry, dict):
            _walk(entry, tree, root=device)
    tree.partitions = sorted(dict.fromkeys(tree.partitions))
    tree.logical_volumes = list(dict.fromkeys(tree.logical_volumes))
    return tree


def _list_volume_groups(ctx: ProvisionContext, partitions: Sequence[str]) -> list[str]:
    if not partitions:
        return []
    data = _run_json_query(
        ctx,
        ["pvs", "--reportformat", "json", "-o", "pv_name,vg_name", *partitions],
    )
    groups: list[str] = []
    for report_entry in data.get("report") or []:
        for pv in report_entry.get("pv") or []:
            if not isinstance(pv, dict):
                continue
            vg_name = str(pv.get("vg_name") or "").strip()
            if vg_name and vg_name not in groups:
                groups.append(vg_name)
    return groups


def _terminate_holders(ctx: ProvisionContext, tree: DeviceTree) -> None:
    report("Terminating processes that might be using the disk...")
    for node in [ctx.device.path, *tree.partitions, *tree.logical_volumes]:
        run_command(ctx, ["fuser", "-km", node], stage=STAGE)


def _disable_swap(ctx: ProvisionContext, tree: DeviceTree) -> None:
    report("Disabling swap on the disk...")
    for node in [*tree.partitions, *tree.logical_volumes]:
        run_command(ctx, ["swapoff", node], stage=STAGE)


def _unmount_partitions(ctx: ProvisionContext, tree: DeviceTree) -> None:
    report("Unmounting all partitions...")
    # Stacked volumes first, so their parents are no longer busy.
    for node in [*tree.logical_volumes, *tree.partitions, ctx.device.path]:
        run_command(ctx, ["umount", "-f", node], stage=STAGE)


def _deactivate_lvm(ctx: ProvisionContext, tree: DeviceTree) -> None:
    report("Deactivating LVM volumes...")
    for vg_name in _list_volume_groups(ctx, tree.partitions):
        report(f"Deactivating volume group: {vg_name}")
        run_command(
            ctx,
            ["vgchange", "-an", vg_name],
            stage=STAGE,
            warn=f"Failed to deactivate volume group {vg_name}",
        )
    report("Removing LVM metadata from partitions...")
    for part in tree.partitions:
        run_command(ctx, ["pvremove", "-ff", "-y", part], stage=STAGE)


def _close_crypt_mappings(ctx: ProvisionContext, tree: DeviceTree) -> None:
    report("Closing any LUKS containers...")
    for mapping in tree.crypt_mappings:
        run_command(
            ctx,
            ["cryptsetup", "close", mapping],
            stage=STAGE,
            warn=f"Failed to close encrypted mapping {mapping}",
        )


def _wipe_signatures(ctx: ProvisionContext, tree: DeviceTree) -> None:
    device = ctx.device.path
    report(f"Wiping all signatures from disk and partitions of {device}...")
    run_command(
        ctx,
        ["wipefs", "-a", device],
        stage=STAGE,
        warn=f"Failed to wipe signatures from {device}",
    )
    for part in tree.partitions:
        run_command(ctx, ["wipefs", "-a", part], stage=STAGE)


def _zero_device_edges(ctx: ProvisionContext) -> None:
    device = ctx.device.path
    report("Zeroing out the beginning and end of the disk...")
    run_command(
        ctx,
        [
            "dd",
            "if=/dev/zero",
            f"of={device}",
            "bs=1M",
            f"count={WIPE_REGION_MIB}",
            "conv=fsync",
        ],
        stage=STAGE,
        warn="Failed to zero beginning of disk",
    )
    total_mib = ctx.device.size_bytes // (1024 ** 2)
    if total_mib <= 2 * WIPE_REGION_MIB:
        log_event(
            "pre_arch.sanitize.tail_skipped",
            device=device,
            size_bytes=ctx.device.size_bytes,
        )
        return
    run_command(
        ctx,
        [
            "dd",
            "if=/dev/zero",
            f"of={device}",
            "bs=1M",
            f"count={WIPE_REGION_MIB}",
            f"seek={total_mib - WIPE_REGION_MIB}",
            "conv=fsync",
        ],
        stage=STAGE,
        warn="Failed to zero end of disk",
    )


def _write_empty_table(ctx: ProvisionContext) -> None:
    report("Creating empty partition table...")
    run_command(
        ctx,
        ["parted", "-s", ctx.device.path, "mklabel", "gpt"],
        stage=STAGE,
        warn="Failed to create empty partition table",
    )


def _deep_wipe(ctx: ProvisionContext) -> None:
    if ctx.host.which("gdisk") is None:
        log_event("pre_arch.sanitize.deep_wipe_skipped", reason="gdisk not found")
        return
    report("Using gdisk to perform deeper cleanup...")
    # Expert menu: zap GPT and MBR, confirm both questions.
    run_command(
        ctx,
        ["gdisk", ctx.device.path],
        stage=STAGE,
        input_text="x\nz\ny\ny\n",
        warn="gdisk cleanup failed",
    )


def sanitize_device(ctx: ProvisionContext, *, deep_wipe: bool = True) -> List[str]:
    """Remove prior partition, LVM, LUKS and filesystem state from the device.

    Every step is best-effort: a failing command is logged and the next step
    still runs, since the device may simply not carry the artifact being
    removed.  Returns the commands scheduled by this call.
    """

    start = len(ctx.scheduled)
    device = ctx.device.path
    report(f"Performing aggressive disk cleanup of {device}...")
    log_event("pre_arch.sanitize.start", device=device, execute=ctx.execute)

    tree = _describe_device(ctx)
    _terminate_holders(ctx, tree)
    _disable_swap(ctx, tree)
    _unmount_partitions(ctx, tree)
    _deactivate_lvm(ctx, tree)
    _close_crypt_mappings(ctx, tree)
    _wipe_signatures(ctx, tree)
    _zero_device_edges(ctx)
    _write_empty_table(ctx)
    if deep_wipe:
        _deep_wipe(ctx)

    report("Syncing disk...")
    run_command(ctx, ["sync"], stage=STAGE)
    ctx.settle(SYNC_SETTLE_SECONDS)
    report("Aggressive disk cleanup completed. Waiting for system to recognize changes...")
    ctx.settle(FINAL_SETTLE_SECONDS)

    scheduled = ctx.scheduled[start:]
    log_event(
        "pre_arch.sanitize.finished",
        device=device,
        execute=ctx.execute,
        partitions=tree.partitions,
        logical_volumes=tree.logical_volumes,
        commands=scheduled,
    )
    return scheduled
