"""CLI entry point for pre-arch."""

import argparse
import json
from pathlib import Path
from typing import Dict, Optional

from . import inventory, prompts
from .context import (
    HostEnvironment,
    ProvisionContext,
    execution_enabled,
    settle_seconds_from_env,
)
from .errors import ProvisioningError
from .logging_utils import ERROR, log_event, report
from .planner import BootMode, plan_for_device
from .provision import prepare_device, resolve_boot_mode, run_provisioning


def _list_devices(sys_block: Path) -> None:
    for disk in inventory.enumerate_disks(sys_block):
        print(inventory.format_disk(disk))


def _prompt_device(operator: prompts.TerminalOperator, sys_block: Path) -> Optional[str]:
    print("Available disks:")
    _list_devices(sys_block)
    answer = operator.ask("Enter the disk to install to (e.g., /dev/sda, /dev/nvme0n1): ")
    if not answer:
        return None
    return answer if answer.startswith("/dev/") else f"/dev/{answer}"


def _prompt_boot_mode(operator: prompts.TerminalOperator) -> Optional[BootMode]:
    value = operator.choose(
        "Select boot mode:",
        [
            (BootMode.UEFI.value, "UEFI (recommended for modern systems)"),
            (BootMode.BIOS.value, "BIOS/Legacy"),
        ],
    )
    return BootMode(value) if value else None


def _presets(args: argparse.Namespace) -> Dict[str, bool]:
    presets: Dict[str, bool] = {}
    if args.yes_wipe:
        presets[prompts.WIPE_DISK] = True
    if args.sanitize is not None:
        presets[prompts.SANITIZE] = args.sanitize
    return presets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pre-Arch disk provisioning")
    parser.add_argument("--device", metavar="DISK", help="Target disk, e.g. /dev/nvme0n1")
    parser.add_argument(
        "--boot-mode",
        choices=[mode.value for mode in BootMode],
        help="Firmware boot mode to partition for",
    )
    parser.add_argument(
        "--yes-wipe",
        action="store_true",
        help="Do not ask before erasing the target disk",
    )
    parser.add_argument(
        "--sanitize",
        dest="sanitize",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run (or skip) the aggressive disk cleanup without asking",
    )
    parser.add_argument(
        "--mount-root",
        type=Path,
        default=Path("/mnt"),
        help="Directory the new root filesystem is mounted on",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print commands without executing them",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List candidate disks and exit",
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Only print the partition plan and exit",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Run the pre-arch tool and return the process exit status."""

    parser = build_parser()
    args = parser.parse_args(argv)
    host = HostEnvironment()

    if args.list_devices:
        _list_devices(host.sys_block)
        return 0

    operator = prompts.TerminalOperator(presets=_presets(args))
    try:
        device_path = args.device or _prompt_device(operator, host.sys_block)
        if not device_path:
            report("No disk selected", level=ERROR)
            return 1
        device = prepare_device(device_path, host)

        if args.boot_mode:
            boot_mode = BootMode(args.boot_mode)
        else:
            selected = _prompt_boot_mode(operator)
            if selected is None:
                report("No boot mode selected", level=ERROR)
                return 1
            boot_mode = selected
        boot_mode = resolve_boot_mode(boot_mode, operator)

        ram_mib = inventory.detect_ram_mib()
        report(f"RAM detected: {ram_mib}MB")
        plan = plan_for_device(device.size_bytes, ram_mib, boot_mode)
        report(f"Swap size set to: {plan.swap_mib}MB")

        if args.plan_only:
            print(json.dumps({"device": device.path, **plan.to_dict()}, indent=2))
            return 0

        if not operator.confirm(
            prompts.WIPE_DISK,
            f"WARNING: This will erase ALL data on {device.path}. Continue?",
        ):
            report("Aborting without modifying storage.")
            return 0

        ctx = ProvisionContext(
            device=device,
            operator=operator,
            host=host,
            execute=execution_enabled(args.dry_run),
            settle_seconds=settle_seconds_from_env(),
            mount_root=args.mount_root,
        )
        if not ctx.execute:
            report("Execution disabled; commands are only printed (set PRE_ARCH_EXEC=1 to run)")
        result = run_provisioning(ctx, plan)
        if not ctx.execute:
            for command in result.commands:
                print(command)
    except ProvisioningError as exc:
        log_event("pre_arch.failed", error=type(exc).__name__)
        report(str(exc), level=ERROR)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
