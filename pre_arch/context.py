"""Explicit state threaded through every provisioning stage."""

from __future__ import annotations

import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .commands import CommandRunner, default_runner
from .devices import Device, PartitionSet
from .inventory import is_block_device as _is_block_device
from .prompts import Operator
from .planner import ProvisioningPlan

__all__ = [
    "DEFAULT_SETTLE_SECONDS",
    "HostEnvironment",
    "ProvisionContext",
    "execution_enabled",
    "settle_seconds_from_env",
]

DEFAULT_SETTLE_SECONDS = 2.0


def _write_text(path: Path, value: str) -> None:
    Path(path).write_text(value, encoding="utf-8")


class HostEnvironment:
    """Encapsulate interactions with the host operating system."""

    def __init__(
        self,
        *,
        run: CommandRunner | None = None,
        is_block_device: Callable[[str], bool] | None = None,
        path_exists: Callable[[Path], bool] | None = None,
        write_text: Callable[[Path, str], None] | None = None,
        which: Callable[[str], Optional[str]] | None = None,
        sleep: Callable[[float], None] | None = None,
        sys_block: Path = Path("/sys/block"),
    ) -> None:
        self.run = run or default_runner
        self.is_block_device = is_block_device or _is_block_device
        self.path_exists = path_exists or (lambda path: Path(path).exists())
        self.write_text = write_text or _write_text
        self.which = which or shutil.which
        self.sleep = sleep or time.sleep
        self.sys_block = sys_block


@dataclass
class ProvisionContext:
    """Device, plan, operator handle and host capabilities for one run."""

    device: Device
    operator: Operator
    host: HostEnvironment = field(default_factory=HostEnvironment)
    execute: bool = False
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    mount_root: Path = Path("/mnt")
    plan: Optional[ProvisioningPlan] = None
    partitions: Optional[PartitionSet] = None
    scheduled: List[str] = field(default_factory=list)

    def settle(self, seconds: Optional[float] = None) -> None:
        """Wait for asynchronous device activity when commands really run."""

        if not self.execute:
            return
        self.host.sleep(self.settle_seconds if seconds is None else seconds)


def execution_enabled(dry_run: bool) -> bool:
    """Return ``True`` when commands should really be executed."""

    return not dry_run and os.environ.get("PRE_ARCH_EXEC") == "1"


def settle_seconds_from_env() -> float:
    value = os.environ.get("PRE_ARCH_SETTLE_SECONDS")
    if value is None or value.strip() == "":
        return DEFAULT_SETTLE_SECONDS
    try:
        seconds = float(value)
    except ValueError:
        return DEFAULT_SETTLE_SECONDS
    return max(seconds, 0.0)
