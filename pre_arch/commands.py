"""External command execution for provisioning stages.

Commands are scheduled and logged even when execution is disabled, so a dry
run reports exactly what a real run would invoke.  Execution never raises on a
non-zero exit status; fatal call sites use :func:`check_command`.
"""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Sequence, Type

from .errors import ToolInvocationError
from .logging_utils import WARNING, log_event, report

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .context import ProvisionContext

__all__ = [
    "CommandRunner",
    "default_runner",
    "command_to_str",
    "run_command",
    "check_command",
    "write_control",
]


CommandRunner = Callable[..., subprocess.CompletedProcess]

# Exit status reported when the executable itself could not be started.
MISSING_EXECUTABLE_RETURNCODE = 127


def default_runner(cmd: Sequence[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
    """Run *cmd* with output captured; report start failures as status 127."""

    try:
        return subprocess.run(
            list(cmd),
            input=input,
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        return subprocess.CompletedProcess(
            list(cmd), MISSING_EXECUTABLE_RETURNCODE, stdout="", stderr=str(exc)
        )


def command_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


def _command_output_fields(result: subprocess.CompletedProcess) -> dict[str, str]:
    """Return a mapping of non-empty output streams for logging."""

    fields = {}
    stdout = (result.stdout or "").strip()
    stderr = (result.stderr or "").strip()
    if stdout:
        fields["stdout"] = stdout
    if stderr:
        fields["stderr"] = stderr
    return fields


def run_command(
    ctx: "ProvisionContext",
    cmd: Sequence[str],
    *,
    stage: str,
    input_text: Optional[str] = None,
    warn: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Schedule *cmd* and run it when execution is enabled.

    A non-zero exit status is logged and returned to the caller.  When
    ``warn`` is given it is also reported to the operator as a warning.
    """

    cmd_str = command_to_str(cmd)
    ctx.scheduled.append(cmd_str)
    log_event(
        "pre_arch.command",
        stage=stage,
        device=ctx.device.path,
        command=cmd_str,
        execute=ctx.execute,
    )
    if not ctx.execute:
        return subprocess.CompletedProcess(list(cmd), 0, stdout="", stderr="")

    if input_text is None:
        result = ctx.host.run(list(cmd))
    else:
        result = ctx.host.run(list(cmd), input=input_text)
    if not isinstance(result, subprocess.CompletedProcess):
        raise TypeError("Command runner must return CompletedProcess")

    if result.returncode != 0:
        log_event(
            "pre_arch.command_failed",
            stage=stage,
            device=ctx.device.path,
            command=cmd_str,
            returncode=result.returncode,
            **_command_output_fields(result),
        )
        if warn:
            report(warn, level=WARNING, stage=stage, command=cmd_str)
    return result


def check_command(
    ctx: "ProvisionContext",
    cmd: Sequence[str],
    *,
    stage: str,
    message: str,
    error: Type[ToolInvocationError] = ToolInvocationError,
    input_text: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run *cmd* and raise ``error`` when it exits with a non-zero status."""

    result = run_command(ctx, cmd, stage=stage, input_text=input_text)
    if result.returncode != 0:
        detail = (result.stderr or "").strip()
        text = f"{message} ({command_to_str(cmd)} exited with {result.returncode})"
        if detail:
            text = f"{text}: {detail}"
        raise error(
            text,
            command=cmd,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
    return result


def write_control(ctx: "ProvisionContext", path: Path, value: str, *, stage: str) -> bool:
    """Write ``value`` to a kernel control file such as a sysfs ``rescan`` node."""

    description = f"echo {value} > {path}"
    ctx.scheduled.append(description)
    log_event(
        "pre_arch.control_write",
        stage=stage,
        device=ctx.device.path,
        path=path,
        value=value,
        execute=ctx.execute,
    )
    if not ctx.execute:
        return True
    try:
        ctx.host.write_text(path, value)
    except OSError as exc:
        log_event(
            "pre_arch.control_write_failed",
            stage=stage,
            device=ctx.device.path,
            path=path,
            error=str(exc),
        )
        return False
    return True
