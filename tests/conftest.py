from pathlib import Path
import subprocess
import sys
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pytest

# Ensure repository root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pre_arch.context import HostEnvironment, ProvisionContext  # noqa: E402
from pre_arch.devices import Device  # noqa: E402

GIB = 1024 ** 3

Response = Union[int, subprocess.CompletedProcess, List[Union[int, subprocess.CompletedProcess]]]


class ScriptedRunner:
    """Record commands and answer them from a table keyed by command prefix.

    A value may be a return code, a ``CompletedProcess`` or a list of either;
    lists are consumed one entry per matching call and the last entry repeats.
    Unmatched commands succeed with empty output.
    """

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], Response]] = None) -> None:
        self.responses = {key: value for key, value in (responses or {}).items()}
        self.commands: List[Tuple[str, ...]] = []
        self.inputs: Dict[Tuple[str, ...], Optional[str]] = {}

    def __call__(self, cmd: Sequence[str], input: Optional[str] = None) -> subprocess.CompletedProcess:
        command = tuple(cmd)
        self.commands.append(command)
        self.inputs[command] = input
        for prefix, value in self.responses.items():
            if command[: len(prefix)] != prefix:
                continue
            if isinstance(value, list):
                entry = value.pop(0) if len(value) > 1 else value[0]
            else:
                entry = value
            if isinstance(entry, subprocess.CompletedProcess):
                return entry
            return subprocess.CompletedProcess(list(cmd), entry, stdout="", stderr="")
        return subprocess.CompletedProcess(list(cmd), 0, stdout="", stderr="")

    def calls(self, *prefix: str) -> List[Tuple[str, ...]]:
        return [cmd for cmd in self.commands if cmd[: len(prefix)] == prefix]


class ScriptedOperator:
    """Answer confirmations from a mapping; unknown keys are declined."""

    def __init__(self, answers: Optional[Dict[str, bool]] = None) -> None:
        self.answers = dict(answers or {})
        self.asked: List[str] = []

    def confirm(self, key: str, question: str) -> bool:
        self.asked.append(key)
        return self.answers.get(key, False)


class FakeHost(HostEnvironment):
    """Host whose block devices, sysfs writes and sleeps are all in memory."""

    def __init__(
        self,
        *,
        runner: Optional[ScriptedRunner] = None,
        block_devices: Union[Iterable[str], Callable[[str], bool]] = (),
        existing_paths: Iterable[Path] = (),
        tools: Iterable[str] = ("gdisk", "hdparm"),
        sys_block: Path = Path("/sys/block"),
    ) -> None:
        self.runner = runner or ScriptedRunner()
        self.writes: List[Tuple[Path, str]] = []
        self.sleeps: List[float] = []
        self.tools = set(tools)
        self.existing = {Path(path) for path in existing_paths}
        if callable(block_devices):
            probe = block_devices
        else:
            present = set(block_devices)
            probe = present.__contains__
        super().__init__(
            run=self.runner,
            is_block_device=probe,
            path_exists=lambda path: Path(path) in self.existing,
            write_text=lambda path, value: self.writes.append((Path(path), value)),
            which=lambda name: f"/usr/bin/{name}" if name in self.tools else None,
            sleep=self.sleeps.append,
            sys_block=sys_block,
        )


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def make_ctx() -> Callable[..., ProvisionContext]:
    """Return a factory building a :class:`ProvisionContext` on fakes."""

    def factory(
        device: str = "/dev/nvme0n1",
        *,
        size_bytes: int = 256 * GIB,
        execute: bool = True,
        runner: Optional[ScriptedRunner] = None,
        answers: Optional[Dict[str, bool]] = None,
        block_devices: Union[Iterable[str], Callable[[str], bool]] = (),
        existing_paths: Iterable[Path] = (),
        tools: Iterable[str] = ("gdisk", "hdparm"),
        mount_root: Path = Path("/mnt"),
    ) -> ProvisionContext:
        host = FakeHost(
            runner=runner,
            block_devices=block_devices,
            existing_paths=existing_paths,
            tools=tools,
        )
        return ProvisionContext(
            device=Device(device, size_bytes=size_bytes),
            operator=ScriptedOperator(answers),
            host=host,
            execute=execute,
            settle_seconds=2.0,
            mount_root=mount_root,
        )

    return factory


@pytest.fixture(autouse=True)
def isolate_logging(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("PRE_ARCH_LOG_EVENTS", raising=False)
    monkeypatch.delenv("PRE_ARCH_EXEC", raising=False)
    monkeypatch.setenv("PRE_ARCH_LOG_FILE", str(tmp_path / "actions.log"))
