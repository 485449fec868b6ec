"""Operator decision points."""

from __future__ import annotations

from typing import Callable, Mapping, Optional, Protocol, Sequence, Tuple

from .logging_utils import log_event, report

__all__ = [
    "Operator",
    "TerminalOperator",
    "WIPE_DISK",
    "SANITIZE",
    "UEFI_OVERRIDE",
    "BUS_RESCAN",
    "CONTINUE_DEGRADED",
    "PV_EMERGENCY",
    "PV_MANUAL",
    "CONTINUE_AFTER_PV_FAILURE",
    "VG_CLEANUP",
    "CONTINUE_AFTER_VG_FAILURE",
]

# Stable identifiers for every yes/no decision a run can ask for.
WIPE_DISK = "wipe-disk"
SANITIZE = "sanitize"
UEFI_OVERRIDE = "uefi-override"
BUS_RESCAN = "bus-rescan"
CONTINUE_DEGRADED = "continue-degraded"
PV_EMERGENCY = "pv-emergency"
PV_MANUAL = "pv-manual"
CONTINUE_AFTER_PV_FAILURE = "continue-after-pv-failure"
VG_CLEANUP = "vg-cleanup"
CONTINUE_AFTER_VG_FAILURE = "continue-after-vg-failure"


class Operator(Protocol):
    """Something that can answer yes/no questions for a provisioning run."""

    def confirm(self, key: str, question: str) -> bool:
        ...


class TerminalOperator:
    """Ask questions on the controlling terminal.

    ``presets`` answers selected decision points without prompting, which is
    how command-line flags such as ``--yes-wipe`` are applied.  End of input
    counts as a negative answer.
    """

    def __init__(
        self,
        *,
        presets: Optional[Mapping[str, bool]] = None,
        input_func: Callable[[str], str] = input,
        print_func: Callable[[str], None] = print,
    ) -> None:
        self.presets = dict(presets or {})
        self._input = input_func
        self._print = print_func

    def confirm(self, key: str, question: str) -> bool:
        if key in self.presets:
            answer = self.presets[key]
            report(f"{question} -> {'yes' if answer else 'no'} (preset)")
            log_event("pre_arch.operator.decision", key=key, answer=answer, preset=True)
            return answer
        prompt = f"{question} [y/N]: "
        while True:
            try:
                response = self._input(prompt)
            except EOFError:
                log_event("pre_arch.operator.decision", key=key, answer=False, eof=True)
                return False
            choice = response.strip().lower()
            if choice in {"y", "yes"}:
                answer = True
            elif choice in {"", "n", "no"}:
                answer = False
            else:
                self._print("Please respond with 'yes' or 'no'.")
                continue
            log_event("pre_arch.operator.decision", key=key, answer=answer, preset=False)
            return answer

    def choose(
        self,
        question: str,
        options: Sequence[Tuple[str, str]],
    ) -> Optional[str]:
        """Present numbered ``(value, description)`` options and return a value.

        Returns ``None`` when input ends before a valid selection is made.
        """

        self._print(question)
        for index, (_value, description) in enumerate(options, start=1):
            self._print(f"{index}. {description}")
        while True:
            try:
                response = self._input(f"Select (1-{len(options)}): ")
            except EOFError:
                return None
            choice = response.strip()
            if choice.isdigit() and 1 <= int(choice) <= len(options):
                return options[int(choice) - 1][0]
            self._print("Please choose one of the listed options.")

    def ask(self, question: str) -> Optional[str]:
        """Return a free-form answer, or ``None`` on end of input."""

        try:
            return self._input(question).strip()
        except EOFError:
            return None
