"""Bounded escalating retry ladders.

A ladder is an ordered list of strategies tried one after another until one
succeeds.  Each tier runs at most once; tiers may be skipped when they do not
apply to the device, or gated behind an operator confirmation when they are
risky.  The outcome of every tier is kept in a :class:`RecoveryAttempt` so the
caller can decide whether to ask the operator to continue or to abort.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .logging_utils import WARNING, log_event, report

__all__ = [
    "SUCCEEDED",
    "FAILED",
    "DECLINED",
    "NOT_APPLICABLE",
    "Tier",
    "RecoveryAttempt",
    "climb",
]

SUCCEEDED = "succeeded"
FAILED = "failed"
DECLINED = "declined"
NOT_APPLICABLE = "not-applicable"


@dataclass(frozen=True)
class Tier:
    """One strategy of a ladder.

    ``action`` performs the strategy; its truthiness is the tier's success
    unless the ladder was given a separate ``check``.  ``settle_seconds`` is
    waited after the action and before the check.
    """

    name: str
    action: Callable[[], object]
    confirm_key: Optional[str] = None
    confirm_question: Optional[str] = None
    applicable: Optional[Callable[[], bool]] = None
    settle_seconds: float = 0.0


@dataclass
class RecoveryAttempt:
    """Bounded counter and ladder position for one failing operation."""

    operation: str
    limit: int
    attempts: int = 0
    tier_index: int = -1
    tier_name: Optional[str] = None
    history: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, index: int, name: str, outcome: str) -> None:
        self.tier_index = index
        self.tier_name = name
        self.history.append((name, outcome))
        if outcome in {SUCCEEDED, FAILED}:
            self.attempts += 1

    @property
    def succeeded(self) -> bool:
        return bool(self.history) and self.history[-1][1] == SUCCEEDED

    @property
    def exhausted(self) -> bool:
        return not self.succeeded and self.tier_index >= self.limit - 1

    def outcomes(self) -> dict[str, str]:
        return dict(self.history)


def climb(
    operation: str,
    tiers: Sequence[Tier],
    *,
    confirm: Callable[[str, str], bool],
    sleep: Callable[[float], None],
    check: Optional[Callable[[], bool]] = None,
) -> RecoveryAttempt:
    """Try ``tiers`` in order until one succeeds or all are used up."""

    attempt = RecoveryAttempt(operation=operation, limit=len(tiers))
    total = len(tiers)
    for index, tier in enumerate(tiers):
        position = f"{index + 1}/{total}"
        if tier.applicable is not None and not tier.applicable():
            attempt.record(index, tier.name, NOT_APPLICABLE)
            log_event(
                "pre_arch.ladder.tier_skipped",
                operation=operation,
                tier=tier.name,
                position=position,
            )
            continue
        if tier.confirm_key is not None:
            question = tier.confirm_question or f"Attempt {tier.name}?"
            if not confirm(tier.confirm_key, question):
                attempt.record(index, tier.name, DECLINED)
                report(
                    f"{operation}: {tier.name} declined by operator",
                    level=WARNING,
                    tier=tier.name,
                )
                continue

        report(f"{operation}: trying {tier.name} ({position})")
        outcome = tier.action()
        if tier.settle_seconds:
            sleep(tier.settle_seconds)
        ok = check() if check is not None else bool(outcome)
        attempt.record(index, tier.name, SUCCEEDED if ok else FAILED)
        log_event(
            "pre_arch.ladder.tier_finished",
            operation=operation,
            tier=tier.name,
            position=position,
            succeeded=ok,
        )
        if ok:
            report(f"{operation}: {tier.name} succeeded")
            return attempt
        report(f"{operation}: {tier.name} did not succeed", level=WARNING, tier=tier.name)

    log_event(
        "pre_arch.ladder.exhausted",
        operation=operation,
        history=attempt.history,
    )
    return attempt
