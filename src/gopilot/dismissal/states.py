"""
Queue entry state machine.

    waiting -> called -> released -> dismissed
    waiting|called -> held -> waiting

`dismissed` is terminal. Walker entries are created already `released`.
This module is pure; `gopilot.dismissal.queue` applies it to the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class QueueStatus(StrEnum):
    WAITING = "waiting"
    CALLED = "called"
    RELEASED = "released"
    DISMISSED = "dismissed"
    HELD = "held"


class Transition(StrEnum):
    CALL = "call"
    RELEASE = "release"
    DISMISS = "dismiss"
    HOLD = "hold"
    CLEAR_HOLD = "clear_hold"


@dataclass(frozen=True)
class TransitionRule:
    """Valid source states and the target state for one transition.

    When `noop_on_target` is set, applying the transition to an entry that is
    already in the target state succeeds without changing anything.
    """

    sources: frozenset[QueueStatus]
    target: QueueStatus
    noop_on_target: bool
    timestamp_field: str | None = None


TRANSITIONS: dict[Transition, TransitionRule] = {
    Transition.CALL: TransitionRule(
        sources=frozenset({QueueStatus.WAITING}),
        target=QueueStatus.CALLED,
        noop_on_target=True,
        timestamp_field="called_at",
    ),
    Transition.RELEASE: TransitionRule(
        sources=frozenset({QueueStatus.WAITING, QueueStatus.CALLED}),
        target=QueueStatus.RELEASED,
        noop_on_target=True,
        timestamp_field="released_at",
    ),
    Transition.DISMISS: TransitionRule(
        sources=frozenset({QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.RELEASED}),
        target=QueueStatus.DISMISSED,
        noop_on_target=False,
        timestamp_field="dismissed_at",
    ),
    Transition.HOLD: TransitionRule(
        sources=frozenset({QueueStatus.WAITING, QueueStatus.CALLED}),
        target=QueueStatus.HELD,
        noop_on_target=True,
    ),
    Transition.CLEAR_HOLD: TransitionRule(
        sources=frozenset({QueueStatus.HELD}),
        target=QueueStatus.WAITING,
        noop_on_target=False,
    ),
}

TERMINAL_STATUSES = frozenset({QueueStatus.DISMISSED})

# Transitions blocked while the session is paused
PAUSE_BLOCKED = frozenset({Transition.CALL})


class Verdict(StrEnum):
    APPLY = "apply"
    NOOP = "noop"
    REJECT = "reject"


def evaluate(current: str, transition: Transition) -> Verdict:
    """Decide what applying `transition` to an entry in `current` does.

    >>> evaluate("waiting", Transition.CALL)
    <Verdict.APPLY: 'apply'>
    >>> evaluate("released", Transition.RELEASE)
    <Verdict.NOOP: 'noop'>
    >>> evaluate("dismissed", Transition.DISMISS)
    <Verdict.REJECT: 'reject'>
    """
    status = QueueStatus(current)
    rule = TRANSITIONS[transition]

    if status in TERMINAL_STATUSES:
        return Verdict.REJECT
    if status == rule.target and rule.noop_on_target:
        return Verdict.NOOP
    if status in rule.sources:
        return Verdict.APPLY
    return Verdict.REJECT


# Broadcast event name per resulting status
STATUS_EVENTS: dict[QueueStatus, str] = {
    QueueStatus.WAITING: "student:checked-in",
    QueueStatus.CALLED: "student:called",
    QueueStatus.RELEASED: "student:released",
    QueueStatus.DISMISSED: "student:dismissed",
}
