from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from outreach.domain.stages import OutcomeKind

FUNNEL_RANK = {
    OutcomeKind.SENT: 1,
    OutcomeKind.OPENED: 2,
    OutcomeKind.CLICKED: 3,
    OutcomeKind.REPLIED: 4,
}
TERMINAL_OUTCOMES = frozenset({OutcomeKind.BOUNCED, OutcomeKind.UNSUBSCRIBED})

# Timestamp fallback for completed_at: the stage's own time, then this one.
PREVIOUS_STAGE = {
    OutcomeKind.OPENED: OutcomeKind.SENT,
    OutcomeKind.CLICKED: OutcomeKind.OPENED,
    OutcomeKind.REPLIED: OutcomeKind.CLICKED,
    OutcomeKind.BOUNCED: OutcomeKind.SENT,
    OutcomeKind.UNSUBSCRIBED: OutcomeKind.SENT,
}


@dataclass(frozen=True)
class TransitionDecision:
    action: str
    reason: str | None = None

    @property
    def applies(self) -> bool:
        return self.action == "apply"


def is_terminal(kind: OutcomeKind | None) -> bool:
    return kind in TERMINAL_OUTCOMES


def decide_transition(current: OutcomeKind | None, incoming: OutcomeKind) -> TransitionDecision:
    """Decide whether ``incoming`` moves a touchpoint forward from ``current``.

    Scheduled touchpoints accept any outcome. Bounced and unsubscribed are
    terminal and accept nothing further; they can be reached from any
    non-terminal state. Funnel outcomes only advance to a strictly higher
    rank, so replays and out-of-order events are no-ops.
    """
    if current is None:
        return TransitionDecision(action="apply")
    if is_terminal(current):
        return TransitionDecision(action="skip", reason="terminal")
    if is_terminal(incoming):
        return TransitionDecision(action="apply")
    if FUNNEL_RANK[incoming] > FUNNEL_RANK[current]:
        return TransitionDecision(action="apply")
    return TransitionDecision(action="skip", reason="stale")


def resolve_completed_at(
    status: OutcomeKind,
    timestamps: dict[OutcomeKind, datetime],
    now: datetime,
) -> datetime:
    own = timestamps.get(status)
    if own is not None:
        return own
    previous = PREVIOUS_STAGE.get(status)
    if previous is not None and timestamps.get(previous) is not None:
        return timestamps[previous]
    return now
