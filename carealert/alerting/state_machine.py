"""Alert lifecycle state machine.

Enforces valid transitions for alerts:
  NEW → ACKED | ESCALATED
  ACKED ↔ ESCALATED
  NEW | ACKED | ESCALATED → RESOLVED (terminal)

The guards here are pure; ``AlertService`` applies them against the
store with a compare-and-set update so concurrent transitions on the
same alert are serialized.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from carealert.alerting.events import ALERT_ACKED, ALERT_ESCALATED, ALERT_RESOLVED
from carealert.core.errors import ConflictError
from carealert.core.models import STATUS_FOR_STATE, AlertState, AlertStatus, HistoryAction


class Transition(enum.StrEnum):
    """Transitions external actors can request."""

    ACKNOWLEDGE = "acknowledge"
    ESCALATE = "escalate"
    RESOLVE = "resolve"


@dataclass(frozen=True)
class TransitionSpec:
    """Static description of a transition.

    Attributes:
        allowed_from: States the transition may start from.
        target: State the alert ends in.
        action: History action recorded for the transition.
        event: Broadcast event type emitted after commit.
        note_required: Whether a non-empty note is mandatory.
    """

    allowed_from: frozenset[AlertState]
    target: AlertState
    action: HistoryAction
    event: str
    note_required: bool = False

    @property
    def target_status(self) -> AlertStatus:
        return STATUS_FOR_STATE[self.target]


TRANSITIONS: dict[Transition, TransitionSpec] = {
    Transition.ACKNOWLEDGE: TransitionSpec(
        allowed_from=frozenset({AlertState.NEW, AlertState.ESCALATED}),
        target=AlertState.ACKED,
        action=HistoryAction.ACK,
        event=ALERT_ACKED,
    ),
    Transition.ESCALATE: TransitionSpec(
        allowed_from=frozenset({AlertState.NEW, AlertState.ACKED, AlertState.ESCALATED}),
        target=AlertState.ESCALATED,
        action=HistoryAction.ESCALATE,
        event=ALERT_ESCALATED,
    ),
    Transition.RESOLVE: TransitionSpec(
        allowed_from=frozenset({AlertState.NEW, AlertState.ACKED, AlertState.ESCALATED}),
        target=AlertState.RESOLVED,
        action=HistoryAction.RESOLVE,
        event=ALERT_RESOLVED,
        note_required=True,
    ),
}


def can_transition(state: AlertState | str, transition: Transition) -> bool:
    """Check whether ``transition`` is allowed from ``state``."""
    return AlertState(state) in TRANSITIONS[transition].allowed_from


def validate_transition(state: AlertState | str, transition: Transition) -> TransitionSpec:
    """Return the transition spec or raise if the guard fails.

    Raises:
        ConflictError: If the transition is not allowed from ``state``.
    """
    current = AlertState(state)
    spec = TRANSITIONS[transition]
    if current not in spec.allowed_from:
        raise ConflictError(
            f"Cannot {transition.value} alert in state {current.value}",
            current_state=current.value,
        )
    return spec


def available_actions(state: AlertState | str) -> list[str]:
    """List the transitions an actor may request from ``state``."""
    return [t.value for t in Transition if can_transition(state, t)]
