"""Transition table for the per-phone conversation.

(state, signal) -> (next state, action). The first row of a state whose
signal is present wins; a row with signal None is that state's default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.models.phone_session import SessionState
from app.services.conversation.classifier import Signal


class Action(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    ACKNOWLEDGE = "acknowledge"
    RECONCILE = "reconcile"
    DEFLECT = "deflect"
    IGNORE = "ignore"
    RESET = "reset"


@dataclass(frozen=True)
class Transition:
    signal: Signal | None
    next_state: SessionState
    action: Action


TRANSITIONS: dict[SessionState, tuple[Transition, ...]] = {
    SessionState.WELCOME: (
        Transition(Signal.AFFIRMATIVE, SessionState.ACCEPTED, Action.CONFIRM),
        Transition(None, SessionState.REJECTED, Action.REJECT),
    ),
    SessionState.ACCEPTED: (
        Transition(Signal.RECEIVED, SessionState.ACCEPTED, Action.ACKNOWLEDGE),
        Transition(None, SessionState.ACCEPTED, Action.IGNORE),
    ),
    SessionState.WAITING_RESPONSE: (
        Transition(Signal.RECEIVED, SessionState.ACCEPTED, Action.RECONCILE),
        Transition(None, SessionState.WAITING_RESPONSE, Action.IGNORE),
    ),
    SessionState.REJECTED: (
        Transition(None, SessionState.REJECTED, Action.DEFLECT),
    ),
}

RESET_TRANSITION = Transition(None, SessionState.WELCOME, Action.RESET)


def resolve_transition(
    state: SessionState | None,
    signals: frozenset[Signal],
) -> Transition:
    """Pick the transition for a state and classification.

    An unknown state (None) always resets to welcome.
    """
    if state is None:
        return RESET_TRANSITION
    rows = TRANSITIONS[state]
    for row in rows:
        if row.signal is None or row.signal in signals:
            return row
    # Every state ends with a default row.
    return rows[-1]
