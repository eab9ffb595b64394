"""
Conversation State - Pure domain layer
======================================
No session, commit, async or logging. Only the lifecycle rules of a
goal-setting conversation and the slot order.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Dict, Optional

from models import SessionState

# The six goal-setting prompts, strictly in this order
SLOT_ORDER = ("what", "why", "when", "where", "who", "how")

ALLOWED_TRANSITIONS = {
    SessionState.WELCOME.value: {
        SessionState.CONNECT.value,
        SessionState.SLOT_FILLING.value,
    },
    SessionState.CONNECT.value: {
        SessionState.SLOT_FILLING.value,
    },
    SessionState.SLOT_FILLING.value: {
        SessionState.MATERIALIZING.value,
        SessionState.CONNECT.value,
    },
    SessionState.MATERIALIZING.value: {
        SessionState.ACTIVE.value,
        SessionState.SLOT_FILLING.value,   # critical abort, answers kept
        SessionState.CONNECT.value,        # critical abort, board link missing
    },
    # active is terminal and long-lived
    SessionState.ACTIVE.value: set(),
}


@dataclass
class SessionTransitioned:
    """Domain event emitted for every accepted transition"""
    session_id: str
    from_state: str
    to_state: str
    reason: str
    timestamp: str


def check_transition(session_id: str, from_state: str, to_state: str, reason: str = "") -> SessionTransitioned:
    """
    Validate a transition and return its event.

    Raises:
        InvalidSessionTransition: no-op or not in ALLOWED_TRANSITIONS
    """
    from exceptions import InvalidSessionTransition

    if from_state == to_state or to_state not in ALLOWED_TRANSITIONS.get(from_state, set()):
        raise InvalidSessionTransition(session_id, from_state, to_state)

    return SessionTransitioned(
        session_id=session_id,
        from_state=from_state,
        to_state=to_state,
        reason=reason or "State transition",
        timestamp=datetime.now(timezone.utc).isoformat()
    )


def entry_state(board_linked: bool) -> str:
    """Where a welcome session goes on its first message"""
    return SessionState.SLOT_FILLING.value if board_linked else SessionState.CONNECT.value


def next_slot(answers: List[Dict[str, str]]) -> Optional[str]:
    """First slot without an answer, or None when all six are recorded."""
    recorded = {item["slot"] for item in answers}
    for slot in SLOT_ORDER:
        if slot not in recorded:
            return slot
    return None


def answers_complete(answers: List[Dict[str, str]]) -> bool:
    return next_slot(answers) is None


def record_answer(answers: List[Dict[str, str]], text: str) -> List[Dict[str, str]]:
    """
    Append ``text`` as the answer to the next slot.

    Returns a new list; the input is left untouched so the ORM sees a
    changed JSON value.
    """
    slot = next_slot(answers)
    if slot is None:
        raise ValueError("All slots already answered")
    return list(answers) + [{"slot": slot, "answer": text.strip()}]
