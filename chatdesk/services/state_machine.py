from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from chatdesk.services.errors import ConflictError


class OwnershipState(str, Enum):
    BOT_OWNED = "bot_owned"
    HUMAN_OWNED = "human_owned"


VALID_TRANSITIONS = {
    OwnershipState.BOT_OWNED: [OwnershipState.HUMAN_OWNED],
    OwnershipState.HUMAN_OWNED: [OwnershipState.BOT_OWNED],
}


class InvalidTransitionError(ConflictError):
    def __init__(self, from_state: OwnershipState, to_state: OwnershipState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}", "invalid_transition")


@dataclass(frozen=True)
class Ownership:
    state: OwnershipState
    agent_id: Optional[UUID] = None
    knowledge_base_enabled: bool = True

    @property
    def is_human_owned(self) -> bool:
        return self.state == OwnershipState.HUMAN_OWNED


BOT_OWNED = Ownership(state=OwnershipState.BOT_OWNED)


def ownership_from_assignment(assignment) -> Ownership:
    """Assignment row present -> human owned. Absent -> bot owned."""
    if assignment is None:
        return BOT_OWNED
    return Ownership(
        state=OwnershipState.HUMAN_OWNED,
        agent_id=assignment.agent_id,
        knowledge_base_enabled=bool(assignment.knowledge_base_enabled),
    )


def can_transition(from_state: OwnershipState, to_state: OwnershipState) -> bool:
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: OwnershipState, to_state: OwnershipState) -> OwnershipState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def to_human_owned(current_state: OwnershipState) -> OwnershipState:
    """Agent asserts ownership (manual pickup or accepted escalation)."""
    return transition(current_state, OwnershipState.HUMAN_OWNED)


def to_bot_owned(current_state: OwnershipState) -> OwnershipState:
    """Owning agent returns the conversation to the bot."""
    return transition(current_state, OwnershipState.BOT_OWNED)
