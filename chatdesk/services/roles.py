from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from chatdesk.services.errors import RejectedError

STORED_CUSTOMER = "user"
STORED_RESPONDER = "assistant"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    AUTOMATED_RESPONDER = "automated_responder"
    HUMAN_AGENT = "human_agent"


def to_stored(role: MessageRole, agent_id: Optional[UUID]) -> Tuple[str, Optional[UUID]]:
    """Map a role onto the stored (role, agent_id) pair.

    Agent replies are stored as ``assistant`` rows carrying the agent id.
    """
    role = MessageRole(role)
    if role == MessageRole.CUSTOMER:
        return STORED_CUSTOMER, None
    if role == MessageRole.AUTOMATED_RESPONDER:
        return STORED_RESPONDER, None
    if agent_id is None:
        raise RejectedError("agent_id is required for agent messages", "missing_agent")
    return STORED_RESPONDER, agent_id


def from_stored(role: str, agent_id: Optional[UUID]) -> MessageRole:
    if role == STORED_CUSTOMER:
        return MessageRole.CUSTOMER
    if agent_id is not None:
        return MessageRole.HUMAN_AGENT
    return MessageRole.AUTOMATED_RESPONDER
