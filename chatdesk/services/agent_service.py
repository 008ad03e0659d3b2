from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from chatdesk.logging_config import get_logger
from chatdesk.models import Agent, AgentAssignment, Conversation, ConversationAgent
from chatdesk.services.conversation_service import dialect_insert, get_chatbot
from chatdesk.services.errors import ConflictError, NotFoundError

logger = get_logger("agent_service")


def get_agent(db: Session, agent_id: UUID) -> Agent:
    agent = db.query(Agent).filter(Agent.id == agent_id).first()
    if not agent:
        raise NotFoundError(f"Agent {agent_id} not found", "agent_not_found")
    return agent


def assign_agent_to_chatbot(db: Session, agent_id: UUID, chatbot_id: UUID) -> AgentAssignment:
    get_agent(db, agent_id)
    get_chatbot(db, chatbot_id)
    stmt = (
        dialect_insert(db, AgentAssignment)
        .values(agent_id=agent_id, chatbot_id=chatbot_id, created_at=datetime.now(timezone.utc))
        .on_conflict_do_nothing(index_elements=["agent_id", "chatbot_id"])
    )
    if not db.execute(stmt).rowcount:
        raise ConflictError("Agent is already assigned to this chatbot", "already_assigned")
    logger.info(
        "Agent assigned to chatbot",
        extra={"context": {"agent_id": str(agent_id), "chatbot_id": str(chatbot_id)}},
    )
    return (
        db.query(AgentAssignment)
        .filter(AgentAssignment.agent_id == agent_id, AgentAssignment.chatbot_id == chatbot_id)
        .one()
    )


def remove_agent_assignment(db: Session, agent_id: UUID, chatbot_id: UUID) -> None:
    result = db.execute(
        delete(AgentAssignment).where(
            AgentAssignment.agent_id == agent_id,
            AgentAssignment.chatbot_id == chatbot_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Agent is not assigned to this chatbot", "assignment_not_found")


def list_chatbot_agents(db: Session, chatbot_id: UUID) -> List[AgentAssignment]:
    return (
        db.query(AgentAssignment)
        .filter(AgentAssignment.chatbot_id == chatbot_id)
        .order_by(AgentAssignment.created_at, AgentAssignment.agent_id)
        .all()
    )


def select_escalation_agent(db: Session, chatbot_id: UUID) -> Optional[UUID]:
    """Earliest assigned agent of the chatbot, ties broken by agent id."""
    assignments = list_chatbot_agents(db, chatbot_id)
    if not assignments:
        return None
    return assignments[0].agent_id


def is_agent_assigned(db: Session, agent_id: UUID, chatbot_id: UUID) -> bool:
    return (
        db.query(AgentAssignment)
        .filter(AgentAssignment.agent_id == agent_id, AgentAssignment.chatbot_id == chatbot_id)
        .first()
        is not None
    )


def list_agent_conversations(db: Session, agent_id: UUID) -> List[Conversation]:
    """Conversations the agent currently owns, most recently active first."""
    return (
        db.query(Conversation)
        .join(ConversationAgent, ConversationAgent.conversation_id == Conversation.id)
        .filter(ConversationAgent.agent_id == agent_id)
        .order_by(Conversation.updated_at.desc())
        .all()
    )


def list_available_conversations(db: Session, agent_id: UUID, limit: int = 50) -> List[Conversation]:
    """Bot-owned conversations of the chatbots the agent is assigned to."""
    chatbot_ids = select(AgentAssignment.chatbot_id).where(AgentAssignment.agent_id == agent_id)
    return (
        db.query(Conversation)
        .outerjoin(ConversationAgent, ConversationAgent.conversation_id == Conversation.id)
        .filter(Conversation.chatbot_id.in_(chatbot_ids))
        .filter(ConversationAgent.id.is_(None))
        .order_by(Conversation.updated_at.desc())
        .limit(limit)
        .all()
    )
