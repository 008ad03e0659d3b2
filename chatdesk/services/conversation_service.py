"""Store adapter for conversations, messages and ownership assignments.

Writes that can race (conversation creation, ownership claims) go through a
single INSERT ... ON CONFLICT DO NOTHING so the database constraint decides
the winner. Callers own the transaction: functions here flush, never commit.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from chatdesk.logging_config import get_logger
from chatdesk.models import Agent, Chatbot, Conversation, ConversationAgent, Message
from chatdesk.realtime.events import ConversationSnapshot, MessagePayload, OwnershipPayload, as_utc
from chatdesk.services.errors import ConflictError, NotFoundError, RejectedError
from chatdesk.services.identity import derive_conversation_id, require_session_id
from chatdesk.services.roles import MessageRole, to_stored
from chatdesk.services.state_machine import OwnershipState

logger = get_logger("conversation_service")


def dialect_insert(db: Session, model):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def get_chatbot(db: Session, chatbot_id: UUID) -> Chatbot:
    chatbot = db.query(Chatbot).filter(Chatbot.id == chatbot_id).first()
    if not chatbot:
        raise NotFoundError(f"Chatbot {chatbot_id} not found", "chatbot_not_found")
    return chatbot


def get_conversation(db: Session, conversation_id: UUID) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise NotFoundError(f"Conversation {conversation_id} not found", "conversation_not_found")
    return conversation


def ensure_conversation(db: Session, chatbot_id: UUID, session_id: str) -> UUID:
    """Return the conversation id for (chatbot, session), creating the row if needed.

    Concurrent callers for the same pair converge on one row: losing the
    insert race is a success.
    """
    session_id = require_session_id(session_id)
    get_chatbot(db, chatbot_id)
    conversation_id = derive_conversation_id(chatbot_id, session_id)

    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, Conversation)
        .values(
            id=conversation_id,
            chatbot_id=chatbot_id,
            session_id=session_id,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["id"])
    )
    result = db.execute(stmt)
    if result.rowcount:
        logger.info(
            "Conversation created",
            extra={"context": {"conversation_id": str(conversation_id), "chatbot_id": str(chatbot_id)}},
        )
    return conversation_id


def _next_timestamp(db: Session, conversation_id: UUID) -> datetime:
    # strictly increasing per conversation so ordering by created_at is total
    now = datetime.now(timezone.utc)
    latest = db.query(func.max(Message.created_at)).filter(Message.conversation_id == conversation_id).scalar()
    if latest is not None and as_utc(latest) >= now:
        return as_utc(latest) + timedelta(microseconds=1)
    return now


def append_message(
    db: Session,
    conversation_id: UUID,
    role: MessageRole,
    content: str,
    agent_id: Optional[UUID] = None,
) -> Message:
    conversation = get_conversation(db, conversation_id)
    if not conversation.chatbot.is_active:
        raise RejectedError("Chatbot is not active", "chatbot_inactive")
    if content is None or not content.strip():
        raise RejectedError("Message content is empty", "empty_content")

    stored_role, stored_agent_id = to_stored(role, agent_id)
    created_at = _next_timestamp(db, conversation_id)
    message = Message(
        conversation_id=conversation_id,
        content=content,
        role=stored_role,
        agent_id=stored_agent_id,
        created_at=created_at,
    )
    db.add(message)
    conversation.updated_at = created_at
    db.flush()
    return message


def get_ownership(db: Session, conversation_id: UUID) -> Optional[ConversationAgent]:
    return db.query(ConversationAgent).filter(ConversationAgent.conversation_id == conversation_id).first()


def set_ownership(
    db: Session,
    conversation_id: UUID,
    agent_id: UUID,
    knowledge_base_enabled: bool = False,
) -> ConversationAgent:
    """Claim the conversation for an agent. ConflictError if anyone already holds it."""
    get_conversation(db, conversation_id)
    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, ConversationAgent)
        .values(
            conversation_id=conversation_id,
            agent_id=agent_id,
            knowledge_base_enabled=knowledge_base_enabled,
            assigned_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["conversation_id"])
    )
    result = db.execute(stmt)
    if not result.rowcount:
        raise ConflictError("Conversation is already assigned to an agent", "already_assigned")
    return get_ownership(db, conversation_id)


def release_ownership(db: Session, conversation_id: UUID, agent_id: UUID) -> None:
    """Delete the assignment only if ``agent_id`` holds it."""
    result = db.execute(
        delete(ConversationAgent).where(
            ConversationAgent.conversation_id == conversation_id,
            ConversationAgent.agent_id == agent_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("Conversation is not assigned to this agent", "not_owner")


def toggle_knowledge_base(db: Session, conversation_id: UUID, enabled: bool) -> ConversationAgent:
    current = get_ownership(db, conversation_id)
    if current is None:
        raise NotFoundError("Conversation has no agent assigned", "not_assigned")
    updated_at = datetime.now(timezone.utc)
    if as_utc(current.updated_at) >= updated_at:
        updated_at = as_utc(current.updated_at) + timedelta(microseconds=1)
    result = db.execute(
        update(ConversationAgent)
        .where(ConversationAgent.conversation_id == conversation_id)
        .values(knowledge_base_enabled=enabled, updated_at=updated_at)
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        raise NotFoundError("Conversation has no agent assigned", "not_assigned")
    return get_ownership(db, conversation_id)


def list_messages(db: Session, conversation_id: UUID, since: Optional[datetime] = None) -> List[Message]:
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if since is not None:
        query = query.filter(Message.created_at > as_utc(since))
    return query.order_by(Message.created_at, Message.id).all()


def recent_messages(
    db: Session,
    conversation_id: UUID,
    limit: int,
    role: Optional[str] = None,
) -> List[Message]:
    """Last ``limit`` messages, oldest first. ``role`` filters on the stored role."""
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if role is not None:
        query = query.filter(Message.role == role)
    rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()
    return list(reversed(rows))


def ownership_payload(
    db: Session,
    conversation_id: UUID,
    assignment: Optional[ConversationAgent] = None,
    changed_at: Optional[datetime] = None,
) -> OwnershipPayload:
    if assignment is None:
        return OwnershipPayload(
            conversation_id=conversation_id,
            state=OwnershipState.BOT_OWNED.value,
            knowledge_base_enabled=True,
            changed_at=changed_at or datetime.now(timezone.utc),
        )
    agent = db.query(Agent).filter(Agent.id == assignment.agent_id).first()
    return OwnershipPayload(
        conversation_id=conversation_id,
        state=OwnershipState.HUMAN_OWNED.value,
        agent_id=assignment.agent_id,
        agent_name=agent.name if agent else None,
        knowledge_base_enabled=bool(assignment.knowledge_base_enabled),
        changed_at=changed_at or as_utc(assignment.updated_at or assignment.assigned_at),
    )


def build_snapshot(db: Session, conversation_id: UUID) -> ConversationSnapshot:
    """Current messages and ownership, as re-delivered by reconciliation."""
    get_conversation(db, conversation_id)
    messages = [MessagePayload.from_row(m) for m in list_messages(db, conversation_id)]
    assignment = get_ownership(db, conversation_id)
    changed_at = None if assignment is not None else datetime.now(timezone.utc)
    return ConversationSnapshot(
        conversation_id=conversation_id,
        messages=messages,
        ownership=ownership_payload(db, conversation_id, assignment, changed_at),
    )
